from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

ri_forecasts_total = Counter(
    "ri_forecasts_total",
    "Revenue intelligence aggregations by operation",
    ["operation"],
)

ri_scored_opportunities_total = Counter(
    "ri_scored_opportunities_total",
    "Scored opportunities by confidence tier",
    ["confidence"],
)

ri_backfill_records_total = Counter(
    "ri_backfill_records_total",
    "Backfill records by outcome",
    ["outcome"],
)

ri_backfill_duration_seconds = Histogram(
    "ri_backfill_duration_seconds",
    "Backfill run duration in seconds",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _UUID_RE.sub("{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_forecast(operation: str) -> None:
    ri_forecasts_total.labels(operation=operation).inc()


def observe_scored(confidence: str, count: int = 1) -> None:
    if count > 0:
        ri_scored_opportunities_total.labels(confidence=confidence).inc(count)


def observe_backfill_records(outcome: str, count: int) -> None:
    if count > 0:
        ri_backfill_records_total.labels(outcome=outcome).inc(count)


def observe_backfill_run(duration: float) -> None:
    ri_backfill_duration_seconds.observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
