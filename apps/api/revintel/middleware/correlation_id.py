from __future__ import annotations

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from revintel.context import correlation_scope, new_correlation_id


CORRELATION_HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        requested = (request.headers.get(CORRELATION_HEADER) or "").strip()
        with correlation_scope(requested or new_correlation_id()) as correlation_id:
            request.state.correlation_id = correlation_id
            span = trace.get_current_span()
            if span.is_recording():
                span.set_attribute("correlation_id", correlation_id)
            response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
