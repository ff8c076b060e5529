from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from revintel.context import correlation_scope
from revintel.metrics import observe_backfill_records, observe_backfill_run
from revintel.revenue_intelligence.errors import HistoryUnavailableError
from revintel.revenue_intelligence.normalizer import HistorySummary, needs_history, plan_backfill
from revintel.revenue_intelligence.store import DealStore


logger = logging.getLogger("revintel.ri.backfill")
tracer = trace.get_tracer("revintel.ri.backfill")

DEFAULT_BATCH_SIZE = 500
DEFAULT_SCAN_LIMIT = 10_000


@dataclass(slots=True)
class BackfillReport:
    scanned: int = 0
    updated: int = 0
    skipped: int = 0
    batches: int = 0
    fixes: Counter[str] = field(default_factory=Counter)


class BackfillJobRunner:
    """Persist normalized dates and derived fields on legacy opportunities.

    Candidates are processed in batches and every batch is committed on its
    own, so an interrupted run can simply be started again. Re-running over
    normalized records writes nothing.
    """

    def run(
        self,
        store: DealStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
        tz: tzinfo = timezone.utc,
    ) -> BackfillReport:
        report = BackfillReport()
        started = time.perf_counter()
        batch_size = max(1, batch_size)

        with correlation_scope(prefix="ri-backfill") as correlation_id, tracer.start_as_current_span(
            "ri.backfill.run"
        ) as run_span:
            run_span.set_attribute("correlation_id", correlation_id)
            run_span.set_attribute("batch_size", batch_size)
            run_span.set_attribute("scan_limit", scan_limit)

            candidates = store.find_unnormalized(scan_limit)
            logger.info("ri.backfill.started", extra={"scanned": len(candidates), "status": "Running"})

            try:
                for offset in range(0, len(candidates), batch_size):
                    self._run_batch(store, candidates[offset : offset + batch_size], report, tz)
            except Exception as exc:
                run_span.record_exception(exc)
                run_span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.info(
                    "ri.backfill.finished",
                    extra={
                        "status": "Failed",
                        "scanned": report.scanned,
                        "updated": report.updated,
                        "batches": report.batches,
                        "error": str(exc),
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    },
                )
                raise
            finally:
                observe_backfill_run(time.perf_counter() - started)

            run_span.set_attribute("scanned", report.scanned)
            run_span.set_attribute("updated", report.updated)
            observe_backfill_records("updated", report.updated)
            observe_backfill_records("skipped", report.skipped)
            observe_backfill_records("unchanged", report.scanned - report.updated - report.skipped)
            logger.info(
                "ri.backfill.finished",
                extra={
                    "status": "Succeeded",
                    "scanned": report.scanned,
                    "updated": report.updated,
                    "skipped": report.skipped,
                    "batches": report.batches,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
        return report

    def _run_batch(
        self,
        store: DealStore,
        batch: Sequence[Mapping[str, Any]],
        report: BackfillReport,
        tz: tzinfo,
    ) -> None:
        report.batches += 1
        with tracer.start_as_current_span("ri.backfill.batch") as batch_span:
            batch_span.set_attribute("batch", report.batches)
            batch_span.set_attribute("size", len(batch))

            history, history_ok = self._history_for(store, batch, report.batches, tz)
            updates: dict[str, dict[str, Any]] = {}
            skipped = 0
            skipped_writes = 0
            for doc in batch:
                report.scanned += 1
                derivation_skipped = not history_ok and needs_history(doc)
                plan = plan_backfill(doc, history.get(str(doc["id"])), derive=history_ok, tz=tz)
                report.fixes.update(plan.fixes)
                if plan.updates:
                    updates[str(doc["id"])] = plan.updates
                if derivation_skipped:
                    skipped += 1
                    skipped_writes += bool(plan.updates)

            written = store.apply_updates(updates) if updates else 0
            # a record whose derivation was skipped counts once, as skipped
            updated = max(0, written - skipped_writes)
            report.updated += updated
            report.skipped += skipped
            batch_span.set_attribute("updated", updated)
            logger.info(
                "ri.backfill.batch",
                extra={"batch": report.batches, "scanned": len(batch), "updated": updated, "skipped": skipped},
            )

    def _history_for(
        self,
        store: DealStore,
        batch: Sequence[Mapping[str, Any]],
        batch_number: int,
        tz: tzinfo,
    ) -> tuple[dict[str, HistorySummary], bool]:
        ids = [str(doc["id"]) for doc in batch if needs_history(doc)]
        if not ids:
            return {}, True
        try:
            return store.latest_history(ids, tz=tz), True
        except HistoryUnavailableError as exc:
            logger.warning(
                "ri.history_lookup_failed",
                extra={"batch": batch_number, "deal_count": len(ids), "error": str(exc)},
            )
            return {}, False
