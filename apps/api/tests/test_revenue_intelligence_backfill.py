from __future__ import annotations

import copy
from datetime import datetime, timezone

from revintel.revenue_intelligence.backfill import BackfillJobRunner
from revintel.revenue_intelligence.errors import HistoryUnavailableError
from revintel.revenue_intelligence.store import InMemoryDealStore


def _legacy_store() -> InMemoryDealStore:
    return InMemoryDealStore(
        opportunities=[
            {
                "id": "d-1",
                "stage": "Proposal",
                "created_at": "2026-01-10",
                "updated_at": "2026-03-01T08:00:00Z",
                "close_date": "2026-06-30",
            },
            {
                "id": "d-2",
                "stage": "Negotiation",
                "created_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
                "last_activity_at": datetime(2026, 4, 1, tzinfo=timezone.utc),
            },
            {
                "id": "d-3",
                "stage": "Qualified",
                "created_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
                "last_activity_at": datetime(2026, 4, 1, tzinfo=timezone.utc),
                "stage_changed_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
            },
        ],
        history=[
            {"opportunity_id": "d-1", "event_type": "note_added", "created_at": "2026-04-20T10:00:00Z"},
            {"opportunity_id": "d-1", "event_type": "stage_changed", "created_at": "2026-04-02T10:00:00Z"},
            {"opportunity_id": "d-1", "event_type": "stage_changed", "created_at": "2026-03-15T10:00:00Z"},
            {"opportunity_id": "d-2", "event_type": "note_added", "created_at": "2026-04-05T10:00:00Z"},
        ],
    )


def test_backfill_normalizes_and_derives_fields() -> None:
    store = _legacy_store()

    report = BackfillJobRunner().run(store)

    assert report.scanned == 2
    assert report.updated == 2
    assert report.skipped == 0
    assert report.batches == 1
    assert report.fixes == {
        "normalized_created_at": 1,
        "normalized_updated_at": 1,
        "normalized_close_date": 1,
        "fixed_last_activity_at": 1,
        "fixed_stage_changed_at": 2,
    }

    d1, d2, _ = store.opportunities
    assert d1["created_at"] == datetime(2026, 1, 10, 12, tzinfo=timezone.utc)
    assert d1["close_date"] == datetime(2026, 6, 30, 12, tzinfo=timezone.utc)
    assert d1["last_activity_at"] == datetime(2026, 4, 20, 10, tzinfo=timezone.utc)
    assert d1["stage_changed_at"] == datetime(2026, 4, 2, 10, tzinfo=timezone.utc)
    assert d2["stage_changed_at"] == datetime(2026, 4, 5, 10, tzinfo=timezone.utc)


def test_backfill_is_idempotent() -> None:
    store = _legacy_store()
    runner = BackfillJobRunner()

    runner.run(store)
    snapshot = copy.deepcopy(store.opportunities)
    second = runner.run(store)

    assert second.updated == 0
    assert second.scanned == 0
    assert store.opportunities == snapshot


def test_backfill_commits_each_batch() -> None:
    store = InMemoryDealStore(
        opportunities=[{"id": f"d-{index}", "created_at": "2026-01-01"} for index in range(5)],
    )

    report = BackfillJobRunner().run(store, batch_size=2)

    assert report.batches == 3
    assert store.commits == 3
    assert report.updated == 5


def test_backfill_respects_scan_limit() -> None:
    store = InMemoryDealStore(
        opportunities=[{"id": f"d-{index}", "created_at": "2026-01-01"} for index in range(5)],
    )

    report = BackfillJobRunner().run(store, scan_limit=3)

    assert report.scanned == 3
    assert len(store.find_unnormalized(10)) == 2


def test_backfill_skips_derivation_when_history_is_unavailable() -> None:
    class FlakyHistoryStore(InMemoryDealStore):
        def latest_history(self, opportunity_ids, *, tz=timezone.utc):
            raise HistoryUnavailableError("history offline")

    store = FlakyHistoryStore(
        opportunities=[
            {"id": "d-1", "created_at": "2026-01-10", "updated_at": "2026-03-01T08:00:00Z"},
        ],
    )

    report = BackfillJobRunner().run(store)

    assert report.skipped == 1
    assert report.updated == 0
    assert report.fixes == {"normalized_created_at": 1, "normalized_updated_at": 1}
    doc = store.opportunities[0]
    assert doc["created_at"] == datetime(2026, 1, 10, 12, tzinfo=timezone.utc)
    assert "last_activity_at" not in doc
    assert len(store.find_unnormalized(10)) == 1


def test_backfill_counts_each_record_once_when_history_is_unavailable() -> None:
    class FlakyHistoryStore(InMemoryDealStore):
        def latest_history(self, opportunity_ids, *, tz=timezone.utc):
            raise HistoryUnavailableError("history offline")

    store = FlakyHistoryStore(
        opportunities=[
            {"id": "d-1", "created_at": "2026-01-10"},
            {
                "id": "d-2",
                "created_at": "2026-02-01",
                "last_activity_at": datetime(2026, 4, 1, tzinfo=timezone.utc),
                "stage_changed_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
            },
            {
                "id": "d-3",
                "created_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
                "last_activity_at": "2026-04-01T09:00:00Z",
                "stage_changed_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
            },
        ],
    )

    report = BackfillJobRunner().run(store)

    assert report.scanned == 3
    assert report.skipped == 1
    assert report.updated == 2
    assert report.scanned - report.updated - report.skipped == 0
    assert store.opportunities[0]["created_at"] == datetime(2026, 1, 10, 12, tzinfo=timezone.utc)
