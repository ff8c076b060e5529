from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from revintel.revenue_intelligence.normalizer import HistorySummary, load_cohort, normalize_opportunity, plan_backfill
from revintel.revenue_intelligence.periods import resolve_period
from revintel.revenue_intelligence.store import InMemoryDealStore
from revintel.revenue_intelligence.temporal import age_in_days, parse_instant


NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


def test_parse_instant_accepts_native_and_string_values() -> None:
    native = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)

    assert parse_instant(native) == native
    assert parse_instant(datetime(2026, 5, 1, 9, 30)) == native
    assert parse_instant("2026-05-01T09:30:00Z") == native
    assert parse_instant("2026-05-01T11:30:00+02:00") == native
    assert parse_instant("2026-05-01T09:30:00") == native


def test_date_only_values_resolve_to_local_midday() -> None:
    tz = ZoneInfo("Asia/Kolkata")

    from_string = parse_instant("2026-05-01", tz)
    from_date = parse_instant(date(2026, 5, 1), tz)

    assert from_string == from_date
    assert from_string.astimezone(tz).hour == 12
    assert from_string.astimezone(tz).date() == date(2026, 5, 1)


def test_parse_instant_rejects_garbage() -> None:
    assert parse_instant(None) is None
    assert parse_instant("") is None
    assert parse_instant("   ") is None
    assert parse_instant("next tuesday") is None
    assert parse_instant("2026-02-30") is None
    assert parse_instant(True) is None
    assert parse_instant(1714550400) is None


def test_age_in_days_rounds_up() -> None:
    assert age_in_days(NOW - timedelta(minutes=1), NOW) == 1
    assert age_in_days(NOW - timedelta(days=5), NOW) == 5
    assert age_in_days(NOW - timedelta(days=5, seconds=1), NOW) == 6
    assert age_in_days(NOW, NOW) == 0


def test_last_activity_falls_back_to_history_then_updated_then_created() -> None:
    doc = {
        "id": "d-1",
        "created_at": "2026-04-01T12:00:00Z",
        "updated_at": "2026-05-01T12:00:00Z",
    }
    history = HistorySummary(last_history_at=datetime(2026, 5, 10, 12, tzinfo=timezone.utc))

    with_history = normalize_opportunity(doc, now=NOW, history=history)
    without_history = normalize_opportunity(doc, now=NOW)
    created_only = normalize_opportunity({"id": "d-2", "created_at": "2026-04-01T12:00:00Z"}, now=NOW)

    assert with_history.last_activity_at == datetime(2026, 5, 10, 12, tzinfo=timezone.utc)
    assert with_history.activity_recency_days == 5
    assert without_history.last_activity_at == datetime(2026, 5, 1, 12, tzinfo=timezone.utc)
    assert created_only.last_activity_at == datetime(2026, 4, 1, 12, tzinfo=timezone.utc)


def test_stage_entry_prefers_stage_change_events() -> None:
    doc = {"id": "d-1", "created_at": "2026-01-01T12:00:00Z", "updated_at": "2026-05-01T12:00:00Z"}
    history = HistorySummary(
        last_history_at=datetime(2026, 5, 12, 12, tzinfo=timezone.utc),
        last_stage_at=datetime(2026, 4, 15, 12, tzinfo=timezone.utc),
    )

    stage_event = normalize_opportunity(doc, now=NOW, history=history)
    any_event = normalize_opportunity(
        doc, now=NOW, history=HistorySummary(last_history_at=datetime(2026, 5, 12, 12, tzinfo=timezone.utc))
    )

    assert stage_event.stage_changed_at == datetime(2026, 4, 15, 12, tzinfo=timezone.utc)
    assert stage_event.days_in_stage == 30
    assert any_event.days_in_stage == 3


def test_stored_days_in_stage_wins() -> None:
    doc = {"id": "d-1", "stage_changed_at": "2026-01-01T12:00:00Z", "days_in_stage": 4}
    assert normalize_opportunity(doc, now=NOW).days_in_stage == 4


def test_missing_dates_leave_derived_ages_unset() -> None:
    normalized = normalize_opportunity({"id": "d-1", "amount": "not money"}, now=NOW)

    assert normalized.deal_age_days is None
    assert normalized.activity_recency_days is None
    assert normalized.days_in_stage is None
    assert normalized.amount == Decimal("0")


def test_effective_close_prefers_forecasted_date() -> None:
    normalized = normalize_opportunity(
        {"id": "d-1", "close_date": "2026-05-20", "forecasted_close_date": "2026-06-02"},
        now=NOW,
    )
    fallback = normalize_opportunity({"id": "d-2", "close_date": "2026-05-20"}, now=NOW)

    assert normalized.effective_close_date == datetime(2026, 6, 2, 12, tzinfo=timezone.utc)
    assert fallback.effective_close_date == datetime(2026, 5, 20, 12, tzinfo=timezone.utc)


def test_plan_backfill_normalizes_strings_and_derives_fields() -> None:
    doc = {
        "id": "d-1",
        "created_at": "2026-03-01",
        "updated_at": datetime(2026, 4, 1, tzinfo=timezone.utc),
        "close_date": "2026-06-30T00:00:00Z",
        "forecasted_close_date": "soon",
    }
    history = HistorySummary(
        last_history_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
        last_stage_at=datetime(2026, 4, 20, tzinfo=timezone.utc),
    )

    plan = plan_backfill(doc, history)

    assert plan.updates == {
        "created_at": datetime(2026, 3, 1, 12, tzinfo=timezone.utc),
        "close_date": datetime(2026, 6, 30, tzinfo=timezone.utc),
        "last_activity_at": datetime(2026, 5, 1, tzinfo=timezone.utc),
        "stage_changed_at": datetime(2026, 4, 20, tzinfo=timezone.utc),
    }
    assert sorted(plan.fixes) == [
        "fixed_last_activity_at",
        "fixed_stage_changed_at",
        "normalized_close_date",
        "normalized_created_at",
    ]


def test_plan_backfill_is_empty_for_normalized_record() -> None:
    doc = {
        "id": "d-1",
        "created_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "last_activity_at": datetime(2026, 5, 1, tzinfo=timezone.utc),
        "stage_changed_at": datetime(2026, 4, 1, tzinfo=timezone.utc),
    }

    plan = plan_backfill(doc, None)

    assert plan.updates == {}
    assert plan.fixes == []


def test_plan_backfill_without_derivation_only_normalizes() -> None:
    doc = {"id": "d-1", "created_at": "2026-03-01"}

    plan = plan_backfill(doc, None, derive=False)

    assert set(plan.updates) == {"created_at"}
    assert plan.fixes == ["normalized_created_at"]


def test_cohort_reads_date_only_values_in_the_business_zone() -> None:
    tz = ZoneInfo("Pacific/Auckland")
    now = datetime(2026, 10, 15, 9, 0, tzinfo=tz)
    period = resolve_period("current_month", now, tz=tz)
    store = InMemoryDealStore(
        opportunities=[
            {"id": "d-1", "stage": "Proposal", "created_at": "2026-09-01", "forecasted_close_date": "2026-10-31"},
            {"id": "d-2", "stage": "Proposal", "created_at": "2026-09-01", "forecasted_close_date": "2026-11-01"},
        ],
        history=[{"opportunity_id": "d-1", "event_type": "stage_changed", "created_at": "2026-10-10"}],
    )

    cohort = load_cohort(store, period, now=now, tz=tz)

    # local midday on the 31st is still October in Auckland, though past the UTC month end
    assert [item.id for item in cohort] == ["d-1"]
    assert cohort[0].stage_changed_at == datetime(2026, 10, 10, 12, tzinfo=tz)
