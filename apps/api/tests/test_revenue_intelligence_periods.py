from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from revintel.revenue_intelligence.periods import resolve_period
from revintel.revenue_intelligence.store import InMemoryDealStore


NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("period", "start", "end_exclusive"),
    [
        ("current_month", datetime(2026, 5, 1), datetime(2026, 6, 1)),
        ("current_quarter", datetime(2026, 4, 1), datetime(2026, 7, 1)),
        ("next_month", datetime(2026, 6, 1), datetime(2026, 7, 1)),
        ("next_quarter", datetime(2026, 7, 1), datetime(2026, 10, 1)),
        ("current_year", datetime(2026, 1, 1), datetime(2027, 1, 1)),
        ("next_year", datetime(2027, 1, 1), datetime(2028, 1, 1)),
    ],
)
def test_named_periods(period: str, start: datetime, end_exclusive: datetime) -> None:
    resolved = resolve_period(period, NOW)

    assert resolved.period == period
    assert resolved.start == start.replace(tzinfo=timezone.utc)
    assert resolved.end_exclusive == end_exclusive.replace(tzinfo=timezone.utc)
    assert resolved.is_custom is False


def test_next_quarter_and_month_roll_into_next_year() -> None:
    november = datetime(2026, 11, 20, tzinfo=timezone.utc)
    december = datetime(2026, 12, 5, tzinfo=timezone.utc)

    quarter = resolve_period("next_quarter", november)
    month = resolve_period("next_month", december)

    assert quarter.start == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert quarter.end_exclusive == datetime(2027, 4, 1, tzinfo=timezone.utc)
    assert month.start == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert month.end_exclusive == datetime(2027, 2, 1, tzinfo=timezone.utc)


def test_explicit_pair_overrides_token_and_covers_last_day() -> None:
    resolved = resolve_period("next_year", NOW, start_date="2026-05-01", end_date="2026-05-31")

    assert resolved.is_custom is True
    assert resolved.period == "custom"
    assert resolved.start == datetime(2026, 5, 1, tzinfo=timezone.utc)
    assert resolved.end_exclusive == datetime(2026, 6, 1, tzinfo=timezone.utc)
    assert resolved.end == datetime(2026, 6, 1, tzinfo=timezone.utc) - timedelta(microseconds=1)


def test_half_open_boundary() -> None:
    resolved = resolve_period("current_month", NOW, start_date=date(2026, 5, 1), end_date=date(2026, 5, 31))

    store = InMemoryDealStore(
        opportunities=[
            {"id": "last-instant", "close_date": "2026-05-31T23:59:59.999Z"},
            {"id": "next-month", "close_date": "2026-06-01T00:00:00.000Z"},
            {"id": "first-instant", "close_date": "2026-05-01T00:00:00Z"},
            {"id": "undated", "close_date": None},
        ],
    )

    matched = store.find_opportunities(resolved.start, resolved.end_exclusive)

    assert [doc["id"] for doc in matched] == ["last-instant", "first-instant"]


def test_half_explicit_pair_is_ignored() -> None:
    resolved = resolve_period("current_quarter", NOW, start_date="2026-05-01")
    assert resolved.is_custom is False
    assert resolved.start == datetime(2026, 4, 1, tzinfo=timezone.utc)


def test_unknown_token_resolves_as_current_month() -> None:
    resolved = resolve_period("last_decade", NOW)
    assert resolved.period == "current_month"
    assert resolved.start == datetime(2026, 5, 1, tzinfo=timezone.utc)


def test_periods_follow_business_timezone() -> None:
    tz = ZoneInfo("America/New_York")
    # 02:00 UTC on 1 June is still 31 May in New York
    now = datetime(2026, 6, 1, 2, 0, tzinfo=timezone.utc)

    resolved = resolve_period("current_month", now, tz=tz)

    assert resolved.start == datetime(2026, 5, 1, tzinfo=tz)
    assert resolved.end_exclusive == datetime(2026, 6, 1, tzinfo=tz)
    assert resolved.start <= now < resolved.end_exclusive
