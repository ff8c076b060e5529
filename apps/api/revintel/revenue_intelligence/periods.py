from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Literal, get_args

from revintel.revenue_intelligence.temporal import parse_calendar_date


ForecastPeriod = Literal[
    "current_month",
    "current_quarter",
    "next_month",
    "next_quarter",
    "current_year",
    "next_year",
]

FORECAST_PERIODS: tuple[str, ...] = get_args(ForecastPeriod)
CUSTOM_PERIOD = "custom"


@dataclass(frozen=True, slots=True)
class ResolvedPeriod:
    """Half-open interval ``[start, end_exclusive)`` in the business timezone."""

    period: str
    start: datetime
    end_exclusive: datetime
    is_custom: bool = False

    @property
    def end(self) -> datetime:
        # inclusive bound for display only
        return self.end_exclusive - timedelta(microseconds=1)


def _month_start(year: int, month_index: int, tz: tzinfo) -> datetime:
    # month_index is zero-based and may run past December
    year += month_index // 12
    return datetime(year, month_index % 12 + 1, 1, tzinfo=tz)


def _named_bounds(period: str, now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    local = now.astimezone(tz)
    year, month = local.year, local.month - 1
    quarter_start = (month // 3) * 3

    if period == "current_quarter":
        return _month_start(year, quarter_start, tz), _month_start(year, quarter_start + 3, tz)
    if period == "next_month":
        return _month_start(year, month + 1, tz), _month_start(year, month + 2, tz)
    if period == "next_quarter":
        return _month_start(year, quarter_start + 3, tz), _month_start(year, quarter_start + 6, tz)
    if period == "current_year":
        return _month_start(year, 0, tz), _month_start(year + 1, 0, tz)
    if period == "next_year":
        return _month_start(year + 1, 0, tz), _month_start(year + 2, 0, tz)
    return _month_start(year, month, tz), _month_start(year, month + 1, tz)


def _day_start(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def resolve_period(
    period: str | None,
    now: datetime,
    *,
    start_date: Any = None,
    end_date: Any = None,
    tz: tzinfo = timezone.utc,
) -> ResolvedPeriod:
    """Resolve a named period, or an explicit pair of calendar dates, to an interval.

    An explicit pair wins over the token and covers both whole days. A pair
    with only one side present is ignored. Unknown tokens resolve as
    ``current_month``.
    """
    start_day = parse_calendar_date(start_date, tz) if start_date else None
    end_day = parse_calendar_date(end_date, tz) if end_date else None
    if start_day is not None and end_day is not None:
        return ResolvedPeriod(
            period=CUSTOM_PERIOD,
            start=_day_start(start_day, tz),
            end_exclusive=_day_start(end_day + timedelta(days=1), tz),
            is_custom=True,
        )

    token = period if period in FORECAST_PERIODS else "current_month"
    start, end_exclusive = _named_bounds(token, now, tz)
    return ResolvedPeriod(period=token, start=start, end_exclusive=end_exclusive)
