from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from revintel.revenue_intelligence.errors import HistoryUnavailableError
from revintel.revenue_intelligence.temporal import age_in_days, is_string_date, parse_instant

if TYPE_CHECKING:
    from revintel.revenue_intelligence.periods import ResolvedPeriod
    from revintel.revenue_intelligence.store import DealStore


logger = logging.getLogger("revintel.ri.normalizer")

CLOSED_WON_STAGES = frozenset({"Closed Won", "Contract Signed / Closed Won"})
CLOSED_LOST_STAGES = frozenset({"Closed Lost"})
UNASSIGNED_OWNER = "Unassigned"

DATE_FIELDS = (
    "created_at",
    "updated_at",
    "last_activity_at",
    "stage_changed_at",
    "close_date",
    "forecasted_close_date",
)


def is_closed_won(stage: str | None) -> bool:
    return (stage or "").strip() in CLOSED_WON_STAGES


def is_closed_lost(stage: str | None) -> bool:
    return (stage or "").strip() in CLOSED_LOST_STAGES


def to_amount(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return amount if amount.is_finite() else Decimal("0")


def _days_value(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if math.isfinite(number) else None


@dataclass(frozen=True, slots=True)
class HistorySummary:
    last_history_at: datetime | None = None
    last_stage_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class NormalizedOpportunity:
    """An opportunity with parsed dates and its derived ages filled in."""

    id: str
    account_id: str | None
    title: str | None
    amount: Decimal
    stage: str | None
    owner_id: str | None
    created_at: datetime | None
    updated_at: datetime | None
    last_activity_at: datetime | None
    stage_changed_at: datetime | None
    close_date: datetime | None
    forecasted_close_date: datetime | None
    days_in_stage: int | None
    deal_age_days: int | None
    activity_recency_days: int | None

    @property
    def effective_close_date(self) -> datetime | None:
        if self.forecasted_close_date is not None:
            return self.forecasted_close_date
        return self.close_date

    @property
    def is_won(self) -> bool:
        return is_closed_won(self.stage)

    @property
    def is_lost(self) -> bool:
        return is_closed_lost(self.stage)


def needs_history(doc: Mapping[str, Any]) -> bool:
    return not doc.get("last_activity_at") or not doc.get("stage_changed_at")


def normalize_opportunity(
    doc: Mapping[str, Any],
    *,
    now: datetime,
    history: HistorySummary | None = None,
    tz: tzinfo = timezone.utc,
) -> NormalizedOpportunity:
    history = history or HistorySummary()
    dates = {name: parse_instant(doc.get(name), tz) for name in DATE_FIELDS}
    created_at = dates["created_at"]
    updated_at = dates["updated_at"]

    last_activity_at = dates["last_activity_at"] or history.last_history_at or updated_at or created_at
    stage_changed_at = (
        dates["stage_changed_at"] or history.last_stage_at or history.last_history_at or updated_at or created_at
    )

    days_in_stage = _days_value(doc.get("days_in_stage"))
    if days_in_stage is None and stage_changed_at is not None:
        days_in_stage = age_in_days(stage_changed_at, now)

    owner = doc.get("owner_id")
    return NormalizedOpportunity(
        id=str(doc.get("id")),
        account_id=str(doc["account_id"]) if doc.get("account_id") else None,
        title=doc.get("title"),
        amount=to_amount(doc.get("amount")),
        stage=doc.get("stage"),
        owner_id=str(owner) if owner else None,
        created_at=created_at,
        updated_at=updated_at,
        last_activity_at=last_activity_at,
        stage_changed_at=stage_changed_at,
        close_date=dates["close_date"],
        forecasted_close_date=dates["forecasted_close_date"],
        days_in_stage=days_in_stage,
        deal_age_days=age_in_days(created_at, now) if created_at is not None else None,
        activity_recency_days=age_in_days(last_activity_at, now) if last_activity_at is not None else None,
    )


def fetch_history(
    store: DealStore, docs: Iterable[Mapping[str, Any]], *, tz: tzinfo = timezone.utc
) -> dict[str, HistorySummary]:
    """Best-effort history lookup for records that still lack derived fields."""
    ids = [str(doc["id"]) for doc in docs if needs_history(doc)]
    if not ids:
        return {}
    try:
        return store.latest_history(ids, tz=tz)
    except HistoryUnavailableError as exc:
        logger.warning("ri.history_lookup_failed", extra={"deal_count": len(ids), "error": str(exc)})
        return {}


def load_cohort(
    store: DealStore,
    period: ResolvedPeriod,
    *,
    now: datetime,
    owner_filter: str | None = None,
    include_closed_lost: bool = False,
    with_history: bool = True,
    tz: tzinfo = timezone.utc,
) -> list[NormalizedOpportunity]:
    docs = store.find_opportunities(
        period.start,
        period.end_exclusive,
        owner_filter=owner_filter,
        include_closed_lost=include_closed_lost,
        tz=tz,
    )
    history = fetch_history(store, docs, tz=tz) if with_history else {}
    return [
        normalize_opportunity(doc, now=now, history=history.get(str(doc["id"])), tz=tz)
        for doc in docs
    ]


# Fields rewritten to native values when found stored as strings.
_STRING_DATE_COUNTERS = {
    "forecasted_close_date": "normalized_forecasted_close_date",
    "close_date": "normalized_close_date",
    "created_at": "normalized_created_at",
    "updated_at": "normalized_updated_at",
    "last_activity_at": "normalized_last_activity_at",
    "stage_changed_at": "normalized_stage_changed_at",
}


@dataclass(slots=True)
class BackfillPlan:
    updates: dict[str, datetime] = field(default_factory=dict)
    fixes: list[str] = field(default_factory=list)


def plan_backfill(
    doc: Mapping[str, Any],
    history: HistorySummary | None,
    *,
    derive: bool = True,
    tz: tzinfo = timezone.utc,
) -> BackfillPlan:
    """Work out the writes that bring one stored record to its normalized shape.

    A record already in normalized shape yields an empty plan. Unparseable
    strings are left untouched. With ``derive`` off, missing derived fields
    are left for a later run.
    """
    plan = BackfillPlan()
    for name, counter in _STRING_DATE_COUNTERS.items():
        value = doc.get(name)
        if not is_string_date(value):
            continue
        parsed = parse_instant(value, tz)
        if parsed is not None:
            plan.updates[name] = parsed
            plan.fixes.append(counter)

    if not derive:
        return plan

    history = history or HistorySummary()
    updated_at = parse_instant(doc.get("updated_at"), tz)
    created_at = parse_instant(doc.get("created_at"), tz)

    if not doc.get("last_activity_at"):
        derived = history.last_history_at or updated_at or created_at
        if derived is not None:
            plan.updates["last_activity_at"] = derived
            plan.fixes.append("fixed_last_activity_at")

    if not doc.get("stage_changed_at"):
        derived = history.last_stage_at or history.last_history_at or updated_at or created_at
        if derived is not None:
            plan.updates["stage_changed_at"] = derived
            plan.fixes.append("fixed_stage_changed_at")

    return plan
