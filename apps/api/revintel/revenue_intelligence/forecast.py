from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from decimal import Decimal

from revintel.metrics import observe_forecast, observe_scored
from revintel.revenue_intelligence.normalizer import NormalizedOpportunity, load_cohort
from revintel.revenue_intelligence.periods import ResolvedPeriod
from revintel.revenue_intelligence.scoring import Confidence, ScoreFactor, score_opportunity
from revintel.revenue_intelligence.settings import ScoringSettings
from revintel.revenue_intelligence.store import DealStore
from revintel.revenue_intelligence.temporal import age_in_days, local_day_start, parse_instant


logger = logging.getLogger("revintel.ri.forecast")

HUNDRED = Decimal("100")

# (pessimistic, likely, optimistic) payout multipliers per confidence tier
CONFIDENCE_MULTIPLIERS: dict[str, tuple[Decimal, Decimal, Decimal]] = {
    "High": (Decimal("0.70"), Decimal("0.85"), Decimal("0.95")),
    "Medium": (Decimal("0.30"), Decimal("0.50"), Decimal("0.70")),
    "Low": (Decimal("0.10"), Decimal("0.20"), Decimal("0.40")),
}

UNKNOWN_STAGE = "Unknown"


@dataclass(frozen=True, slots=True)
class ScoredOpportunity:
    opportunity: NormalizedOpportunity
    score: int
    confidence: Confidence
    factors: tuple[ScoreFactor, ...]
    account_age_days: int | None = None
    adjusted: bool = False

    @property
    def weighted_value(self) -> Decimal:
        return self.opportunity.amount * Decimal(self.score) / HUNDRED


@dataclass(slots=True)
class StageBucket:
    count: int = 0
    value: Decimal = Decimal("0")
    weighted_value: Decimal = Decimal("0")


@dataclass(slots=True)
class ForecastTotals:
    """Unrounded aggregates over one cohort."""

    total_deals: int = 0
    total_pipeline: Decimal = Decimal("0")
    weighted_pipeline: Decimal = Decimal("0")
    closed_won: Decimal = Decimal("0")
    pessimistic: Decimal = Decimal("0")
    likely: Decimal = Decimal("0")
    optimistic: Decimal = Decimal("0")
    confidence_counts: dict[str, int] = field(default_factory=lambda: {"High": 0, "Medium": 0, "Low": 0})
    by_stage: dict[str, StageBucket] = field(default_factory=dict)
    pipeline: list[ScoredOpportunity] = field(default_factory=list)
    won: list[ScoredOpportunity] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ForecastComputation:
    period: ResolvedPeriod
    deals: list[ScoredOpportunity]
    totals: ForecastTotals


def account_ages(
    store: DealStore,
    opportunities: Iterable[NormalizedOpportunity],
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> dict[str, int]:
    account_ids = sorted({item.account_id for item in opportunities if item.account_id})
    if not account_ids:
        return {}
    ages: dict[str, int] = {}
    for account in store.find_accounts(account_ids):
        created_at = parse_instant(account.get("created_at"), tz)
        if created_at is not None:
            ages[str(account["id"])] = age_in_days(created_at, now)
    return ages


def score_cohort(
    opportunities: Sequence[NormalizedOpportunity],
    settings: ScoringSettings,
    *,
    now: datetime,
    ages: Mapping[str, int],
) -> list[ScoredOpportunity]:
    scored: list[ScoredOpportunity] = []
    for opportunity in opportunities:
        account_age = ages.get(opportunity.account_id) if opportunity.account_id else None
        result = score_opportunity(opportunity, settings, now=now, account_age_days=account_age)
        scored.append(
            ScoredOpportunity(
                opportunity=opportunity,
                score=result.score,
                confidence=result.confidence,
                factors=result.factors,
                account_age_days=account_age,
            )
        )
    return scored


def summarize_cohort(
    deals: Sequence[ScoredOpportunity],
    *,
    now: datetime,
    exclude_overdue: bool = False,
    tz: tzinfo = timezone.utc,
) -> ForecastTotals:
    """Partition a scored cohort into won and pipeline and total it up.

    Lost deals never contribute. With ``exclude_overdue`` set, open deals whose
    effective close date falls before the start of the local day are dropped
    from the pipeline; won deals are unaffected.
    """
    totals = ForecastTotals(total_deals=len(deals))
    today_start = local_day_start(now, tz)

    for deal in deals:
        opportunity = deal.opportunity
        if opportunity.is_lost:
            continue
        if opportunity.is_won:
            totals.won.append(deal)
            continue
        close_date = opportunity.effective_close_date
        if exclude_overdue and close_date is not None and close_date < today_start:
            continue
        totals.pipeline.append(deal)

    totals.closed_won = sum((deal.opportunity.amount for deal in totals.won), Decimal("0"))
    pessimistic = likely = optimistic = totals.closed_won

    for deal in totals.pipeline:
        amount = deal.opportunity.amount
        weighted = deal.weighted_value
        totals.total_pipeline += amount
        totals.weighted_pipeline += weighted
        totals.confidence_counts[deal.confidence] += 1

        low, mid, high = CONFIDENCE_MULTIPLIERS[deal.confidence]
        pessimistic += amount * low
        likely += amount * mid
        optimistic += amount * high

        bucket = totals.by_stage.setdefault(deal.opportunity.stage or UNKNOWN_STAGE, StageBucket())
        bucket.count += 1
        bucket.value += amount
        bucket.weighted_value += weighted

    totals.pessimistic = pessimistic
    totals.likely = likely
    totals.optimistic = optimistic
    return totals


class ForecastAggregator:
    def compute(
        self,
        store: DealStore,
        settings: ScoringSettings,
        period: ResolvedPeriod,
        *,
        now: datetime,
        owner_filter: str | None = None,
        exclude_overdue: bool = False,
        tz: tzinfo = timezone.utc,
        operation: str = "forecast",
    ) -> ForecastComputation:
        cohort = load_cohort(store, period, now=now, owner_filter=owner_filter, tz=tz)
        ages = account_ages(store, cohort, now=now, tz=tz)
        deals = score_cohort(cohort, settings, now=now, ages=ages)
        totals = summarize_cohort(deals, now=now, exclude_overdue=exclude_overdue, tz=tz)

        for tier, count in Counter(deal.confidence for deal in deals).items():
            observe_scored(tier, count)
        observe_forecast(operation)
        logger.info(
            "ri.forecast.computed",
            extra={
                "operation": operation,
                "period": period.period,
                "owner_id": owner_filter,
                "deal_count": len(deals),
            },
        )
        return ForecastComputation(period=period, deals=deals, totals=totals)
