from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from decimal import Decimal

from revintel.revenue_intelligence.normalizer import UNASSIGNED_OWNER, NormalizedOpportunity, load_cohort
from revintel.revenue_intelligence.periods import ResolvedPeriod
from revintel.revenue_intelligence.store import DealStore


HUNDRED = Decimal("100")
BASE_PERFORMANCE_SCORE = 50

# (predicate, adjustment), first match wins within each ladder
WIN_RATE_LADDER = (
    (lambda rate: rate >= 50, 20),
    (lambda rate: rate >= 30, 10),
    (lambda rate: rate < 20, -10),
)
DEAL_SIZE_LADDER = (
    (lambda size: size > 50000, 15),
    (lambda size: size > 25000, 10),
    (lambda size: size < 10000, -5),
)
OPEN_DEALS_LADDER = (
    (lambda count: count > 10, 10),
    (lambda count: count > 5, 5),
    (lambda count: count < 3, -10),
)


@dataclass(slots=True)
class RepPerformance:
    owner_id: str
    total_deals: int = 0
    open_deals: int = 0
    closed_won: int = 0
    closed_lost: int = 0
    total_value: Decimal = Decimal("0")
    won_value: Decimal = Decimal("0")
    lost_value: Decimal = Decimal("0")
    pipeline_value: Decimal = Decimal("0")
    avg_deal_size: Decimal = Decimal("0")
    win_rate: Decimal = Decimal("0")
    forecasted_revenue: Decimal = Decimal("0")
    performance_score: int = BASE_PERFORMANCE_SCORE


@dataclass(frozen=True, slots=True)
class RepPerformanceReport:
    period: ResolvedPeriod
    reps: list[RepPerformance]

    @property
    def total_pipeline(self) -> Decimal:
        return sum((rep.pipeline_value for rep in self.reps), Decimal("0"))

    @property
    def total_won(self) -> Decimal:
        return sum((rep.won_value for rep in self.reps), Decimal("0"))

    @property
    def avg_win_rate(self) -> Decimal:
        if not self.reps:
            return Decimal("0")
        return sum((rep.win_rate for rep in self.reps), Decimal("0")) / len(self.reps)


def _ladder(value: Decimal | int, ladder) -> int:
    for predicate, adjustment in ladder:
        if predicate(value):
            return adjustment
    return 0


def _finish(rep: RepPerformance) -> RepPerformance:
    if rep.total_deals:
        rep.avg_deal_size = rep.total_value / rep.total_deals
    decided = rep.closed_won + rep.closed_lost
    if decided:
        rep.win_rate = Decimal(rep.closed_won) * HUNDRED / decided
    rep.forecasted_revenue = rep.won_value + rep.pipeline_value * rep.win_rate / HUNDRED

    score = (
        BASE_PERFORMANCE_SCORE
        + _ladder(rep.win_rate, WIN_RATE_LADDER)
        + _ladder(rep.avg_deal_size, DEAL_SIZE_LADDER)
        + _ladder(rep.open_deals, OPEN_DEALS_LADDER)
    )
    rep.performance_score = max(0, min(100, score))
    return rep


def analyze_reps(opportunities: Sequence[NormalizedOpportunity]) -> list[RepPerformance]:
    """Group a cohort, lost deals included, by owner and rank by forecasted revenue."""
    by_owner: dict[str, RepPerformance] = {}
    for opportunity in opportunities:
        owner = opportunity.owner_id or UNASSIGNED_OWNER
        rep = by_owner.setdefault(owner, RepPerformance(owner_id=owner))
        rep.total_deals += 1
        rep.total_value += opportunity.amount
        if opportunity.is_won:
            rep.closed_won += 1
            rep.won_value += opportunity.amount
        elif opportunity.is_lost:
            rep.closed_lost += 1
            rep.lost_value += opportunity.amount
        else:
            rep.open_deals += 1
            rep.pipeline_value += opportunity.amount

    reps = [_finish(rep) for rep in by_owner.values()]
    reps.sort(key=lambda rep: rep.forecasted_revenue, reverse=True)
    return reps


class RepPerformanceAnalyzer:
    def analyze(
        self,
        store: DealStore,
        period: ResolvedPeriod,
        *,
        now: datetime,
        tz: tzinfo = timezone.utc,
    ) -> RepPerformanceReport:
        cohort = load_cohort(store, period, now=now, include_closed_lost=True, with_history=False, tz=tz)
        return RepPerformanceReport(period=period, reps=analyze_reps(cohort))
