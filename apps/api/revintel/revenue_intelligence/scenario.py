from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Any

from revintel.revenue_intelligence.forecast import (
    ForecastAggregator,
    ForecastTotals,
    ScoredOpportunity,
    summarize_cohort,
)
from revintel.revenue_intelligence.normalizer import to_amount
from revintel.revenue_intelligence.periods import ResolvedPeriod
from revintel.revenue_intelligence.settings import ScoringSettings
from revintel.revenue_intelligence.store import DealStore
from revintel.revenue_intelligence.temporal import parse_instant


@dataclass(frozen=True, slots=True)
class DealAdjustment:
    opportunity_id: str
    new_stage: str | None = None
    new_amount: Decimal | None = None
    new_close_date: Any = None


@dataclass(frozen=True, slots=True)
class ScenarioComputation:
    period: ResolvedPeriod
    baseline: ForecastTotals
    scenario: ForecastTotals
    adjusted: list[ScoredOpportunity]


def apply_adjustments(
    deals: Sequence[ScoredOpportunity],
    adjustments: Sequence[DealAdjustment],
    *,
    tz: tzinfo = timezone.utc,
) -> list[ScoredOpportunity]:
    """Overlay hypothetical edits on a scored cohort.

    Scores, confidence tiers and factors are carried over from the baseline
    as they are; nothing is re-scored. A new close date replaces whichever
    close date the deal is forecast on. The first adjustment for an id wins.
    """
    by_id: dict[str, DealAdjustment] = {}
    for adjustment in adjustments:
        by_id.setdefault(str(adjustment.opportunity_id), adjustment)

    result: list[ScoredOpportunity] = []
    for deal in deals:
        adjustment = by_id.get(deal.opportunity.id)
        if adjustment is None:
            result.append(deal)
            continue

        opportunity = deal.opportunity
        changes: dict[str, Any] = {}
        if adjustment.new_stage:
            changes["stage"] = adjustment.new_stage
        if adjustment.new_amount is not None:
            changes["amount"] = to_amount(adjustment.new_amount)
        new_close = parse_instant(adjustment.new_close_date, tz)
        if new_close is not None:
            target = "forecasted_close_date" if opportunity.forecasted_close_date is not None else "close_date"
            changes[target] = new_close

        result.append(replace(deal, opportunity=replace(opportunity, **changes), adjusted=True))
    return result


class ScenarioEngine:
    def __init__(self, aggregator: ForecastAggregator | None = None) -> None:
        self.aggregator = aggregator or ForecastAggregator()

    def run(
        self,
        store: DealStore,
        settings: ScoringSettings,
        period: ResolvedPeriod,
        adjustments: Sequence[DealAdjustment],
        *,
        now: datetime,
        owner_filter: str | None = None,
        exclude_overdue: bool = False,
        tz: tzinfo = timezone.utc,
    ) -> ScenarioComputation:
        baseline = self.aggregator.compute(
            store,
            settings,
            period,
            now=now,
            owner_filter=owner_filter,
            exclude_overdue=exclude_overdue,
            tz=tz,
            operation="scenario",
        )
        scenario_deals = apply_adjustments(baseline.deals, adjustments, tz=tz)
        scenario = summarize_cohort(scenario_deals, now=now, exclude_overdue=exclude_overdue, tz=tz)
        return ScenarioComputation(
            period=period,
            baseline=baseline.totals,
            scenario=scenario,
            adjusted=[deal for deal in scenario_deals if deal.adjusted],
        )
