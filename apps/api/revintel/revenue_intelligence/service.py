from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from revintel.core.config import get_settings
from revintel.metrics import observe_scored
from revintel.revenue_intelligence.backfill import BackfillJobRunner
from revintel.revenue_intelligence.errors import OpportunityNotFoundError
from revintel.revenue_intelligence.forecast import ForecastAggregator, ForecastTotals, ScoredOpportunity, account_ages
from revintel.revenue_intelligence.normalizer import fetch_history, normalize_opportunity
from revintel.revenue_intelligence.periods import ResolvedPeriod, resolve_period
from revintel.revenue_intelligence.rep_performance import RepPerformanceAnalyzer
from revintel.revenue_intelligence.risk import build_at_risk
from revintel.revenue_intelligence.scenario import DealAdjustment, ScenarioEngine
from revintel.revenue_intelligence.schemas import (
    AtRiskRead,
    AtRiskRowRead,
    BackfillResultRead,
    ConfidenceCountsRead,
    DealScoreRead,
    ForecastBandsRead,
    ForecastRead,
    ForecastSummaryRead,
    RepPerformanceRead,
    RepPerformanceReportRead,
    RepPerformanceSummaryRead,
    ScenarioDeltaRead,
    ScenarioRead,
    ScenarioRequest,
    ScoredOpportunityRead,
    ScoreFactorRead,
    StageBreakdownRead,
)
from revintel.revenue_intelligence.scoring import score_opportunity
from revintel.revenue_intelligence.settings import ScoringSettings, default_settings, resolve_settings
from revintel.revenue_intelligence.store import DealStore
from revintel.revenue_intelligence.temporal import get_zone


logger = logging.getLogger("revintel.ri.service")

_WHOLE = Decimal("1")


def _whole(value: Decimal) -> Decimal:
    return value.quantize(_WHOLE, rounding=ROUND_HALF_UP)


def _rate(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(slots=True)
class RevenueIntelligenceService:
    aggregator: ForecastAggregator = ForecastAggregator()
    scenario_engine: ScenarioEngine = ScenarioEngine()
    rep_analyzer: RepPerformanceAnalyzer = RepPerformanceAnalyzer()
    backfill_runner: BackfillJobRunner = BackfillJobRunner()

    def scoring_settings(self, store: DealStore) -> ScoringSettings:
        return resolve_settings(store.load_settings_document())

    def default_settings(self) -> ScoringSettings:
        return default_settings()

    def update_settings(self, store: DealStore, raw: Mapping[str, Any]) -> ScoringSettings:
        # stored as given; resolution repairs it on every read
        store.save_settings_document(dict(raw))
        logger.info("ri.settings.updated", extra={"operation": "settings.update"})
        return resolve_settings(raw)

    def resolve_forecast(
        self,
        store: DealStore,
        *,
        period: str | None = None,
        owner_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        exclude_overdue: bool = False,
        now: datetime | None = None,
    ) -> ForecastRead:
        now, tz = self._clock(now)
        resolved = self._period(period, start_date, end_date, now, tz)
        computation = self.aggregator.compute(
            store,
            self.scoring_settings(store),
            resolved,
            now=now,
            owner_filter=owner_id,
            exclude_overdue=exclude_overdue,
            tz=tz,
        )
        totals = computation.totals
        return ForecastRead(
            **self._period_fields(resolved),
            summary=self._summary_read(totals),
            by_stage={
                stage: StageBreakdownRead(
                    count=bucket.count,
                    value=_whole(bucket.value),
                    weighted_value=_whole(bucket.weighted_value),
                )
                for stage, bucket in totals.by_stage.items()
            },
            deals=[self._scored_read(deal) for deal in computation.deals],
        )

    def score_deal(self, store: DealStore, opportunity_id: str, *, now: datetime | None = None) -> DealScoreRead:
        now, tz = self._clock(now)
        doc = store.get_opportunity(store.coerce_id(opportunity_id))
        if doc is None:
            raise OpportunityNotFoundError(opportunity_id)

        history = fetch_history(store, [doc], tz=tz)
        opportunity = normalize_opportunity(doc, now=now, history=history.get(str(doc["id"])), tz=tz)
        ages = account_ages(store, [opportunity], now=now, tz=tz)
        result = score_opportunity(
            opportunity,
            self.scoring_settings(store),
            now=now,
            account_age_days=ages.get(opportunity.account_id) if opportunity.account_id else None,
        )
        observe_scored(result.confidence)
        return DealScoreRead(
            opportunity_id=opportunity.id,
            deal_name=opportunity.title,
            stage=opportunity.stage,
            value=opportunity.amount,
            score=result.score,
            confidence=result.confidence,
            factors=[ScoreFactorRead.model_validate(item) for item in result.factors],
        )

    def run_scenario(self, store: DealStore, payload: ScenarioRequest, *, now: datetime | None = None) -> ScenarioRead:
        now, tz = self._clock(now)
        resolved = self._period(payload.period, payload.start_date, payload.end_date, now, tz)
        adjustments = [
            DealAdjustment(
                opportunity_id=item.opportunity_id,
                new_stage=item.new_stage,
                new_amount=item.new_amount,
                new_close_date=item.new_close_date,
            )
            for item in payload.adjustments
        ]
        computation = self.scenario_engine.run(
            store,
            self.scoring_settings(store),
            resolved,
            adjustments,
            now=now,
            owner_filter=payload.owner_id,
            exclude_overdue=payload.exclude_overdue,
            tz=tz,
        )
        return ScenarioRead(
            **self._period_fields(resolved),
            baseline=self._summary_read(computation.baseline),
            scenario=self._summary_read(computation.scenario),
            adjusted_deals=[self._scored_read(deal) for deal in computation.adjusted],
            delta=self._delta(computation.baseline, computation.scenario),
        )

    def rep_performance(
        self,
        store: DealStore,
        *,
        period: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        now: datetime | None = None,
    ) -> RepPerformanceReportRead:
        now, tz = self._clock(now)
        resolved = self._period(period, start_date, end_date, now, tz)
        report = self.rep_analyzer.analyze(store, resolved, now=now, tz=tz)
        return RepPerformanceReportRead(
            **self._period_fields(resolved),
            reps=[
                RepPerformanceRead(
                    owner_id=rep.owner_id,
                    total_deals=rep.total_deals,
                    open_deals=rep.open_deals,
                    closed_won=rep.closed_won,
                    closed_lost=rep.closed_lost,
                    total_value=_whole(rep.total_value),
                    won_value=_whole(rep.won_value),
                    lost_value=_whole(rep.lost_value),
                    pipeline_value=_whole(rep.pipeline_value),
                    avg_deal_size=_whole(rep.avg_deal_size),
                    win_rate=_rate(rep.win_rate),
                    forecasted_revenue=_whole(rep.forecasted_revenue),
                    performance_score=rep.performance_score,
                )
                for rep in report.reps
            ],
            summary=RepPerformanceSummaryRead(
                total_reps=len(report.reps),
                total_pipeline=_whole(report.total_pipeline),
                total_won=_whole(report.total_won),
                avg_win_rate=_rate(report.avg_win_rate),
            ),
        )

    def at_risk(
        self,
        store: DealStore,
        *,
        period: str | None = None,
        owner_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        exclude_overdue: bool = False,
        now: datetime | None = None,
    ) -> AtRiskRead:
        now, tz = self._clock(now)
        resolved = self._period(period, start_date, end_date, now, tz)
        settings = self.scoring_settings(store)
        computation = self.aggregator.compute(
            store,
            settings,
            resolved,
            now=now,
            owner_filter=owner_id,
            exclude_overdue=exclude_overdue,
            tz=tz,
            operation="at_risk",
        )
        report = build_at_risk(computation.totals.pipeline, settings.stale_panel, now=now, tz=tz)
        return AtRiskRead(
            **self._period_fields(resolved),
            no_activity_days=report.no_activity_days,
            stuck_in_stage_days=report.stuck_in_stage_days,
            overdue_count=len(report.overdue),
            no_activity_count=len(report.no_activity),
            stuck_count=len(report.stuck),
            rows=[
                AtRiskRowRead(
                    opportunity_id=row.deal.opportunity.id,
                    title=row.deal.opportunity.title,
                    stage=row.deal.opportunity.stage,
                    owner_id=row.deal.opportunity.owner_id,
                    amount=row.deal.opportunity.amount,
                    score=row.deal.score,
                    confidence=row.deal.confidence,
                    risk=row.risk,
                )
                for row in report.rows
            ],
        )

    def run_backfill(self, store: DealStore) -> BackfillResultRead:
        settings = get_settings()
        report = self.backfill_runner.run(
            store,
            batch_size=settings.ri_backfill_batch_size,
            scan_limit=settings.ri_backfill_scan_limit,
            tz=get_zone(settings.ri_timezone),
        )
        return BackfillResultRead(
            scanned=report.scanned,
            updated=report.updated,
            skipped=report.skipped,
            batches=report.batches,
            **dict(report.fixes),
        )

    def _clock(self, now: datetime | None) -> tuple[datetime, tzinfo]:
        return now or datetime.now(timezone.utc), get_zone(get_settings().ri_timezone)

    def _period(
        self,
        period: str | None,
        start_date: str | None,
        end_date: str | None,
        now: datetime,
        tz: tzinfo,
    ) -> ResolvedPeriod:
        return resolve_period(
            period or get_settings().ri_default_period,
            now,
            start_date=start_date,
            end_date=end_date,
            tz=tz,
        )

    def _period_fields(self, period: ResolvedPeriod) -> dict[str, Any]:
        return {
            "period": period.period,
            "start_date": period.start,
            "end_date": period.end,
            "end_exclusive": period.end_exclusive,
            "is_custom": period.is_custom,
        }

    def _summary_read(self, totals: ForecastTotals) -> ForecastSummaryRead:
        counts = totals.confidence_counts
        return ForecastSummaryRead(
            total_deals=totals.total_deals,
            total_pipeline=_whole(totals.total_pipeline),
            weighted_pipeline=_whole(totals.weighted_pipeline),
            closed_won=_whole(totals.closed_won),
            forecast=ForecastBandsRead(
                pessimistic=_whole(totals.pessimistic),
                likely=_whole(totals.likely),
                optimistic=_whole(totals.optimistic),
            ),
            confidence=ConfidenceCountsRead(high=counts["High"], medium=counts["Medium"], low=counts["Low"]),
        )

    def _delta(self, baseline: ForecastTotals, scenario: ForecastTotals) -> ScenarioDeltaRead:
        # rounded once, on the raw difference
        before, after = baseline.confidence_counts, scenario.confidence_counts
        return ScenarioDeltaRead(
            total_deals=scenario.total_deals - baseline.total_deals,
            total_pipeline=_whole(scenario.total_pipeline - baseline.total_pipeline),
            weighted_pipeline=_whole(scenario.weighted_pipeline - baseline.weighted_pipeline),
            closed_won=_whole(scenario.closed_won - baseline.closed_won),
            pessimistic=_whole(scenario.pessimistic - baseline.pessimistic),
            likely=_whole(scenario.likely - baseline.likely),
            optimistic=_whole(scenario.optimistic - baseline.optimistic),
            high=after["High"] - before["High"],
            medium=after["Medium"] - before["Medium"],
            low=after["Low"] - before["Low"],
        )

    def _scored_read(self, deal: ScoredOpportunity) -> ScoredOpportunityRead:
        opportunity = deal.opportunity
        return ScoredOpportunityRead(
            id=opportunity.id,
            account_id=opportunity.account_id,
            title=opportunity.title,
            amount=opportunity.amount,
            stage=opportunity.stage,
            owner_id=opportunity.owner_id,
            close_date=opportunity.close_date,
            forecasted_close_date=opportunity.forecasted_close_date,
            created_at=opportunity.created_at,
            last_activity_at=opportunity.last_activity_at,
            stage_changed_at=opportunity.stage_changed_at,
            days_in_stage=opportunity.days_in_stage,
            deal_age_days=opportunity.deal_age_days,
            activity_recency_days=opportunity.activity_recency_days,
            account_age_days=deal.account_age_days,
            score=deal.score,
            confidence=deal.confidence,
            factors=[ScoreFactorRead.model_validate(item) for item in deal.factors],
            adjusted=deal.adjusted,
        )


revenue_intelligence_service = RevenueIntelligenceService()
