from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from revintel.revenue_intelligence.periods import ForecastPeriod


Confidence = Literal["High", "Medium", "Low"]
RiskKind = Literal["Overdue", "No activity", "Stuck in stage"]


class ScoreFactorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    factor: str
    impact: int | float
    description: str


class ScoredOpportunityRead(BaseModel):
    id: str
    account_id: str | None
    title: str | None
    amount: Decimal | str
    stage: str | None
    owner_id: str | None
    close_date: datetime | None
    forecasted_close_date: datetime | None
    created_at: datetime | None
    last_activity_at: datetime | None
    stage_changed_at: datetime | None
    days_in_stage: int | None
    deal_age_days: int | None
    activity_recency_days: int | None
    account_age_days: int | None
    score: int
    confidence: Confidence
    factors: list[ScoreFactorRead] = Field(default_factory=list)
    adjusted: bool = False


class ForecastBandsRead(BaseModel):
    pessimistic: Decimal | str
    likely: Decimal | str
    optimistic: Decimal | str


class ConfidenceCountsRead(BaseModel):
    high: int
    medium: int
    low: int


class ForecastSummaryRead(BaseModel):
    total_deals: int
    total_pipeline: Decimal | str
    weighted_pipeline: Decimal | str
    closed_won: Decimal | str
    forecast: ForecastBandsRead
    confidence: ConfidenceCountsRead


class StageBreakdownRead(BaseModel):
    count: int
    value: Decimal | str
    weighted_value: Decimal | str


class PeriodRead(BaseModel):
    period: str
    start_date: datetime
    end_date: datetime
    end_exclusive: datetime
    is_custom: bool


class ForecastRead(PeriodRead):
    summary: ForecastSummaryRead
    by_stage: dict[str, StageBreakdownRead] = Field(default_factory=dict)
    deals: list[ScoredOpportunityRead] = Field(default_factory=list)


class DealScoreRead(BaseModel):
    opportunity_id: str
    deal_name: str | None
    stage: str | None
    value: Decimal | str
    score: int
    confidence: Confidence
    factors: list[ScoreFactorRead] = Field(default_factory=list)


class ScenarioAdjustmentCreate(BaseModel):
    opportunity_id: str = Field(min_length=1)
    new_stage: str | None = None
    new_amount: Decimal | None = Field(default=None, ge=Decimal("0"))
    new_close_date: str | None = None


class ScenarioRequest(BaseModel):
    period: ForecastPeriod | None = None
    start_date: str | None = None
    end_date: str | None = None
    owner_id: str | None = None
    exclude_overdue: bool = False
    adjustments: list[ScenarioAdjustmentCreate] = Field(default_factory=list)


class ScenarioDeltaRead(BaseModel):
    total_deals: int
    total_pipeline: Decimal | str
    weighted_pipeline: Decimal | str
    closed_won: Decimal | str
    pessimistic: Decimal | str
    likely: Decimal | str
    optimistic: Decimal | str
    high: int
    medium: int
    low: int


class ScenarioRead(PeriodRead):
    baseline: ForecastSummaryRead
    scenario: ForecastSummaryRead
    adjusted_deals: list[ScoredOpportunityRead] = Field(default_factory=list)
    delta: ScenarioDeltaRead


class RepPerformanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner_id: str
    total_deals: int
    open_deals: int
    closed_won: int
    closed_lost: int
    total_value: Decimal | str
    won_value: Decimal | str
    lost_value: Decimal | str
    pipeline_value: Decimal | str
    avg_deal_size: Decimal | str
    win_rate: float
    forecasted_revenue: Decimal | str
    performance_score: int


class RepPerformanceSummaryRead(BaseModel):
    total_reps: int
    total_pipeline: Decimal | str
    total_won: Decimal | str
    avg_win_rate: float


class RepPerformanceReportRead(PeriodRead):
    reps: list[RepPerformanceRead] = Field(default_factory=list)
    summary: RepPerformanceSummaryRead


class AtRiskRowRead(BaseModel):
    opportunity_id: str
    title: str | None
    stage: str | None
    owner_id: str | None
    amount: Decimal | str
    score: int
    confidence: Confidence
    risk: RiskKind


class AtRiskRead(PeriodRead):
    no_activity_days: int | float
    stuck_in_stage_days: int | float
    overdue_count: int
    no_activity_count: int
    stuck_count: int
    rows: list[AtRiskRowRead] = Field(default_factory=list)


class BackfillResultRead(BaseModel):
    ok: bool = True
    scanned: int
    updated: int
    skipped: int
    batches: int
    fixed_last_activity_at: int = 0
    fixed_stage_changed_at: int = 0
    normalized_forecasted_close_date: int = 0
    normalized_close_date: int = 0
    normalized_created_at: int = 0
    normalized_updated_at: int = 0
    normalized_last_activity_at: int = 0
    normalized_stage_changed_at: int = 0
