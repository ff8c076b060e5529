"""Additive, explainable opportunity scoring.

Each factor is an ordered list of ``(predicate, impact, label, description)``
rules. Rules are checked top to bottom and the first match is the only one
applied for that factor.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

from revintel.revenue_intelligence.normalizer import CLOSED_LOST_STAGES, CLOSED_WON_STAGES, NormalizedOpportunity
from revintel.revenue_intelligence.settings import Number, ScoringSettings
from revintel.revenue_intelligence.temporal import NO_CLOSE_DATE_DAYS, days_until


Confidence = Literal["High", "Medium", "Low"]

BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

HIGH_CONFIDENCE_SCORE = 70
HIGH_CONFIDENCE_MIN_FACTORS = 3
LOW_CONFIDENCE_SCORE = 40
LOW_CONFIDENCE_MIN_NEGATIVE = 3

LATE_STAGES = frozenset({"Negotiation", "Proposal"})

Rule = tuple[Callable[[Any], bool], Number, str, str]


@dataclass(frozen=True, slots=True)
class ScoreFactor:
    factor: str
    impact: Number
    description: str


@dataclass(frozen=True, slots=True)
class DealScore:
    score: int
    confidence: Confidence
    factors: tuple[ScoreFactor, ...]


def _fmt(value: Number) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _first_match(value: Any, rules: Sequence[Rule]) -> ScoreFactor | None:
    for predicate, impact, label, description in rules:
        if predicate(value):
            return ScoreFactor(factor=label, impact=impact, description=description)
    return None


def _stage_rules(settings: ScoringSettings, stage: str) -> list[Rule]:
    impact = settings.stage_weights.get(stage, 0)
    direction = "increases" if impact > 0 else "decreases"
    return [(lambda _: True, impact, "Deal Stage", f"{stage} stage {direction} likelihood")]


def _deal_age_rules(settings: ScoringSettings) -> list[Rule]:
    bands = settings.deal_age
    return [
        (lambda d: d > bands.stale_days, bands.stale_impact, "Deal Age", f"Deal is stale (>{_fmt(bands.stale_days)} days old)"),
        (lambda d: d > bands.aging_days, bands.aging_impact, "Deal Age", f"Deal is aging (>{_fmt(bands.aging_days)} days old)"),
        (lambda d: d > bands.warn_days, bands.warn_impact, "Deal Age", f"Deal is maturing (>{_fmt(bands.warn_days)} days old)"),
    ]


def _activity_rules(settings: ScoringSettings) -> list[Rule]:
    # Recency between warm_days and cool_days matches nothing.
    bands = settings.activity
    return [
        (lambda d: d <= bands.hot_days, bands.hot_impact, "Recent Activity", f"Active engagement within last {_fmt(bands.hot_days)} days"),
        (lambda d: d <= bands.warm_days, bands.warm_impact, "Recent Activity", f"Recent engagement within {_fmt(bands.warm_days)} days"),
        (lambda d: d > bands.cold_days, bands.cold_impact, "Activity Gap", f"No activity for over {_fmt(bands.cold_days)} days"),
        (lambda d: d > bands.cool_days, bands.cool_impact, "Activity Gap", f"No activity for over {_fmt(bands.cool_days)} days"),
    ]


def _account_rules(settings: ScoringSettings) -> list[Rule]:
    bands = settings.account
    return [
        (lambda d: d > bands.mature_days, bands.mature_impact, "Account Maturity", f"Established account (>{_fmt(bands.mature_days)} days)"),
        (lambda d: d < bands.new_days, bands.new_impact, "New Account", f"Very new account (<{_fmt(bands.new_days)} days)"),
    ]


def _stage_duration_rules(settings: ScoringSettings) -> list[Rule]:
    bands = settings.stage_duration
    return [
        (lambda d: d > bands.stuck_days, bands.stuck_impact, "Stage Duration", f"Stuck in stage for >{_fmt(bands.stuck_days)} days"),
        (lambda d: d > bands.warn_days, bands.warn_impact, "Stage Duration", f"In stage for >{_fmt(bands.warn_days)} days"),
    ]


def _close_date_rules(settings: ScoringSettings, stage: str | None) -> list[Rule]:
    bands = settings.close_date
    return [
        (lambda d: d < 0, bands.overdue_impact, "Overdue Close Date", "Close date has passed"),
        (
            lambda d: d <= bands.closing_soon_days and stage in LATE_STAGES,
            bands.closing_soon_impact,
            "Closing Soon",
            f"Close date within {_fmt(bands.closing_soon_days)} days and in late stage",
        ),
        (
            lambda d: d <= bands.closing_soon_warm_days and stage == "Negotiation",
            bands.closing_soon_warm_impact,
            "Closing Soon",
            f"Close date within {_fmt(bands.closing_soon_warm_days)} days and in negotiation",
        ),
    ]


def _confidence(score: float, factors: Sequence[ScoreFactor]) -> Confidence:
    negative = sum(1 for item in factors if item.impact < 0)
    if score >= HIGH_CONFIDENCE_SCORE and len(factors) >= HIGH_CONFIDENCE_MIN_FACTORS:
        return "High"
    if score < LOW_CONFIDENCE_SCORE or negative >= LOW_CONFIDENCE_MIN_NEGATIVE:
        return "Low"
    return "Medium"


def score_opportunity(
    opportunity: NormalizedOpportunity,
    settings: ScoringSettings,
    *,
    now: datetime,
    account_age_days: int | None = None,
    deal_age_days: int | None = None,
    activity_recency_days: int | None = None,
) -> DealScore:
    """Score one opportunity. Pure: same inputs and ``now`` give the same result."""
    if deal_age_days is None:
        deal_age_days = opportunity.deal_age_days
    if activity_recency_days is None:
        activity_recency_days = opportunity.activity_recency_days

    stage = opportunity.stage
    close_date = opportunity.effective_close_date
    days_to_close = days_until(close_date, now) if close_date is not None else NO_CLOSE_DATE_DAYS
    terminal = (stage or "").strip() in CLOSED_WON_STAGES | CLOSED_LOST_STAGES

    evaluations: list[tuple[Any, list[Rule]]] = [
        (stage or "new", _stage_rules(settings, stage or "new")),
        (deal_age_days, _deal_age_rules(settings)),
        (activity_recency_days, _activity_rules(settings)),
        (account_age_days, _account_rules(settings)),
        (None if terminal else opportunity.days_in_stage, _stage_duration_rules(settings)),
        (days_to_close, _close_date_rules(settings, stage)),
    ]

    score: float = BASE_SCORE
    factors: list[ScoreFactor] = []
    for value, rules in evaluations:
        if value is None:
            continue
        match = _first_match(value, rules)
        if match is None or match.impact == 0:
            continue
        score += match.impact
        factors.append(match)

    clamped = min(MAX_SCORE, max(MIN_SCORE, score))
    confidence = _confidence(clamped, factors)
    rounded = int(Decimal(str(clamped)).to_integral_value(rounding=ROUND_HALF_UP))
    return DealScore(score=rounded, confidence=confidence, factors=tuple(factors))
