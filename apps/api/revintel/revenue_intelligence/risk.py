from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Literal

from revintel.revenue_intelligence.forecast import ScoredOpportunity
from revintel.revenue_intelligence.settings import StalePanelSettings
from revintel.revenue_intelligence.temporal import local_day_start, whole_days_since


RiskKind = Literal["Overdue", "No activity", "Stuck in stage"]

MAX_RISK_ROWS = 15


@dataclass(frozen=True, slots=True)
class RiskRow:
    deal: ScoredOpportunity
    risk: RiskKind


@dataclass(slots=True)
class AtRiskReport:
    no_activity_days: float
    stuck_in_stage_days: float
    overdue: list[ScoredOpportunity] = field(default_factory=list)
    no_activity: list[ScoredOpportunity] = field(default_factory=list)
    stuck: list[ScoredOpportunity] = field(default_factory=list)
    rows: list[RiskRow] = field(default_factory=list)


def build_at_risk(
    pipeline: Sequence[ScoredOpportunity],
    thresholds: StalePanelSettings,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
    limit: int = MAX_RISK_ROWS,
) -> AtRiskReport:
    """Flag open deals that are overdue, gone quiet, or stuck in their stage.

    A deal shows up once in ``rows``, under the first of Overdue, No activity,
    Stuck in stage that applies.
    """
    report = AtRiskReport(
        no_activity_days=thresholds.no_activity_days,
        stuck_in_stage_days=thresholds.stuck_in_stage_days,
    )
    today_start = local_day_start(now, tz)

    for deal in pipeline:
        opportunity = deal.opportunity
        close_date = opportunity.effective_close_date
        if close_date is not None and close_date < today_start:
            report.overdue.append(deal)
        last_activity = opportunity.last_activity_at
        if last_activity is not None and whole_days_since(last_activity, now) >= thresholds.no_activity_days:
            report.no_activity.append(deal)
        if opportunity.days_in_stage is not None and opportunity.days_in_stage >= thresholds.stuck_in_stage_days:
            report.stuck.append(deal)

    seen: set[str] = set()
    for kind, deals in (("Overdue", report.overdue), ("No activity", report.no_activity), ("Stuck in stage", report.stuck)):
        for deal in deals:
            if deal.opportunity.id in seen:
                continue
            seen.add(deal.opportunity.id)
            report.rows.append(RiskRow(deal=deal, risk=kind))
    del report.rows[limit:]
    return report
