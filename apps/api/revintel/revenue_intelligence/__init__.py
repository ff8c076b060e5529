from revintel.revenue_intelligence.api import router
from revintel.revenue_intelligence.errors import (
    HistoryUnavailableError,
    InvalidIdentifierError,
    OpportunityNotFoundError,
    RevenueIntelligenceError,
)
from revintel.revenue_intelligence.periods import ResolvedPeriod, resolve_period
from revintel.revenue_intelligence.scoring import DealScore, ScoreFactor, score_opportunity
from revintel.revenue_intelligence.service import RevenueIntelligenceService, revenue_intelligence_service
from revintel.revenue_intelligence.settings import ScoringSettings, resolve_settings
from revintel.revenue_intelligence.store import DealStore, InMemoryDealStore, SqlDealStore

__all__ = [
    "router",
    "RevenueIntelligenceError",
    "InvalidIdentifierError",
    "OpportunityNotFoundError",
    "HistoryUnavailableError",
    "ResolvedPeriod",
    "resolve_period",
    "DealScore",
    "ScoreFactor",
    "score_opportunity",
    "RevenueIntelligenceService",
    "revenue_intelligence_service",
    "ScoringSettings",
    "resolve_settings",
    "DealStore",
    "InMemoryDealStore",
    "SqlDealStore",
]
