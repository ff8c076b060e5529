from __future__ import annotations


class RevenueIntelligenceError(Exception):
    """Base error for the revenue intelligence engine."""


class InvalidIdentifierError(RevenueIntelligenceError):
    def __init__(self, raw: object) -> None:
        self.raw = raw
        super().__init__(f"invalid opportunity id: {raw!r}")


class OpportunityNotFoundError(RevenueIntelligenceError):
    def __init__(self, opportunity_id: object) -> None:
        self.opportunity_id = opportunity_id
        super().__init__(f"opportunity not found: {opportunity_id}")


class HistoryUnavailableError(RevenueIntelligenceError):
    """Raised by stores when the history aggregation cannot be served."""
