from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from revintel.core.auth import AuthUser, require_admin, require_authenticated
from revintel.core.database import get_db
from revintel.revenue_intelligence.errors import InvalidIdentifierError, OpportunityNotFoundError
from revintel.revenue_intelligence.periods import ForecastPeriod
from revintel.revenue_intelligence.schemas import (
    AtRiskRead,
    BackfillResultRead,
    DealScoreRead,
    ForecastRead,
    RepPerformanceReportRead,
    ScenarioRead,
    ScenarioRequest,
)
from revintel.revenue_intelligence.service import revenue_intelligence_service
from revintel.revenue_intelligence.settings import ScoringSettings
from revintel.revenue_intelligence.store import DealStore, SqlDealStore


router = APIRouter(prefix="/api/crm/revenue-intelligence", tags=["revenue-intelligence"])


def get_deal_store(db: Session = Depends(get_db)) -> DealStore:
    return SqlDealStore(db)


@router.get("/forecast", response_model=ForecastRead)
def get_forecast(
    period: ForecastPeriod | None = Query(default=None),
    owner_id: str | None = Query(default=None),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    exclude_overdue: bool = Query(default=False),
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_authenticated),
) -> ForecastRead:
    return revenue_intelligence_service.resolve_forecast(
        store,
        period=period,
        owner_id=owner_id,
        start_date=start_date,
        end_date=end_date,
        exclude_overdue=exclude_overdue,
    )


@router.get("/deal-score/{opportunity_id}", response_model=DealScoreRead)
def get_deal_score(
    opportunity_id: str,
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_authenticated),
) -> DealScoreRead:
    try:
        return revenue_intelligence_service.score_deal(store, opportunity_id)
    except InvalidIdentifierError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_opportunity_id")
    except OpportunityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="opportunity_not_found")


@router.post("/scenario", response_model=ScenarioRead)
def run_scenario(
    payload: ScenarioRequest,
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_authenticated),
) -> ScenarioRead:
    return revenue_intelligence_service.run_scenario(store, payload)


@router.get("/rep-performance", response_model=RepPerformanceReportRead)
def get_rep_performance(
    period: ForecastPeriod | None = Query(default=None),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_authenticated),
) -> RepPerformanceReportRead:
    return revenue_intelligence_service.rep_performance(
        store,
        period=period,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/at-risk", response_model=AtRiskRead)
def get_at_risk(
    period: ForecastPeriod | None = Query(default=None),
    owner_id: str | None = Query(default=None),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
    exclude_overdue: bool = Query(default=False),
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_authenticated),
) -> AtRiskRead:
    return revenue_intelligence_service.at_risk(
        store,
        period=period,
        owner_id=owner_id,
        start_date=start_date,
        end_date=end_date,
        exclude_overdue=exclude_overdue,
    )


@router.get("/settings", response_model=ScoringSettings)
def get_scoring_settings(
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_authenticated),
) -> ScoringSettings:
    return revenue_intelligence_service.scoring_settings(store)


@router.get("/settings/defaults", response_model=ScoringSettings)
def get_default_scoring_settings(_: AuthUser = Depends(require_authenticated)) -> ScoringSettings:
    return revenue_intelligence_service.default_settings()


@router.put("/settings", response_model=ScoringSettings)
def put_scoring_settings(
    payload: dict[str, Any] = Body(...),
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_admin),
) -> ScoringSettings:
    return revenue_intelligence_service.update_settings(store, payload)


@router.post("/backfill", response_model=BackfillResultRead)
def run_backfill(
    store: DealStore = Depends(get_deal_store),
    _: AuthUser = Depends(require_admin),
) -> BackfillResultRead:
    return revenue_intelligence_service.run_backfill(store)
