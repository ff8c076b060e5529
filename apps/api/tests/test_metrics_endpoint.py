from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from revintel.core.auth import AuthUser, get_current_user as auth_get_current_user
from revintel.core.config import get_settings
from revintel.core.database import Base, get_db
from revintel.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["user", "system.metrics.read"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_forecast_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    forecast = client.get("/api/crm/revenue-intelligence/forecast", params={"period": "current_quarter"})
    assert forecast.status_code == 200

    scenario = client.post("/api/crm/revenue-intelligence/scenario", json={"period": "current_quarter"})
    assert scenario.status_code == 200

    missing = client.get(f"/api/crm/revenue-intelligence/deal-score/{uuid.uuid4()}")
    assert missing.status_code == 404

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "ri_forecasts_total" in body
    assert "ri_backfill_duration_seconds" in body

    assert 'path="/health"' in body
    assert 'path="/api/crm/revenue-intelligence/deal-score/{id}"' in body
    assert 'operation="forecast"' in body
    assert 'operation="scenario"' in body


def test_metrics_endpoint_requires_role(client: TestClient) -> None:
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="rep-1", roles=["user"])

    response = client.get("/metrics")

    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
