from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from revintel.core.auth import AuthUser, get_current_user
from revintel.core.config import get_settings
from revintel.core.database import Base, get_db
from revintel.crm.models import CRMOpportunity
from revintel.logging import JsonLogFormatter
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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="ops-1", roles=["user", "admin"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(
        f"/api/crm/revenue-intelligence/deal-score/{uuid.uuid4()}",
        headers={"X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "revintel.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/revenue-intelligence/deal-score/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_backfill_logs_include_counters_and_correlation_id(
    client: TestClient,
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    now = datetime.now(timezone.utc)
    db_session.add(CRMOpportunity(title="Legacy", stage="Qualified", created_at=now - timedelta(days=20), updated_at=now))
    db_session.commit()

    response = client.post("/api/crm/revenue-intelligence/backfill", headers={"X-Correlation-Id": "abc-456"})
    assert response.status_code == 200

    backfill_records = [record for record in caplog.records if record.name == "revintel.ri.backfill"]
    assert [record.getMessage() for record in backfill_records] == [
        "ri.backfill.started",
        "ri.backfill.batch",
        "ri.backfill.finished",
    ]
    finished = backfill_records[-1]
    assert finished.status == "Succeeded"
    assert finished.scanned == 1
    assert finished.updated == 1
    assert all(getattr(record, "correlation_id", None) == "abc-456" for record in backfill_records)


def test_json_formatter_keeps_only_known_fields() -> None:
    record = logging.LogRecord("revintel.test", logging.INFO, __file__, 1, "ri.backfill.batch", None, None)
    record.batch = 2
    record.password = "hunter2"
    record.correlation_id = "corr-json-1"
    record.error = "x" * 600

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "ri.backfill.batch"
    assert payload["logger"] == "revintel.test"
    assert payload["correlation_id"] == "corr-json-1"
    assert set(payload["fields"]) == {"batch", "error"}
    assert len(payload["fields"]["error"]) == 500
