from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.core.config import get_settings
from leadflow.core.database import Base, get_db
from leadflow.crm.api import get_current_user as crm_get_current_user
from leadflow.crm.models import CRMLead, CRMUser
from leadflow.crm.roles import ActorUser, Role
from leadflow.crm.statuses import LeadKind, SpokeStatus
from leadflow.logging import JsonLogFormatter
from leadflow.main import app


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
def sales_user_id(db_session: Session) -> uuid.UUID:
    user = CRMUser(id=uuid.uuid4(), name="Sam Sales", role=Role.SALES.value)
    db_session.add(user)
    db_session.commit()
    return user.id


@pytest.fixture()
def client(db_session: Session, sales_user_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id=sales_user_id,
            role=Role.SALES,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_lead(db_session: Session, owner: uuid.UUID, status: str = SpokeStatus.INVITED) -> uuid.UUID:
    lead = CRMLead(
        id=uuid.uuid4(),
        name="Log Dealer",
        kind=LeadKind.DEALER.value,
        status=status,
        assigned_to=owner,
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )
    db_session.add(lead)
    db_session.commit()
    return lead.id


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/crm/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "leadflow.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_transition_context(
    client: TestClient,
    db_session: Session,
    sales_user_id: uuid.UUID,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    lead_id = _create_lead(db_session, sales_user_id)

    response = client.post(
        f"/api/crm/leads/{lead_id}/transition",
        json={"target_status": "Follow Up", "row_version": 1},
        headers={"X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "leadflow.crm.service"]
    assert any(
        record.getMessage() == "lead.transitioned"
        and getattr(record, "lead_id", None) == str(lead_id)
        and getattr(record, "from_status", None) == "Invited"
        and getattr(record, "to_status", None) == "Follow Up"
        and getattr(record, "actor_role", None) == "Sales"
        and getattr(record, "correlation_id", None) == "abc-123"
        for record in records
    )


def test_rejected_transition_is_logged_as_warning(
    client: TestClient,
    db_session: Session,
    sales_user_id: uuid.UUID,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    lead_id = _create_lead(db_session, sales_user_id)

    response = client.post(
        f"/api/crm/leads/{lead_id}/transition",
        json={"target_status": "Closed", "row_version": 1},
        headers={"X-Correlation-Id": "rej-1"},
    )
    assert response.status_code == 422

    assert any(
        record.name == "leadflow.crm.service"
        and record.levelno == logging.WARNING
        and record.getMessage() == "lead.transition_rejected"
        and getattr(record, "reason", None) == "invalid_transition"
        and getattr(record, "correlation_id", None) == "rej-1"
        for record in caplog.records
    )


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "leadflow.crm.service",
            "levelname": "INFO",
            "msg": "lead.transitioned",
            "lead_id": "lead-1",
            "to_status": "Follow Up",
            "correlation_id": "fmt-1",
            "password": "hunter2",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "lead.transitioned"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"] == {"lead_id": "lead-1", "to_status": "Follow Up"}
