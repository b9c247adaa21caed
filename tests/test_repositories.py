from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.core.database import Base
from leadflow.crm.errors import ConflictError
from leadflow.crm.models import CRMActivityLog, CRMLead, CRMUser
from leadflow.crm.repositories import ActivityRepository, LeadRepository, LeadVersion
from leadflow.crm.roles import Role
from leadflow.crm.statuses import LeadKind, SpokeStatus


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


@pytest.fixture()
def sales_user_id(db_session: Session) -> uuid.UUID:
    user = CRMUser(id=uuid.uuid4(), name="Repo Sales", role=Role.SALES.value)
    db_session.add(user)
    db_session.commit()
    return user.id


@pytest.fixture()
def lead_id(db_session: Session, sales_user_id: uuid.UUID) -> uuid.UUID:
    lead = CRMLead(
        id=uuid.uuid4(),
        name="Repo Dealer",
        kind=LeadKind.DEALER.value,
        status=SpokeStatus.FOLLOW_UP.value,
        assigned_to=sales_user_id,
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )
    db_session.add(lead)
    db_session.commit()
    return lead.id


def test_save_lead_bumps_row_version(db_session: Session, lead_id: uuid.UUID, sales_user_id: uuid.UUID) -> None:
    repository = LeadRepository()

    saved = repository.save_lead(
        db_session,
        lead_id,
        {"status": SpokeStatus.KYC_PENDING.value},
        LeadVersion(row_version=1, status=SpokeStatus.FOLLOW_UP.value, assigned_to=sales_user_id),
    )
    db_session.commit()

    assert saved.status == SpokeStatus.KYC_PENDING.value
    assert saved.row_version == 2
    assert saved.updated_at is not None


def test_second_write_with_the_same_version_conflicts(
    db_session: Session,
    lead_id: uuid.UUID,
    sales_user_id: uuid.UUID,
) -> None:
    repository = LeadRepository()
    expected = LeadVersion(row_version=1, status=SpokeStatus.FOLLOW_UP.value, assigned_to=sales_user_id)

    repository.save_lead(db_session, lead_id, {"status": SpokeStatus.KYC_PENDING.value}, expected)
    db_session.commit()

    with pytest.raises(ConflictError) as exc_info:
        repository.save_lead(db_session, lead_id, {"status": SpokeStatus.REJECTED.value}, expected)

    assert exc_info.value.details["expected_row_version"] == 1
    stored = repository.get_lead(db_session, lead_id)
    assert stored is not None
    assert stored.status == SpokeStatus.KYC_PENDING.value
    assert stored.row_version == 2


def test_changed_assignee_conflicts_even_with_matching_version(
    db_session: Session,
    lead_id: uuid.UUID,
) -> None:
    repository = LeadRepository()

    with pytest.raises(ConflictError):
        repository.save_lead(
            db_session,
            lead_id,
            {"status": SpokeStatus.KYC_PENDING.value},
            LeadVersion(row_version=1, status=SpokeStatus.FOLLOW_UP.value, assigned_to=None),
        )

    stored = repository.get_lead(db_session, lead_id)
    assert stored is not None
    assert stored.status == SpokeStatus.FOLLOW_UP.value
    assert stored.row_version == 1


def test_activity_since_is_compared_in_utc(db_session: Session, sales_user_id: uuid.UUID) -> None:
    early = CRMActivityLog(
        id=uuid.uuid4(),
        user_id=sales_user_id,
        timestamp=datetime(2026, 10, 13, 9, 0, tzinfo=timezone.utc),
        activity_type="Call",
        title="Early call",
    )
    late = CRMActivityLog(
        id=uuid.uuid4(),
        user_id=sales_user_id,
        timestamp=datetime(2026, 10, 13, 11, 0, tzinfo=timezone.utc),
        activity_type="Call",
        title="Late call",
    )
    db_session.add_all([early, late])
    db_session.commit()

    since = datetime(2026, 10, 13, 15, 0, tzinfo=ZoneInfo("Asia/Kolkata"))
    entries = ActivityRepository().list_activity(db_session, since=since)

    assert [entry.title for entry in entries] == ["Late call"]
