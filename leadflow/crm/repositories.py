from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from leadflow.crm.errors import ConflictError, NotFoundError
from leadflow.crm.models import CRMActivityLog, CRMDashboardConfig, CRMLead, CRMTask, CRMUser, utcnow
from leadflow.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    DashboardConfigRead,
    DashboardConfigUpsert,
    LeadRead,
    TaskRead,
    UserRead,
)
from leadflow.crm.statuses import LeadKind


@dataclass(frozen=True, slots=True)
class LeadVersion:
    """What the caller last read; a lead write only lands if all three still match."""

    row_version: int
    status: str
    assigned_to: uuid.UUID | None


class UserRepository:
    def list_users(self, session: Session) -> list[UserRead]:
        rows = session.scalars(select(CRMUser).order_by(CRMUser.name, CRMUser.id)).all()
        return [UserRead.model_validate(row) for row in rows]

    def get_user(self, session: Session, user_id: uuid.UUID) -> UserRead | None:
        row = session.get(CRMUser, user_id)
        return UserRead.model_validate(row) if row is not None else None


class LeadRepository:
    def list_leads(self, session: Session, kind: LeadKind | None = None) -> list[LeadRead]:
        query = select(CRMLead)
        if kind is not None:
            query = query.where(CRMLead.kind == kind.value)
        rows = session.scalars(query.order_by(CRMLead.created_at, CRMLead.id)).all()
        return [LeadRead.model_validate(row) for row in rows]

    def list_anchors(self, session: Session) -> list[LeadRead]:
        return self.list_leads(session, LeadKind.ANCHOR)

    def get_lead(self, session: Session, lead_id: uuid.UUID) -> LeadRead | None:
        row = session.get(CRMLead, lead_id)
        return LeadRead.model_validate(row) if row is not None else None

    def save_lead(
        self,
        session: Session,
        lead_id: uuid.UUID,
        values: dict[str, Any],
        expected: LeadVersion,
    ) -> LeadRead:
        """Conditionally write ``values`` and bump ``row_version``.

        Raises ``ConflictError`` when the stored row no longer matches
        ``expected``. Does not commit.
        """
        assigned_clause = (
            CRMLead.assigned_to.is_(None)
            if expected.assigned_to is None
            else CRMLead.assigned_to == expected.assigned_to
        )
        payload = dict(values)
        payload["updated_at"] = payload.get("updated_at") or utcnow()
        payload["row_version"] = CRMLead.row_version + 1

        result = session.execute(
            update(CRMLead)
            .where(
                and_(
                    CRMLead.id == lead_id,
                    CRMLead.row_version == expected.row_version,
                    CRMLead.status == expected.status,
                    assigned_clause,
                )
            )
            .values(**payload)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            session.rollback()
            raise ConflictError(
                "lead changed since it was read",
                details={"lead_id": str(lead_id), "expected_row_version": expected.row_version},
            )

        row = session.scalar(
            select(CRMLead).where(CRMLead.id == lead_id).execution_options(populate_existing=True)
        )
        if row is None:
            session.rollback()
            raise NotFoundError("lead", lead_id)
        return LeadRead.model_validate(row)


class TaskRepository:
    def list_tasks(self, session: Session) -> list[TaskRead]:
        rows = session.scalars(select(CRMTask).order_by(CRMTask.due_date, CRMTask.id)).all()
        return [TaskRead.model_validate(row) for row in rows]


class ActivityRepository:
    def list_activity(self, session: Session, since: datetime | None = None) -> list[ActivityRead]:
        query = select(CRMActivityLog)
        if since is not None:
            query = query.where(CRMActivityLog.timestamp >= _to_utc_param(since))
        rows = session.scalars(query.order_by(CRMActivityLog.timestamp.desc(), CRMActivityLog.id)).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def list_for_lead(self, session: Session, lead_id: uuid.UUID) -> list[ActivityRead]:
        rows = session.scalars(
            select(CRMActivityLog)
            .where(or_(CRMActivityLog.lead_id == lead_id, CRMActivityLog.anchor_id == lead_id))
            .order_by(CRMActivityLog.timestamp.desc(), CRMActivityLog.id)
        ).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def append(self, session: Session, entry: ActivityCreate) -> ActivityRead:
        row = CRMActivityLog(**entry.model_dump())
        session.add(row)
        session.flush()
        return ActivityRead.model_validate(row)


class DashboardConfigRepository:
    def get_config(self, session: Session, user_id: uuid.UUID) -> DashboardConfigRead | None:
        row = session.scalar(select(CRMDashboardConfig).where(CRMDashboardConfig.user_id == user_id))
        return DashboardConfigRead.model_validate(row) if row is not None else None

    def list_configs(self, session: Session) -> list[DashboardConfigRead]:
        rows = session.scalars(select(CRMDashboardConfig).order_by(CRMDashboardConfig.name, CRMDashboardConfig.id)).all()
        return [DashboardConfigRead.model_validate(row) for row in rows]

    def save_config(
        self,
        session: Session,
        user_id: uuid.UUID,
        config: DashboardConfigUpsert,
        *,
        updated_by: uuid.UUID,
        expected_row_version: int | None = None,
    ) -> DashboardConfigRead:
        """Insert or overwrite the config owned by ``user_id``. Does not commit.

        With ``expected_row_version`` the overwrite is conditioned on it and a
        mismatch raises ``ConflictError``.
        """
        payload = config.model_dump(mode="json")
        row = session.scalar(select(CRMDashboardConfig).where(CRMDashboardConfig.user_id == user_id))
        if row is None:
            row = CRMDashboardConfig(user_id=user_id, updated_by=updated_by, **payload)
            session.add(row)
            session.flush()
            return DashboardConfigRead.model_validate(row)

        conditions = [CRMDashboardConfig.id == row.id]
        if expected_row_version is not None:
            conditions.append(CRMDashboardConfig.row_version == expected_row_version)
        result = session.execute(
            update(CRMDashboardConfig)
            .where(and_(*conditions))
            .values(
                **payload,
                updated_by=updated_by,
                updated_at=utcnow(),
                row_version=CRMDashboardConfig.row_version + 1,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            session.rollback()
            raise ConflictError(
                "dashboard config changed since it was read",
                details={"user_id": str(user_id), "expected_row_version": expected_row_version},
            )
        refreshed = session.scalar(
            select(CRMDashboardConfig)
            .where(CRMDashboardConfig.id == row.id)
            .execution_options(populate_existing=True)
        )
        return DashboardConfigRead.model_validate(refreshed)


def _to_utc_param(value: datetime) -> datetime:
    # Stored timestamps are UTC; SQLite compares them as plain text.
    return value.astimezone(timezone.utc) if value.tzinfo is not None else value
