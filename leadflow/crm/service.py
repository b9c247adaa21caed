from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.orm import Session

from leadflow import audit, events
from leadflow.core.config import get_settings
from leadflow.crm.achievement import apply_external_achievements, build_report, summarize_rows
from leadflow.crm.errors import ConflictError, InvalidTransitionError, LeadflowError, NotFoundError, UnauthorizedError
from leadflow.crm.lifecycle import DOCS_PENDING, allowed_transitions, apply_transition
from leadflow.crm.models import utcnow
from leadflow.crm.repositories import (
    ActivityRepository,
    DashboardConfigRepository,
    LeadRepository,
    LeadVersion,
    TaskRepository,
    UserRepository,
)
from leadflow.crm.roles import ActorUser
from leadflow.crm.schemas import (
    AchievementReport,
    ActivityCreate,
    ActivityRead,
    AllowedTransitionsRead,
    DashboardConfigRead,
    DashboardConfigUpsert,
    ExternalAchievementUpdate,
    LeadRead,
    LeadTransitionRead,
    LeadTransitionRequest,
    StaleLeadRead,
    TaskRead,
    UserRead,
)
from leadflow.crm.staleness import last_business_day_boundary, stale_leads
from leadflow.crm.statuses import LeadKind, UserStatus
from leadflow.crm.visibility import filter_activity, filter_leads, filter_tasks, visible_user_ids, visible_users
from leadflow.metrics import observe_lead_transition, observe_lead_transition_rejected, observe_stale_leads


logger = logging.getLogger("leadflow.crm.service")
tracer = trace.get_tracer("leadflow.crm.service")

STATUS_CHANGE_ACTIVITY = "Status Change"

user_repository = UserRepository()
lead_repository = LeadRepository()
task_repository = TaskRepository()
activity_repository = ActivityRepository()
dashboard_config_repository = DashboardConfigRepository()


def business_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().business_timezone)


def _actor_for(user: UserRead, correlation_id: str | None = None) -> ActorUser:
    return ActorUser(
        user_id=user.id,
        role=user.role,
        name=user.name,
        manager_id=user.manager_id,
        correlation_id=correlation_id,
    )


def _lead_snapshot(lead: LeadRead) -> dict[str, str | int | None]:
    return {
        "status": lead.status,
        "assigned_to": str(lead.assigned_to) if lead.assigned_to else None,
        "row_version": lead.row_version,
    }


class LeadService:
    entity_type = "crm.lead"

    def list_visible_leads(self, session: Session, actor_user: ActorUser, kind: LeadKind | None = None) -> list[LeadRead]:
        users = user_repository.list_users(session)
        leads = lead_repository.list_leads(session, kind)
        anchors = leads if kind is LeadKind.ANCHOR else lead_repository.list_anchors(session)
        return filter_leads(actor_user, users, leads, anchors=anchors)

    def get_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> LeadRead:
        lead = lead_repository.get_lead(session, lead_id)
        if lead is None:
            raise NotFoundError("lead", lead_id)
        users = user_repository.list_users(session)
        anchors = lead_repository.list_anchors(session)
        if not filter_leads(actor_user, users, [lead], anchors=anchors):
            # Invisible leads are reported as missing so their existence does not leak.
            raise NotFoundError("lead", lead_id)
        return lead

    def get_allowed_transitions(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> AllowedTransitionsRead:
        lead = self.get_lead(session, actor_user, lead_id)
        return AllowedTransitionsRead(
            lead_id=lead.id,
            current_status=lead.status,
            allowed=sorted(allowed_transitions(lead, actor_user.role)),
        )

    def lead_activity(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> list[ActivityRead]:
        lead = self.get_lead(session, actor_user, lead_id)
        return activity_repository.list_for_lead(session, lead.id)

    def docs_approval_queue(self, session: Session, actor_user: ActorUser) -> list[LeadRead]:
        if not actor_user.policy.is_approver:
            return []
        leads = self.list_visible_leads(session, actor_user)
        return [lead for lead in leads if lead.kind.is_spoke and lead.status == DOCS_PENDING]

    def transition_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadTransitionRequest,
    ) -> LeadTransitionRead:
        started = time.perf_counter()
        with tracer.start_as_current_span("crm.lead.transition") as span:
            span.set_attribute("lead_id", str(lead_id))
            span.set_attribute("to_status", dto.target_status)
            span.set_attribute("actor_role", actor_user.role.value)
            span.set_attribute("correlation_id", actor_user.correlation_id or "")
            try:
                result = self._transition(session, actor_user, lead_id, dto)
            except LeadflowError as exc:
                span.set_status(Status(StatusCode.ERROR, exc.code))
                observe_lead_transition_rejected(exc.code)
                logger.warning(
                    "lead.transition_rejected",
                    extra={
                        "lead_id": str(lead_id),
                        "to_status": dto.target_status,
                        "actor_user_id": str(actor_user.user_id),
                        "actor_role": actor_user.role.value,
                        "reason": exc.code,
                        "error": exc.message,
                    },
                )
                raise
            span.set_attribute("new_status", result.lead.status)
            span.set_attribute("requires_approval", result.requires_approval)

        logger.info(
            "lead.transitioned",
            extra={
                "lead_id": str(result.lead.id),
                "lead_kind": result.lead.kind.value,
                "from_status": result.from_status,
                "to_status": result.lead.status,
                "actor_user_id": str(actor_user.user_id),
                "actor_role": actor_user.role.value,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result

    def _transition(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadTransitionRequest,
    ) -> LeadTransitionRead:
        lead = self.get_lead(session, actor_user, lead_id)
        trace.get_current_span().set_attribute("from_status", lead.status)
        if lead.row_version != dto.row_version:
            raise ConflictError(
                "lead changed since it was read",
                details={"lead_id": str(lead.id), "expected_row_version": dto.row_version, "row_version": lead.row_version},
            )

        outcome = apply_transition(lead, dto.target_status, actor_user.role, assigned_to=dto.assigned_to)
        if outcome.new_assigned_to is not None and outcome.new_assigned_to != lead.assigned_to:
            self._check_assignee(session, actor_user, outcome.new_assigned_to)

        before = _lead_snapshot(lead)
        updated = lead_repository.save_lead(
            session,
            lead.id,
            {"status": outcome.new_status, "assigned_to": outcome.new_assigned_to},
            LeadVersion(row_version=dto.row_version, status=lead.status, assigned_to=lead.assigned_to),
        )
        activity_repository.append(
            session,
            ActivityCreate(
                user_id=actor_user.user_id,
                timestamp=utcnow(),
                lead_id=updated.id if updated.kind.is_spoke else None,
                anchor_id=updated.anchor_id if updated.kind.is_spoke else updated.id,
                activity_type=STATUS_CHANGE_ACTIVITY,
                title=f"Status changed from {lead.status} to {updated.status}",
                system_generated=True,
            ),
        )
        session.commit()

        after = _lead_snapshot(updated)
        audit.record(
            actor_user_id=str(actor_user.user_id),
            entity_type=self.entity_type,
            entity_id=str(updated.id),
            action="transition",
            before=before,
            after=after,
            correlation_id=actor_user.correlation_id,
        )
        payload = {
            "lead_id": str(updated.id),
            "kind": updated.kind.value,
            "from_status": lead.status,
            "to_status": updated.status,
            "requested_status": dto.target_status,
            "assigned_to": after["assigned_to"],
            "row_version": updated.row_version,
        }
        events.publish(events.build_envelope(events.LEAD_STATUS_CHANGED, str(actor_user.user_id), payload))
        if outcome.requires_approval:
            events.publish(events.build_envelope(events.LEAD_DOCS_SUBMITTED, str(actor_user.user_id), payload))
        observe_lead_transition(updated.kind.value, outcome.requires_approval)

        return LeadTransitionRead(
            lead=updated,
            from_status=lead.status,
            requested_status=dto.target_status,
            requires_approval=outcome.requires_approval,
        )

    def _check_assignee(self, session: Session, actor_user: ActorUser, assignee_id: uuid.UUID) -> None:
        users = user_repository.list_users(session)
        assignee = next((user for user in users if user.id == assignee_id), None)
        if assignee is None:
            raise NotFoundError("user", assignee_id)
        if assignee.status == UserStatus.EX_USER:
            raise InvalidTransitionError(
                "leads cannot be assigned to former users",
                details={"assigned_to": str(assignee_id)},
            )
        if assignee_id not in visible_user_ids(actor_user, users):
            raise UnauthorizedError(
                "assignee is outside the actor's team",
                details={"assigned_to": str(assignee_id)},
            )


class WorkspaceService:
    """Team, task and activity listings scoped to the actor."""

    def list_team(self, session: Session, actor_user: ActorUser) -> list[UserRead]:
        return visible_users(actor_user, user_repository.list_users(session))

    def list_tasks(self, session: Session, actor_user: ActorUser) -> list[TaskRead]:
        users = user_repository.list_users(session)
        anchors = lead_repository.list_anchors(session)
        return filter_tasks(actor_user, users, task_repository.list_tasks(session), anchors=anchors)

    def list_activities(self, session: Session, actor_user: ActorUser, since: datetime | None = None) -> list[ActivityRead]:
        users = user_repository.list_users(session)
        anchors = lead_repository.list_anchors(session)
        entries = activity_repository.list_activity(session, since=since)
        return filter_activity(actor_user, users, entries, anchors=anchors)


class ReportService:
    def stale_leads(self, session: Session, actor_user: ActorUser, now: datetime | None = None) -> list[StaleLeadRead]:
        now = now or datetime.now(business_timezone())
        users = user_repository.list_users(session)
        leads = lead_repository.list_leads(session)
        activity = activity_repository.list_activity(session, since=last_business_day_boundary(now))

        stale = stale_leads(actor_user, users, leads, activity, now)
        observe_stale_leads(len(stale))
        names = {user.id: user.name for user in users}
        return [
            StaleLeadRead(
                lead_id=lead.id,
                name=lead.name,
                kind=lead.kind,
                status=lead.status,
                assigned_to=lead.assigned_to,
                assigned_to_name=names.get(lead.assigned_to, "Unknown") if lead.assigned_to else "Unassigned",
                last_touched_at=lead.last_touched_at,
            )
            for lead in stale
        ]

    def achievement_report(
        self,
        session: Session,
        actor_user: ActorUser,
        user_id: uuid.UUID | None = None,
        month: str | None = None,
    ) -> AchievementReport:
        """Report for ``user_id`` (default: the actor).

        Individual contributors without a config of their own read their
        manager's config.
        """
        users = user_repository.list_users(session)
        target_id = user_id or actor_user.user_id
        if target_id != actor_user.user_id and target_id not in self._report_scope(actor_user, users):
            raise UnauthorizedError("report owner is outside the actor's team", details={"user_id": str(target_id)})

        users_by_id = {user.id: user for user in users}
        owner = users_by_id.get(target_id)
        if owner is None:
            raise NotFoundError("user", target_id)

        config = dashboard_config_repository.get_config(session, owner.id)
        if config is None and _actor_for(owner).policy.is_individual_contributor and owner.manager_id:
            manager = users_by_id.get(owner.manager_id)
            if manager is not None:
                config = dashboard_config_repository.get_config(session, manager.id)
                owner = manager
        if config is None:
            raise NotFoundError("dashboard_config", target_id)

        return self._build(session, users, owner, config, month)

    def all_achievement_reports(self, session: Session, actor_user: ActorUser, month: str | None = None) -> list[AchievementReport]:
        if not actor_user.policy.views_all_reports:
            raise UnauthorizedError("manager overview is not available to this role", details={"role": actor_user.role.value})
        users = user_repository.list_users(session)
        users_by_id = {user.id: user for user in users}
        reports: list[AchievementReport] = []
        for config in dashboard_config_repository.list_configs(session):
            owner = users_by_id.get(config.user_id)
            if owner is None:
                logger.warning("achievement.config_owner_missing", extra={"user_id": str(config.user_id)})
                continue
            reports.append(self._build(session, users, owner, config, month))
        return reports

    @staticmethod
    def _report_scope(actor_user: ActorUser, users: list[UserRead]) -> set[uuid.UUID]:
        if actor_user.policy.views_all_reports:
            return {user.id for user in users}
        if actor_user.policy.is_manager_facing:
            return visible_user_ids(actor_user, users)
        return {actor_user.user_id}

    @staticmethod
    def _build(
        session: Session,
        users: list[UserRead],
        owner: UserRead,
        config: DashboardConfigRead,
        month: str | None,
    ) -> AchievementReport:
        visible = visible_user_ids(_actor_for(owner), users)
        leads = lead_repository.list_leads(session)
        anchors = [lead for lead in leads if lead.kind is LeadKind.ANCHOR]
        rows = build_report(config, visible, leads, anchors, month, tz=business_timezone())
        return AchievementReport(
            user_id=owner.id,
            config_name=config.name,
            month=month,
            rows=rows,
            totals=summarize_rows(rows),
        )


class DashboardConfigService:
    entity_type = "crm.dashboard_config"

    def get_config(self, session: Session, actor_user: ActorUser, user_id: uuid.UUID) -> DashboardConfigRead:
        policy = actor_user.policy
        if user_id != actor_user.user_id and not (policy.manages_configs or policy.views_all_reports):
            users = user_repository.list_users(session)
            if not policy.is_manager_facing or user_id not in visible_user_ids(actor_user, users):
                raise UnauthorizedError("config owner is outside the actor's team", details={"user_id": str(user_id)})
        config = dashboard_config_repository.get_config(session, user_id)
        if config is None:
            raise NotFoundError("dashboard_config", user_id)
        return config

    def save_config(
        self,
        session: Session,
        actor_user: ActorUser,
        user_id: uuid.UUID,
        dto: DashboardConfigUpsert,
    ) -> DashboardConfigRead:
        self._require_manager_of_configs(actor_user)
        if user_repository.get_user(session, user_id) is None:
            raise NotFoundError("user", user_id)

        existing = dashboard_config_repository.get_config(session, user_id)
        saved = dashboard_config_repository.save_config(session, user_id, dto, updated_by=actor_user.user_id)
        session.commit()
        self._record(actor_user, existing, saved, action="save")
        return saved

    def import_achievements(
        self,
        session: Session,
        actor_user: ActorUser,
        user_id: uuid.UUID,
        update: ExternalAchievementUpdate,
    ) -> DashboardConfigRead:
        self._require_manager_of_configs(actor_user)
        existing = dashboard_config_repository.get_config(session, user_id)
        if existing is None:
            raise NotFoundError("dashboard_config", user_id)

        merged = apply_external_achievements(existing, update)
        saved = dashboard_config_repository.save_config(
            session,
            user_id,
            DashboardConfigUpsert.model_validate(merged.model_dump(include=set(DashboardConfigUpsert.model_fields))),
            updated_by=actor_user.user_id,
            expected_row_version=existing.row_version,
        )
        session.commit()
        self._record(actor_user, existing, saved, action="import_achievements")
        return saved

    @staticmethod
    def _require_manager_of_configs(actor_user: ActorUser) -> None:
        if not actor_user.policy.manages_configs:
            raise UnauthorizedError("dashboard configs can only be edited by administrators", details={"role": actor_user.role.value})

    def _record(
        self,
        actor_user: ActorUser,
        before: DashboardConfigRead | None,
        after: DashboardConfigRead,
        *,
        action: str,
    ) -> None:
        audit.record(
            actor_user_id=str(actor_user.user_id),
            entity_type=self.entity_type,
            entity_id=str(after.user_id),
            action=action,
            before=before.model_dump(mode="json", exclude={"updated_at"}) if before else None,
            after=after.model_dump(mode="json", exclude={"updated_at"}),
            correlation_id=actor_user.correlation_id,
        )
        events.publish(
            events.build_envelope(
                events.DASHBOARD_CONFIG_SAVED,
                str(actor_user.user_id),
                {"user_id": str(after.user_id), "action": action, "row_version": after.row_version},
            )
        )
        logger.info(
            "dashboard_config.saved",
            extra={"user_id": str(after.user_id), "actor_user_id": str(actor_user.user_id), "reason": action},
        )
