from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadflow.context import get_correlation_id
from leadflow.core.auth import AuthUser, get_current_user as get_auth_user
from leadflow.core.database import get_db
from leadflow.crm.errors import ConflictError, InvalidTransitionError, LeadflowError, NotFoundError, UnauthorizedError
from leadflow.crm.repositories import UserRepository
from leadflow.crm.roles import ActorUser
from leadflow.crm.schemas import (
    AchievementReport,
    ActivityRead,
    AllowedTransitionsRead,
    DashboardConfigRead,
    DashboardConfigUpsert,
    ExternalAchievementUpdate,
    LeadRead,
    LeadTransitionRead,
    LeadTransitionRequest,
    MONTH_PATTERN,
    StaleLeadRead,
    TaskRead,
    UserRead,
)
from leadflow.crm.service import DashboardConfigService, LeadService, ReportService, WorkspaceService
from leadflow.crm.statuses import LeadKind, UserStatus

leads_router = APIRouter(prefix="/api/crm", tags=["crm.leads"])
workspace_router = APIRouter(prefix="/api/crm", tags=["crm.workspace"])
reports_router = APIRouter(prefix="/api/crm/reports", tags=["crm.reports"])
dashboard_configs_router = APIRouter(prefix="/api/crm/dashboard-configs", tags=["crm.dashboard_configs"])
lead_service = LeadService()
workspace_service = WorkspaceService()
report_service = ReportService()
dashboard_config_service = DashboardConfigService()
user_repository = UserRepository()

_ERROR_STATUS: dict[type[LeadflowError], int] = {
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    InvalidTransitionError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or request.headers.get("x-correlation-id")
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def leadflow_error_response(request: Request, exc: LeadflowError) -> JSONResponse:
    return error_response(
        request,
        status_code=_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def _coerce_user_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_URL, f"leadflow-actor:{value}")


def get_current_user(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> ActorUser:
    """Resolve the token subject to a CRM user; the role comes from the user record, not the token."""
    user = user_repository.get_user(db, _coerce_user_uuid(auth_user.sub))
    if user is None or user.status == UserStatus.EX_USER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="unknown or inactive CRM user")
    return ActorUser(
        user_id=user.id,
        role=user.role,
        name=user.name,
        manager_id=user.manager_id,
        correlation_id=get_correlation_id() or request.headers.get("x-correlation-id"),
    )


@leads_router.get("/leads", response_model=list[LeadRead])
def list_leads(
    request: Request,
    kind: LeadKind | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.list_visible_leads(db, user, kind)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, user, lead_id)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@leads_router.get("/leads/{lead_id}/transitions", response_model=AllowedTransitionsRead)
def get_lead_transitions(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AllowedTransitionsRead | JSONResponse:
    try:
        return lead_service.get_allowed_transitions(db, user, lead_id)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@leads_router.get("/leads/{lead_id}/activities", response_model=list[ActivityRead])
def get_lead_activities(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ActivityRead] | JSONResponse:
    try:
        return lead_service.lead_activity(db, user, lead_id)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@leads_router.post("/leads/{lead_id}/transition", response_model=LeadTransitionRead)
def transition_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadTransitionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadTransitionRead | JSONResponse:
    try:
        return lead_service.transition_lead(db, user, lead_id, dto)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@leads_router.get("/approvals/docs", response_model=list[LeadRead])
def list_docs_approvals(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.docs_approval_queue(db, user)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@workspace_router.get("/team", response_model=list[UserRead])
def list_team(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[UserRead]:
    return workspace_service.list_team(db, user)


@workspace_router.get("/tasks", response_model=list[TaskRead])
def list_tasks(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TaskRead]:
    return workspace_service.list_tasks(db, user)


@workspace_router.get("/activities", response_model=list[ActivityRead])
def list_activities(
    since: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ActivityRead]:
    return workspace_service.list_activities(db, user, since=since)


@reports_router.get("/stale-leads", response_model=list[StaleLeadRead])
def get_stale_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[StaleLeadRead] | JSONResponse:
    try:
        return report_service.stale_leads(db, user)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@reports_router.get("/achievement", response_model=AchievementReport)
def get_achievement_report(
    request: Request,
    month: str | None = Query(default=None, pattern=MONTH_PATTERN),
    user_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AchievementReport | JSONResponse:
    try:
        return report_service.achievement_report(db, user, user_id=user_id, month=month)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@reports_router.get("/achievement/all", response_model=list[AchievementReport])
def get_all_achievement_reports(
    request: Request,
    month: str | None = Query(default=None, pattern=MONTH_PATTERN),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AchievementReport] | JSONResponse:
    try:
        return report_service.all_achievement_reports(db, user, month=month)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@dashboard_configs_router.get("/{user_id}", response_model=DashboardConfigRead)
def get_dashboard_config(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DashboardConfigRead | JSONResponse:
    try:
        return dashboard_config_service.get_config(db, user, user_id)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@dashboard_configs_router.put("/{user_id}", response_model=DashboardConfigRead)
def put_dashboard_config(
    request: Request,
    user_id: uuid.UUID,
    dto: DashboardConfigUpsert,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DashboardConfigRead | JSONResponse:
    try:
        return dashboard_config_service.save_config(db, user, user_id, dto)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)


@dashboard_configs_router.post("/{user_id}/achievements", response_model=DashboardConfigRead)
def post_external_achievements(
    request: Request,
    user_id: uuid.UUID,
    dto: ExternalAchievementUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DashboardConfigRead | JSONResponse:
    try:
        return dashboard_config_service.import_achievements(db, user, user_id, dto)
    except LeadflowError as exc:
        return leadflow_error_response(request, exc)
