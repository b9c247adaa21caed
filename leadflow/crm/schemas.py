from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, model_validator

from leadflow.crm.roles import Role
from leadflow.crm.statuses import LeadKind, TaskPriority, TaskStatus, UserStatus, is_valid_status


MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
MonthKey = Annotated[str, StringConstraints(pattern=MONTH_PATTERN)]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str | None = None
    role: Role
    manager_id: UUID | None = None
    region: str | None = None
    status: UserStatus = UserStatus.ACTIVE


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    kind: LeadKind
    status: str
    assigned_to: UUID | None = None
    created_by: UUID | None = None
    anchor_id: UUID | None = None
    deal_value: Decimal | None = None
    product: str | None = None
    state: str | None = None
    lender: str | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime | None = None
    row_version: int = 1

    @model_validator(mode="after")
    def validate_status_for_kind(self) -> "LeadRead":
        if not is_valid_status(self.kind, self.status):
            raise ValueError(f"status '{self.status}' is not valid for {self.kind.value} leads")
        return self

    @property
    def last_touched_at(self) -> datetime:
        return self.updated_at or self.created_at


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    assigned_to: UUID
    associated_anchor_id: UUID | None = None
    due_date: date
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str | None = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    timestamp: UtcDatetime
    lead_id: UUID | None = None
    anchor_id: UUID | None = None
    activity_type: str
    title: str
    outcome: str | None = None
    system_generated: bool = False


class ActivityCreate(BaseModel):
    user_id: UUID
    timestamp: datetime
    lead_id: UUID | None = None
    anchor_id: UUID | None = None
    activity_type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    outcome: str | None = None
    system_generated: bool = False


class MonthlyTarget(BaseModel):
    status_count_target: int = Field(default=0, ge=0)
    deal_value_target: Decimal = Decimal("0")
    sanction_value_target: Decimal = Decimal("0")
    sanction_value_achieved: Decimal = Decimal("0")
    aum_value_target: Decimal = Decimal("0")
    aum_value_achieved: Decimal = Decimal("0")


class DashboardConfigUpsert(BaseModel):
    name: str = Field(min_length=1)
    selected_anchor_ids: list[UUID] = Field(default_factory=list)
    status_to_track: list[str] = Field(min_length=1)
    targets: dict[UUID, dict[MonthKey, MonthlyTarget]] = Field(default_factory=dict)


class DashboardConfigRead(DashboardConfigUpsert):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    updated_by: UUID | None = None
    updated_at: datetime | None = None
    row_version: int = 1


class ExternalAchievementUpdate(BaseModel):
    month: MonthKey
    sanction_value_achieved: Decimal = Field(ge=0)
    aum_value_achieved: Decimal = Field(ge=0)


class LeadTransitionRequest(BaseModel):
    target_status: str = Field(min_length=1)
    assigned_to: UUID | None = None
    row_version: int = Field(ge=1)


class LeadTransitionRead(BaseModel):
    lead: LeadRead
    from_status: str
    requested_status: str
    requires_approval: bool


class AllowedTransitionsRead(BaseModel):
    lead_id: UUID
    current_status: str
    allowed: list[str]


class StaleLeadRead(BaseModel):
    lead_id: UUID
    name: str
    kind: LeadKind
    status: str
    assigned_to: UUID | None
    assigned_to_name: str
    last_touched_at: datetime


class AchievementRow(BaseModel):
    anchor_id: UUID
    anchor_name: str
    month: str
    state: str
    lender: str
    achieved_count: int
    achieved_deal_value: Decimal
    status_count_target: int
    deal_value_target: Decimal
    sanction_value_target: Decimal
    sanction_value_achieved: Decimal
    aum_value_target: Decimal
    aum_value_achieved: Decimal


class AchievementTotals(BaseModel):
    achieved_count: int = 0
    achieved_deal_value: Decimal = Decimal("0")
    status_count_target: int = 0
    deal_value_target: Decimal = Decimal("0")
    sanction_value_achieved: Decimal = Decimal("0")
    aum_value_achieved: Decimal = Decimal("0")


class AchievementReport(BaseModel):
    user_id: UUID
    config_name: str
    month: str | None
    rows: list[AchievementRow]
    totals: AchievementTotals
