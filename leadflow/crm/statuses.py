from __future__ import annotations

from enum import StrEnum


class LeadKind(StrEnum):
    ANCHOR = "Anchor"
    DEALER = "Dealer"
    VENDOR = "Vendor"

    @property
    def is_spoke(self) -> bool:
        return self is not LeadKind.ANCHOR


class AnchorStatus(StrEnum):
    PENDING_APPROVAL = "Pending Approval"
    UNASSIGNED = "Unassigned Lead"
    LEAD = "Lead"
    INITIAL_CONTACT = "Initial Contact"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    ONBOARDING = "Onboarding"
    ACTIVE = "Active"
    ARCHIVED = "Archived"
    REJECTED = "Rejected"


class SpokeStatus(StrEnum):
    UNASSIGNED = "Unassigned Lead"
    INVITED = "Invited"
    NOT_REACHABLE = "Not reachable"
    FOLLOW_UP = "Follow Up"
    KYC_PENDING = "KYC Pending"
    AWAITING_DOCS_APPROVAL = "Awaiting Docs Approval"
    PARTIAL_DOCS = "Partial Docs"
    AGREEMENT_PENDING = "Agreement Pending"
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    REJECTED = "Rejected"
    NOT_INTERESTED = "Not Interested"
    CLOSED = "Closed"


class UserStatus(StrEnum):
    ACTIVE = "Active"
    EX_USER = "Ex-User"


class TaskStatus(StrEnum):
    TODO = "To-Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class TaskPriority(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


UNASSIGNED_STATUS = "Unassigned Lead"


def statuses_for(kind: LeadKind) -> type[AnchorStatus] | type[SpokeStatus]:
    return AnchorStatus if kind is LeadKind.ANCHOR else SpokeStatus


def is_valid_status(kind: LeadKind, status: str) -> bool:
    return status in {member.value for member in statuses_for(kind)}
