"""Lead lifecycle: per-kind transition tables and the docs approval sub-workflow.

Each edge carries the ``TransitionGate`` an actor's role must hold to drive
it. Requests into ``Partial Docs`` from a role without the approver gate are
diverted to ``Awaiting Docs Approval`` so nobody approves their own
documents; only approvers leave that intermediate status.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from leadflow.crm.errors import InvalidTransitionError, UnauthorizedError
from leadflow.crm.roles import Role, TransitionGate, policy_for
from leadflow.crm.schemas import LeadRead
from leadflow.crm.statuses import UNASSIGNED_STATUS, AnchorStatus, LeadKind, SpokeStatus, is_valid_status


DOCS_SUBMITTED = SpokeStatus.PARTIAL_DOCS.value
DOCS_PENDING = SpokeStatus.AWAITING_DOCS_APPROVAL.value

Edge = tuple[str, str]

_S = SpokeStatus
_A = AnchorStatus
_G = TransitionGate


def _edges(gate: TransitionGate, source: str, *targets: str) -> dict[Edge, TransitionGate]:
    return {(source, target): gate for target in targets}


SPOKE_TRANSITIONS: dict[Edge, TransitionGate] = {
    **_edges(_G.CONTRIBUTOR, _S.UNASSIGNED, _S.INVITED),
    **_edges(
        _G.CONTRIBUTOR,
        _S.INVITED,
        _S.KYC_PENDING,
        _S.NOT_REACHABLE,
        _S.AGREEMENT_PENDING,
        _S.FOLLOW_UP,
        _S.PARTIAL_DOCS,
        _S.REJECTED,
        _S.NOT_INTERESTED,
    ),
    **_edges(_G.CONTRIBUTOR, _S.NOT_REACHABLE, _S.INVITED, _S.FOLLOW_UP, _S.NOT_INTERESTED, _S.REJECTED),
    **_edges(
        _G.CONTRIBUTOR,
        _S.FOLLOW_UP,
        _S.KYC_PENDING,
        _S.PARTIAL_DOCS,
        _S.NOT_REACHABLE,
        _S.NOT_INTERESTED,
        _S.REJECTED,
    ),
    **_edges(
        _G.CONTRIBUTOR,
        _S.KYC_PENDING,
        _S.PARTIAL_DOCS,
        _S.AGREEMENT_PENDING,
        _S.FOLLOW_UP,
        _S.REJECTED,
        _S.NOT_INTERESTED,
    ),
    **_edges(_G.APPROVER, _S.AWAITING_DOCS_APPROVAL, _S.PARTIAL_DOCS, _S.FOLLOW_UP),
    **_edges(_G.CONTRIBUTOR, _S.PARTIAL_DOCS, _S.AGREEMENT_PENDING, _S.KYC_PENDING, _S.REJECTED),
    **_edges(_G.CONTRIBUTOR, _S.AGREEMENT_PENDING, _S.ACTIVE, _S.FOLLOW_UP, _S.REJECTED, _S.NOT_INTERESTED),
    **_edges(_G.CONTRIBUTOR, _S.ACTIVE, _S.INACTIVE, _S.CLOSED),
    **_edges(_G.CONTRIBUTOR, _S.INACTIVE, _S.ACTIVE, _S.CLOSED),
    # unassign
    **_edges(_G.MANAGER, _S.INVITED, _S.UNASSIGNED),
    **_edges(_G.MANAGER, _S.NOT_REACHABLE, _S.UNASSIGNED),
    **_edges(_G.MANAGER, _S.FOLLOW_UP, _S.UNASSIGNED),
    **_edges(_G.MANAGER, _S.KYC_PENDING, _S.UNASSIGNED),
    # reactivation out of terminal statuses
    **_edges(_G.ADMIN, _S.REJECTED, _S.FOLLOW_UP),
    **_edges(_G.ADMIN, _S.NOT_INTERESTED, _S.FOLLOW_UP),
    **_edges(_G.ADMIN, _S.CLOSED, _S.FOLLOW_UP),
}

ANCHOR_TRANSITIONS: dict[Edge, TransitionGate] = {
    **_edges(_G.ADMIN, _A.PENDING_APPROVAL, _A.UNASSIGNED, _A.REJECTED),
    **_edges(_G.CONTRIBUTOR, _A.UNASSIGNED, _A.LEAD),
    **_edges(_G.CONTRIBUTOR, _A.LEAD, _A.INITIAL_CONTACT),
    **_edges(_G.CONTRIBUTOR, _A.INITIAL_CONTACT, _A.PROPOSAL),
    **_edges(_G.CONTRIBUTOR, _A.PROPOSAL, _A.NEGOTIATION),
    **_edges(_G.CONTRIBUTOR, _A.NEGOTIATION, _A.ONBOARDING),
    **_edges(_G.ONBOARDING, _A.ONBOARDING, _A.ACTIVE),
    **_edges(_G.MANAGER, _A.ACTIVE, _A.ARCHIVED),
    **_edges(_G.MANAGER, _A.ARCHIVED, _A.ACTIVE),
    **_edges(_G.MANAGER, _A.LEAD, _A.UNASSIGNED),
    **_edges(_G.MANAGER, _A.INITIAL_CONTACT, _A.UNASSIGNED),
    **_edges(_G.ADMIN, _A.REJECTED, _A.LEAD),
}

TERMINAL_STATUSES: dict[LeadKind, frozenset[str]] = {
    LeadKind.ANCHOR: frozenset({_A.REJECTED.value}),
    LeadKind.DEALER: frozenset({_S.REJECTED.value, _S.NOT_INTERESTED.value, _S.CLOSED.value}),
    LeadKind.VENDOR: frozenset({_S.REJECTED.value, _S.NOT_INTERESTED.value, _S.CLOSED.value}),
}


def transitions_for(kind: LeadKind) -> dict[Edge, TransitionGate]:
    return ANCHOR_TRANSITIONS if kind is LeadKind.ANCHOR else SPOKE_TRANSITIONS


@dataclass(frozen=True, slots=True)
class TransitionResult:
    new_status: str
    new_assigned_to: uuid.UUID | None
    requires_approval: bool = False


def allowed_transitions(lead: LeadRead, role: Role | str) -> set[str]:
    """Target statuses ``role`` may request from the lead's current status.

    ``Partial Docs`` is listed for contributors as well; requesting it is
    legal, it just lands on ``Awaiting Docs Approval``.
    """
    policy = policy_for(role)
    return {
        str(target)
        for (source, target), gate in transitions_for(lead.kind).items()
        if source == lead.status and policy.satisfies(gate)
    }


def apply_transition(
    lead: LeadRead,
    target_status: str,
    role: Role | str,
    *,
    assigned_to: uuid.UUID | None = None,
) -> TransitionResult:
    """Resolve the status and assignee a transition request produces.

    Nothing is written here. Reachability is checked before authorization,
    then the status/assignee coupling. ``assigned_to`` is required when
    leaving the unassigned status, forbidden when entering it, and otherwise
    reassigns the lead when given.
    """
    if not is_valid_status(lead.kind, target_status):
        raise InvalidTransitionError(
            f"'{target_status}' is not a {lead.kind.value} status",
            details={"from_status": lead.status, "to_status": target_status},
        )

    gate = transitions_for(lead.kind).get((lead.status, target_status))
    if gate is None:
        raise InvalidTransitionError(
            f"cannot move a {lead.kind.value} lead from '{lead.status}' to '{target_status}'",
            details={"from_status": lead.status, "to_status": target_status},
        )

    policy = policy_for(role)
    if not policy.satisfies(gate):
        raise UnauthorizedError(
            f"role '{Role(role).value}' may not move a lead from '{lead.status}' to '{target_status}'",
            details={"from_status": lead.status, "to_status": target_status, "required_gate": gate.value},
        )

    new_assigned_to = _resolve_assignee(lead, target_status, assigned_to)

    if target_status == DOCS_SUBMITTED and lead.status != DOCS_PENDING and not policy.is_approver:
        return TransitionResult(new_status=DOCS_PENDING, new_assigned_to=new_assigned_to, requires_approval=True)

    return TransitionResult(new_status=target_status, new_assigned_to=new_assigned_to)


def _resolve_assignee(lead: LeadRead, target_status: str, assigned_to: uuid.UUID | None) -> uuid.UUID | None:
    if target_status == UNASSIGNED_STATUS:
        if assigned_to is not None:
            raise InvalidTransitionError(
                "an unassigned lead cannot keep an assignee",
                details={"from_status": lead.status, "to_status": target_status},
            )
        return None

    if lead.status == UNASSIGNED_STATUS and assigned_to is None:
        raise InvalidTransitionError(
            "leaving the unassigned status requires an assignee",
            details={"from_status": lead.status, "to_status": target_status},
        )

    resolved = assigned_to if assigned_to is not None else lead.assigned_to
    if resolved is None:
        raise InvalidTransitionError(
            f"'{target_status}' requires an assignee",
            details={"from_status": lead.status, "to_status": target_status},
        )
    return resolved


def is_terminal(lead: LeadRead) -> bool:
    return lead.status in TERMINAL_STATUSES[lead.kind]
