from __future__ import annotations

from typing import Any


class LeadflowError(Exception):
    """Base error for visibility, lifecycle and report failures."""

    code = "leadflow_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthorizedError(LeadflowError):
    """Raised when the actor's role may not invoke a transition or view a scope."""

    code = "unauthorized"


class InvalidTransitionError(LeadflowError):
    """Raised for unreachable target statuses or a broken status/assignee coupling."""

    code = "invalid_transition"


class ConflictError(LeadflowError):
    """Raised when an optimistic write finds the lead changed since it was read."""

    code = "conflict"


class NotFoundError(LeadflowError):
    """Raised when a referenced user, anchor or lead does not exist."""

    code = "not_found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found", details={"entity_type": entity_type, "entity_id": str(entity_id)})
