"""Role dispatch table.

Every role-dependent decision (which records an actor sees, which lifecycle
edges it may drive, whether it reads manager reports) is resolved through
``ROLE_POLICIES`` so call sites never compare role strings themselves.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    ADMIN = "Admin"
    BUSINESS_DEVELOPMENT = "Business Development"
    BIU = "BIU"
    NATIONAL_SALES_MANAGER = "National Sales Manager"
    REGIONAL_SALES_MANAGER = "Regional Sales Manager"
    ZONAL_SALES_MANAGER = "Zonal Sales Manager"
    ETB_MANAGER = "ETB Manager"
    ONBOARDING_SPECIALIST = "Onboarding Specialist"
    AREA_SALES_MANAGER = "Area Sales Manager"
    SALES = "Sales"
    ETB_EXECUTIVE = "ETB Executive"


class VisibilityRule(StrEnum):
    GLOBAL = "global"
    HIERARCHY = "hierarchy"
    ONBOARDING = "onboarding"
    SELF = "self"


class TransitionGate(StrEnum):
    CONTRIBUTOR = "contributor"
    MANAGER = "manager"
    APPROVER = "approver"
    ONBOARDING = "onboarding"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class RolePolicy:
    visibility: VisibilityRule
    gates: frozenset[TransitionGate]
    manages_configs: bool = False
    views_all_reports: bool = False

    def satisfies(self, gate: TransitionGate) -> bool:
        return gate in self.gates

    @property
    def is_approver(self) -> bool:
        return TransitionGate.APPROVER in self.gates

    @property
    def is_manager_facing(self) -> bool:
        return self.visibility in {VisibilityRule.GLOBAL, VisibilityRule.HIERARCHY}

    @property
    def is_individual_contributor(self) -> bool:
        return self.visibility == VisibilityRule.SELF


_CONTRIBUTOR = frozenset({TransitionGate.CONTRIBUTOR})
_MANAGER = frozenset({TransitionGate.CONTRIBUTOR, TransitionGate.MANAGER})

ROLE_POLICIES: dict[Role, RolePolicy] = {
    Role.ADMIN: RolePolicy(
        visibility=VisibilityRule.GLOBAL,
        gates=frozenset(
            {TransitionGate.CONTRIBUTOR, TransitionGate.MANAGER, TransitionGate.ONBOARDING, TransitionGate.ADMIN}
        ),
        manages_configs=True,
        views_all_reports=True,
    ),
    Role.BUSINESS_DEVELOPMENT: RolePolicy(
        visibility=VisibilityRule.GLOBAL,
        gates=frozenset({TransitionGate.CONTRIBUTOR, TransitionGate.MANAGER, TransitionGate.APPROVER}),
    ),
    Role.BIU: RolePolicy(
        visibility=VisibilityRule.GLOBAL,
        gates=frozenset({TransitionGate.APPROVER}),
        views_all_reports=True,
    ),
    Role.NATIONAL_SALES_MANAGER: RolePolicy(visibility=VisibilityRule.HIERARCHY, gates=_MANAGER),
    Role.REGIONAL_SALES_MANAGER: RolePolicy(visibility=VisibilityRule.HIERARCHY, gates=_MANAGER),
    Role.ZONAL_SALES_MANAGER: RolePolicy(visibility=VisibilityRule.HIERARCHY, gates=_MANAGER),
    Role.ETB_MANAGER: RolePolicy(visibility=VisibilityRule.HIERARCHY, gates=_MANAGER),
    Role.ONBOARDING_SPECIALIST: RolePolicy(
        visibility=VisibilityRule.ONBOARDING,
        gates=frozenset({TransitionGate.CONTRIBUTOR, TransitionGate.ONBOARDING}),
    ),
    Role.AREA_SALES_MANAGER: RolePolicy(visibility=VisibilityRule.SELF, gates=_CONTRIBUTOR),
    Role.SALES: RolePolicy(visibility=VisibilityRule.SELF, gates=_CONTRIBUTOR),
    Role.ETB_EXECUTIVE: RolePolicy(visibility=VisibilityRule.SELF, gates=_CONTRIBUTOR),
}


def policy_for(role: Role | str) -> RolePolicy:
    return ROLE_POLICIES[Role(role)]


@dataclass
class ActorUser:
    user_id: uuid.UUID
    role: Role
    name: str = ""
    manager_id: uuid.UUID | None = None
    correlation_id: str | None = None

    @property
    def policy(self) -> RolePolicy:
        return policy_for(self.role)
