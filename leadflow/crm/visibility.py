from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence

from leadflow.crm.hierarchy import subordinates_of
from leadflow.crm.roles import ActorUser, VisibilityRule
from leadflow.crm.schemas import ActivityRead, LeadRead, TaskRead, UserRead
from leadflow.crm.statuses import AnchorStatus, LeadKind


def visible_user_ids(actor: ActorUser, users: Iterable[UserRead]) -> set[uuid.UUID]:
    """User ids whose records the actor may see.

    Onboarding specialists only get their own id here; the status-based
    widening of their scope is applied by the record filters below.
    """
    users = list(users)
    rule = actor.policy.visibility
    if rule == VisibilityRule.GLOBAL:
        return {user.id for user in users}
    if rule == VisibilityRule.HIERARCHY:
        return {actor.user_id} | subordinates_of(actor.user_id, users)
    return {actor.user_id}


def visible_users(actor: ActorUser, users: Iterable[UserRead]) -> list[UserRead]:
    users = list(users)
    allowed = visible_user_ids(actor, users)
    return sorted((user for user in users if user.id in allowed), key=lambda user: (user.name, str(user.id)))


def onboarding_anchor_ids(anchors: Iterable[LeadRead]) -> set[uuid.UUID]:
    return {
        anchor.id
        for anchor in anchors
        if anchor.kind == LeadKind.ANCHOR and anchor.status == AnchorStatus.ONBOARDING
    }


def filter_leads(
    actor: ActorUser,
    users: Iterable[UserRead],
    leads: Iterable[LeadRead],
    anchors: Sequence[LeadRead] | None = None,
) -> list[LeadRead]:
    """Keep the leads the actor may see, preserving input order.

    ``anchors`` is only consulted for onboarding specialists, to learn which
    anchors are currently onboarding; it defaults to the anchors in ``leads``.
    """
    leads = list(leads)
    rule = actor.policy.visibility
    if rule == VisibilityRule.GLOBAL:
        return leads

    allowed = visible_user_ids(actor, users)
    if rule == VisibilityRule.ONBOARDING:
        onboarding = onboarding_anchor_ids(anchors if anchors is not None else leads)
        return [
            lead
            for lead in leads
            if lead.assigned_to in allowed or lead.id in onboarding or lead.anchor_id in onboarding
        ]

    return [lead for lead in leads if lead.assigned_to is not None and lead.assigned_to in allowed]


def filter_tasks(
    actor: ActorUser,
    users: Iterable[UserRead],
    tasks: Iterable[TaskRead],
    anchors: Sequence[LeadRead] = (),
) -> list[TaskRead]:
    tasks = list(tasks)
    rule = actor.policy.visibility
    if rule == VisibilityRule.GLOBAL:
        return tasks

    allowed = visible_user_ids(actor, users)
    if rule == VisibilityRule.ONBOARDING:
        onboarding = onboarding_anchor_ids(anchors)
        return [task for task in tasks if task.assigned_to in allowed or task.associated_anchor_id in onboarding]

    return [task for task in tasks if task.assigned_to in allowed]


def filter_activity(
    actor: ActorUser,
    users: Iterable[UserRead],
    entries: Iterable[ActivityRead],
    anchors: Sequence[LeadRead] = (),
) -> list[ActivityRead]:
    entries = list(entries)
    rule = actor.policy.visibility
    if rule == VisibilityRule.GLOBAL:
        return entries

    allowed = visible_user_ids(actor, users)
    if rule == VisibilityRule.ONBOARDING:
        onboarding = onboarding_anchor_ids(anchors)
        return [
            entry
            for entry in entries
            if entry.user_id in allowed or entry.anchor_id in onboarding or entry.lead_id in onboarding
        ]

    return [entry for entry in entries if entry.user_id in allowed]
