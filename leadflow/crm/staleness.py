from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime, time, timedelta, timezone

from leadflow.crm.errors import UnauthorizedError
from leadflow.crm.roles import ActorUser, policy_for
from leadflow.crm.schemas import ActivityRead, LeadRead, UserRead
from leadflow.crm.visibility import visible_user_ids


# Days back to the start of the last completed business day, keyed by weekday (Monday is 0).
_DAYS_BACK = {0: 3, 6: 2}


def last_business_day_boundary(now: datetime) -> datetime:
    """Midnight starting the last completed business day, in ``now``'s timezone.

    Sunday and Monday both fall back to the preceding Friday.
    """
    day = now.date() - timedelta(days=_DAYS_BACK.get(now.weekday(), 1))
    return datetime.combine(day, time.min, tzinfo=now.tzinfo)


def stale_leads(
    actor: ActorUser,
    users: Iterable[UserRead],
    leads: Iterable[LeadRead],
    activity: Iterable[ActivityRead],
    now: datetime,
) -> list[LeadRead]:
    """Leads owned by idle individual contributors that nobody touched since the boundary.

    Ordered oldest ``last_touched_at`` first, with the lead id as tie-breaker.
    A naive ``now`` is taken as UTC, like every stored timestamp.
    """
    if not actor.policy.is_manager_facing:
        raise UnauthorizedError(
            "stale lead report is only available to managers",
            details={"role": actor.role.value},
        )

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    users = list(users)
    boundary = last_business_day_boundary(now)
    visible = visible_user_ids(actor, users)
    contributors = {
        user.id for user in users if user.id in visible and policy_for(user.role).is_individual_contributor
    }

    active_users: set[uuid.UUID] = set()
    touched: set[uuid.UUID] = set()
    for entry in activity:
        if entry.timestamp < boundary:
            continue
        active_users.add(entry.user_id)
        touched.update(ref for ref in (entry.lead_id, entry.anchor_id) if ref is not None)

    idle = contributors - active_users
    result = [
        lead
        for lead in leads
        if lead.assigned_to in idle and lead.last_touched_at < boundary and lead.id not in touched
    ]
    result.sort(key=lambda lead: (lead.last_touched_at, str(lead.id)))
    return result
