"""Manager/subordinate resolution over a flat user list."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict, deque
from collections.abc import Iterable

from leadflow.crm.schemas import UserRead
from leadflow.metrics import observe_hierarchy_cycle


logger = logging.getLogger("leadflow.crm.hierarchy")


def build_reports_index(users: Iterable[UserRead]) -> dict[uuid.UUID, list[uuid.UUID]]:
    """Map each manager id to the ids of its direct reports."""
    index: dict[uuid.UUID, list[uuid.UUID]] = defaultdict(list)
    for user in users:
        if user.manager_id is not None:
            index[user.manager_id].append(user.id)
    return dict(index)


def subordinates_of(user_id: uuid.UUID, users: Iterable[UserRead]) -> set[uuid.UUID]:
    """Return every user whose manager chain reaches ``user_id``, excluding ``user_id``.

    The walk is breadth-first over direct reports. A user already visited (or
    ``user_id`` itself reappearing) means the manager graph has a cycle; that
    branch stops expanding and the cycle is reported as a data-integrity
    warning instead of looping.
    """
    reports = build_reports_index(users)
    visited: set[uuid.UUID] = {user_id}
    subordinates: set[uuid.UUID] = set()
    queue: deque[uuid.UUID] = deque(reports.get(user_id, []))
    cycle_detected = False

    while queue:
        current = queue.popleft()
        if current in visited:
            cycle_detected = True
            continue
        visited.add(current)
        subordinates.add(current)
        queue.extend(reports.get(current, []))

    if cycle_detected:
        observe_hierarchy_cycle()
        logger.warning("org_hierarchy.cycle_detected", extra={"user_id": str(user_id)})

    return subordinates
