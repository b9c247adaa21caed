from __future__ import annotations

import logging
import uuid

import pytest
from prometheus_client import REGISTRY

from leadflow.crm.hierarchy import build_reports_index, subordinates_of
from leadflow.crm.roles import Role
from leadflow.crm.schemas import UserRead


def _user(name: str, role: Role = Role.SALES, manager: UserRead | None = None, *, user_id: uuid.UUID | None = None) -> UserRead:
    return UserRead(
        id=user_id or uuid.uuid4(),
        name=name,
        role=role,
        manager_id=manager.id if manager else None,
    )


def _cycle_count() -> float:
    return REGISTRY.get_sample_value("org_hierarchy_cycles_total") or 0.0


def test_subordinates_follow_the_whole_chain() -> None:
    national = _user("National", Role.NATIONAL_SALES_MANAGER)
    regional = _user("Regional", Role.REGIONAL_SALES_MANAGER, national)
    zonal = _user("Zonal", Role.ZONAL_SALES_MANAGER, regional)
    sales = _user("Sales", Role.SALES, zonal)
    other_team = _user("Other", Role.SALES)
    users = [national, regional, zonal, sales, other_team]

    assert subordinates_of(national.id, users) == {regional.id, zonal.id, sales.id}
    assert subordinates_of(zonal.id, users) == {sales.id}
    assert subordinates_of(sales.id, users) == set()


def test_subordinates_never_include_the_user_or_unrelated_users() -> None:
    manager = _user("Manager", Role.ETB_MANAGER)
    reports = [_user(f"Exec {index}", Role.ETB_EXECUTIVE, manager) for index in range(3)]
    stranger = _user("Stranger", Role.ETB_EXECUTIVE)
    users = [manager, *reports, stranger]

    result = subordinates_of(manager.id, users)

    assert manager.id not in result
    assert stranger.id not in result
    assert result == {report.id for report in reports}


def test_reports_index_groups_direct_reports() -> None:
    manager = _user("Manager", Role.ZONAL_SALES_MANAGER)
    first = _user("First", Role.SALES, manager)
    second = _user("Second", Role.SALES, manager)

    index = build_reports_index([manager, first, second])

    assert sorted(index[manager.id]) == sorted([first.id, second.id])


def test_cycle_terminates_and_is_reported(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    first_id, second_id = uuid.uuid4(), uuid.uuid4()
    first = UserRead(id=first_id, name="First", role=Role.ZONAL_SALES_MANAGER, manager_id=second_id)
    second = UserRead(id=second_id, name="Second", role=Role.ZONAL_SALES_MANAGER, manager_id=first_id)
    report = _user("Report", Role.SALES, first)
    before = _cycle_count()

    result = subordinates_of(first_id, [first, second, report])

    assert result == {second_id, report.id}
    assert _cycle_count() == before + 1
    assert any(
        record.name == "leadflow.crm.hierarchy"
        and record.getMessage() == "org_hierarchy.cycle_detected"
        and getattr(record, "user_id", None) == str(first_id)
        for record in caplog.records
    )


def test_self_managed_user_has_no_subordinates() -> None:
    user_id = uuid.uuid4()
    user = UserRead(id=user_id, name="Loop", role=Role.REGIONAL_SALES_MANAGER, manager_id=user_id)

    assert subordinates_of(user_id, [user]) == set()


def test_unknown_user_has_no_subordinates() -> None:
    manager = _user("Manager", Role.ZONAL_SALES_MANAGER)
    assert subordinates_of(uuid.uuid4(), [manager, _user("Sales", Role.SALES, manager)]) == set()
