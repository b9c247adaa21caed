from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from decimal import Decimal

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow import audit, events
from leadflow.core.database import Base, get_db
from leadflow.crm.api import get_current_user
from leadflow.crm.models import CRMUser
from leadflow.crm.roles import ActorUser, Role
from leadflow.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def org(db_session: Session) -> dict[str, uuid.UUID]:
    ids = {name: uuid.uuid4() for name in ("admin", "zonal", "sales", "stranger_manager")}
    db_session.add_all(
        [
            CRMUser(id=ids["admin"], name="Ada Admin", role=Role.ADMIN.value),
            CRMUser(id=ids["zonal"], name="Zara Zonal", role=Role.ZONAL_SALES_MANAGER.value),
            CRMUser(id=ids["sales"], name="Sam Sales", role=Role.SALES.value, manager_id=ids["zonal"]),
            CRMUser(id=ids["stranger_manager"], name="Omar Other", role=Role.ZONAL_SALES_MANAGER.value),
        ]
    )
    db_session.commit()
    return ids


@pytest.fixture()
def client(
    db_session: Session,
    org: dict[str, uuid.UUID],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    roles = {
        "admin": Role.ADMIN,
        "zonal": Role.ZONAL_SALES_MANAGER,
        "sales": Role.SALES,
        "stranger_manager": Role.ZONAL_SALES_MANAGER,
    }
    state = {"current": "admin"}

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id=org[state["current"]],
            role=roles[state["current"]],
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _config_payload(anchor_ids: list[uuid.UUID], name: str = "Zonal North") -> dict:
    return {
        "name": name,
        "selected_anchor_ids": [str(anchor_id) for anchor_id in anchor_ids],
        "status_to_track": ["Active", "Agreement Pending"],
        "targets": {
            str(anchor_ids[0]): {
                "2026-10": {
                    "status_count_target": 5,
                    "deal_value_target": "750000.00",
                    "sanction_value_target": "400000.00",
                }
            }
        },
    }


def test_admin_saves_and_overwrites_config(
    client: tuple[TestClient, Callable[[str], None]],
    org: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    anchor_id = uuid.uuid4()
    path = f"/api/crm/dashboard-configs/{org['zonal']}"

    created = test_client.put(path, json=_config_payload([anchor_id]), headers={"X-Correlation-Id": "cfg-corr-1"})
    assert created.status_code == 200
    assert created.json()["row_version"] == 1
    assert created.json()["updated_by"] == str(org["admin"])
    assert created.json()["targets"][str(anchor_id)]["2026-10"]["status_count_target"] == 5

    updated = test_client.put(path, json=_config_payload([anchor_id], name="Zonal North v2"))
    assert updated.status_code == 200
    assert updated.json()["row_version"] == 2
    assert updated.json()["name"] == "Zonal North v2"

    entries = audit.entries_for("crm.dashboard_config", str(org["zonal"]))
    assert [entry["action"] for entry in entries] == ["save", "save"]
    assert entries[0]["correlation_id"] == "cfg-corr-1"
    assert entries[0]["before"] is None
    assert "name" in entries[1]["changed_fields"]
    assert any(
        envelope["event_type"] == events.DASHBOARD_CONFIG_SAVED and envelope["payload"]["user_id"] == str(org["zonal"])
        for envelope in events.published_events
    )


def test_only_admins_edit_configs(
    client: tuple[TestClient, Callable[[str], None]],
    org: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    set_actor("zonal")

    response = test_client.put(f"/api/crm/dashboard-configs/{org['zonal']}", json=_config_payload([uuid.uuid4()]))

    assert response.status_code == 403
    assert response.json()["code"] == "unauthorized"


def test_config_for_unknown_user_is_not_found(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    unknown = uuid.uuid4()

    saved = test_client.put(f"/api/crm/dashboard-configs/{unknown}", json=_config_payload([uuid.uuid4()]))
    read = test_client.get(f"/api/crm/dashboard-configs/{unknown}")

    assert saved.status_code == 404
    assert read.status_code == 404


def test_config_payload_is_validated(
    client: tuple[TestClient, Callable[[str], None]],
    org: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    payload = _config_payload([uuid.uuid4()])
    payload["status_to_track"] = []

    assert test_client.put(f"/api/crm/dashboard-configs/{org['zonal']}", json=payload).status_code == 422

    payload = _config_payload([uuid.uuid4()])
    payload["targets"] = {str(uuid.uuid4()): {"October": {}}}
    assert test_client.put(f"/api/crm/dashboard-configs/{org['zonal']}", json=payload).status_code == 422


def test_config_reads_follow_the_hierarchy(
    client: tuple[TestClient, Callable[[str], None]],
    org: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    for owner in ("zonal", "sales"):
        assert test_client.put(f"/api/crm/dashboard-configs/{org[owner]}", json=_config_payload([uuid.uuid4()])).status_code == 200

    set_actor("zonal")
    assert test_client.get(f"/api/crm/dashboard-configs/{org['zonal']}").status_code == 200
    assert test_client.get(f"/api/crm/dashboard-configs/{org['sales']}").status_code == 200

    set_actor("sales")
    assert test_client.get(f"/api/crm/dashboard-configs/{org['sales']}").status_code == 200
    assert test_client.get(f"/api/crm/dashboard-configs/{org['zonal']}").status_code == 403

    set_actor("stranger_manager")
    assert test_client.get(f"/api/crm/dashboard-configs/{org['zonal']}").status_code == 403


def test_external_achievements_fill_every_selected_anchor(
    client: tuple[TestClient, Callable[[str], None]],
    org: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    first, second = uuid.uuid4(), uuid.uuid4()
    path = f"/api/crm/dashboard-configs/{org['zonal']}"
    assert test_client.put(path, json=_config_payload([first, second])).status_code == 200

    response = test_client.post(
        f"{path}/achievements",
        json={"month": "2026-10", "sanction_value_achieved": "210000.00", "aum_value_achieved": "640000.00"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["row_version"] == 2
    first_target = body["targets"][str(first)]["2026-10"]
    second_target = body["targets"][str(second)]["2026-10"]
    assert first_target["status_count_target"] == 5
    assert Decimal(first_target["sanction_value_achieved"]) == Decimal("210000.00")
    assert Decimal(second_target["aum_value_achieved"]) == Decimal("640000.00")
    assert Decimal(second_target["deal_value_target"]) == Decimal("0")
    assert audit.entries_for("crm.dashboard_config", str(org["zonal"]))[-1]["action"] == "import_achievements"


def test_external_achievements_need_an_existing_config(
    client: tuple[TestClient, Callable[[str], None]],
    org: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    body = {"month": "2026-10", "sanction_value_achieved": "1", "aum_value_achieved": "1"}

    missing = test_client.post(f"/api/crm/dashboard-configs/{org['sales']}/achievements", json=body)
    assert missing.status_code == 404

    set_actor("zonal")
    denied = test_client.post(f"/api/crm/dashboard-configs/{org['zonal']}/achievements", json=body)
    assert denied.status_code == 403

    set_actor("admin")
    negative = test_client.post(
        f"/api/crm/dashboard-configs/{org['zonal']}/achievements",
        json={"month": "2026-10", "sanction_value_achieved": "-5", "aum_value_achieved": "1"},
    )
    assert negative.status_code == 422
