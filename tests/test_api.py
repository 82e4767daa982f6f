from __future__ import annotations

from decimal import Decimal

import allure
from fastapi.testclient import TestClient

from mission_control.api.app import create_app
from mission_control.squad.models import SpawnRequest
from mission_control.squad.runtime import SquadRuntime

pytestmark = [
    allure.epic("Agent Squad"),
    allure.feature("Heartbeat API"),
]


def test_heartbeat_endpoint_records_liveness(runtime: SquadRuntime) -> None:
    client = TestClient(create_app(runtime=runtime))

    response = client.post("/api/agents/heartbeat", json={"agentId": "fury", "status": "active"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert isinstance(body["timestamp"], int)
    record = runtime.liveness.get("fury")
    assert record is not None
    assert record.is_online
    assert record.status.value == "active"
    assert int(record.last_heartbeat.timestamp() * 1000) == body["timestamp"]  # type: ignore[union-attr]


def test_heartbeat_endpoint_rejects_bad_requests(runtime: SquadRuntime) -> None:
    client = TestClient(create_app(runtime=runtime))

    missing = client.post("/api/agents/heartbeat", json={"status": "idle"})
    unknown = client.post("/api/agents/heartbeat", json={"agentId": "ghost"})
    not_json = client.post(
        "/api/agents/heartbeat",
        content=b"agentId=fury",
        headers={"content-type": "application/x-www-form-urlencoded"},
    )
    not_object = client.post("/api/agents/heartbeat", json=["fury"])

    assert missing.status_code == 400
    assert missing.json() == {"success": False, "error": "agentId is required"}
    assert unknown.status_code == 404
    assert unknown.json() == {"success": False, "error": "Agent not found"}
    assert not_json.status_code == 400
    assert not_object.status_code == 400


def test_heartbeat_with_unrecognised_status_is_still_recorded(runtime: SquadRuntime) -> None:
    client = TestClient(create_app(runtime=runtime))

    response = client.post("/api/agents/heartbeat", json={"agentId": "fury", "status": "running"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    record = runtime.liveness.get("fury")
    assert record is not None
    assert record.is_online
    assert record.status.value == "idle"
    assert record.last_activity == record.last_heartbeat


def test_agents_and_costs_read_models(runtime: SquadRuntime) -> None:
    runtime.spawner.create(
        "fury",
        SpawnRequest(description="Ship", estimated_tokens=1_500, area_id="ops"),
    )
    client = TestClient(create_app(runtime=runtime))
    client.post("/api/agents/heartbeat", json={"agentId": "mason"})

    agents = {item["agentId"]: item for item in client.get("/api/agents").json()}
    costs = client.get("/api/costs").json()

    assert agents["mason"]["isOnline"] is True
    assert agents["fury"]["isOnline"] is False
    assert Decimal(costs["todayCost"]) == Decimal("1.5")
    assert Decimal(costs["costByAgent"]["fury"]) == Decimal("1.5")
    assert Decimal(costs["costByArea"]["ops"]) == Decimal("1.5")
    assert client.get("/health").json() == {"status": "ok"}


def test_costs_read_model_includes_budget_alerts(runtime: SquadRuntime) -> None:
    runtime.ledger.spend("fury", Decimal("8"))
    runtime.ledger.spend("mason", Decimal("0.95"))
    client = TestClient(create_app(runtime=runtime))

    alerts = {alert["agentId"]: alert for alert in client.get("/api/costs").json()["alerts"]}

    assert alerts["fury"]["severity"] == "warning"
    assert Decimal(alerts["fury"]["percentage"]) == Decimal(80)
    assert Decimal(alerts["fury"]["budget"]) == Decimal(10)
    assert alerts["mason"]["severity"] == "critical"
    assert Decimal(alerts["mason"]["currentCost"]) == Decimal("0.95")
