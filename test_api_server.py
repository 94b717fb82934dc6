"""Tests for the HTTP API (vehicle link replaced by the in-memory double)"""

import pytest
from fastapi.testclient import TestClient

import api_server
from conftest import FakeVehicleLink
from mission import sequencer
from mission.errors import VehicleLinkError
from mission.models import Vehicle
from mission.sequencer import LaunchProfile, StepTimeouts

WAYPOINTS = [
    {"order": 1, "lat": 10.001, "lon": 20.001, "alt": 50.0},
    {"order": 2, "lat": 10.002, "lon": 20.002, "alt": 80.0},
    {"order": 3, "lat": 10.003, "lon": 20.003, "alt": 0.0},
]


@pytest.fixture
def connect(monkeypatch):
    monkeypatch.setattr(sequencer, "MISSION_PROFILE", LaunchProfile(settle_delay=0.0))
    monkeypatch.setattr(sequencer, "PATROL_PROFILE", LaunchProfile(
        settle_delay=0.0, settle_after_arm=True, timeouts=StepTimeouts(arm=1.0)))

    def _connect(link=None):
        link = link or FakeVehicleLink()
        monkeypatch.setattr(api_server, "vehicle", Vehicle(id="plane-1", link=link))
        return link
    return _connect


@pytest.fixture
def client():
    # no context manager: startup would open a real MAVLink connection
    return TestClient(api_server.app)


def test_health_without_vehicle(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "disconnected"


def test_vehicle_required(client):
    assert client.get("/api/vehicle").status_code == 503


def test_set_and_launch_active_mission(client, connect):
    link = connect()

    response = client.put("/api/missions/active", json={"id": "survey", "waypoints": WAYPOINTS})
    assert response.status_code == 200
    assert response.json()["id"] == "survey"

    response = client.post("/api/missions/launch")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "succeeded"
    assert body["items_uploaded"] == 4
    assert link.call_names[-1] == "start_mission"


def test_launch_without_active_mission(client, connect):
    connect()
    assert client.post("/api/missions/launch").status_code == 409


def test_invalid_mission_rejected(client, connect):
    link = connect()
    waypoints = [dict(WAYPOINTS[0]), dict(WAYPOINTS[2])]

    response = client.put("/api/missions/active", json={"id": "gap", "waypoints": waypoints})

    assert response.status_code == 422
    assert link.calls == []


def test_launch_failure_reports_step(client, connect):
    connect(FakeVehicleLink(fail={"arm": VehicleLinkError("Arm rejected: MAV_RESULT_DENIED")}))
    client.post("/api/missions/default")

    response = client.post("/api/missions/launch")

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["step"] == "arm"
    assert "MAV_RESULT_DENIED" in detail["error"]
    assert detail["states"][-1] == "failed"


def test_home_position_unavailable(client, connect):
    connect(FakeVehicleLink(fail={"read_position": VehicleLinkError("Timeout waiting for GPS position")}))

    response = client.post("/api/vehicle/takeoff", json={"altitude": 50})

    assert response.status_code == 504


def test_takeoff_runs_patrol(client, connect):
    link = connect()

    response = client.post("/api/vehicle/takeoff", json={"altitude": 75})

    assert response.status_code == 200
    assert len(link.uploaded) == 4
    assert link.uploaded[1].altitude == 75.0


def test_takeoff_altitude_must_be_positive(client, connect):
    connect()
    assert client.post("/api/vehicle/takeoff", json={"altitude": -5}).status_code == 422


def test_compile_preview_has_no_side_effects(client, connect):
    link = connect()

    response = client.post("/api/missions/compile", json={"waypoints": WAYPOINTS})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 4
    assert [item["command"] for item in body["items"]] == ["WAYPOINT", "TAKEOFF", "WAYPOINT", "LAND"]
    assert body["items"][1]["x"] == 100010000
    assert link.call_names == ["read_position"]


def test_land(client, connect):
    link = connect()
    assert client.post("/api/vehicle/land").status_code == 200
    assert link.call_names == ["land"]


def test_land_rejected(client, connect):
    connect(FakeVehicleLink(fail={"land": VehicleLinkError("Land rejected")}))
    assert client.post("/api/vehicle/land").status_code == 502


def test_default_mission_endpoint(client, connect):
    connect()
    response = client.post("/api/missions/default")
    assert response.status_code == 200
    assert response.json()["id"] == "Mission-mock-id"
    assert client.get("/api/vehicle").json()["active_mission"]["id"] == "Mission-mock-id"
