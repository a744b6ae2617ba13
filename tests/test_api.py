from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import T0, FakeAlerts, FakeDirections, FakeForecast, FakeGeocoder, place
from tripcast import auth
from tripcast.main import Services, app, get_services
from tripcast.planner import RoutePlanner
from tripcast.providers import DirectionsResult
from tripcast.waypoints import WaypointInserter
from tripcast.weather import WeatherAttributor

ORIGIN = place("Denver", 39.74, -104.99)
DEST = place("Goodland", 39.35, -101.71)
ROUTE = DirectionsResult(path=[(-104.99, 39.74), (-101.71, 39.35)], duration_s=3 * 3600, distance_m=300_000)


def _services(directions):
    planner = RoutePlanner(directions, FakeGeocoder(lambda at: place(f"Town{int(at.lng)}", at.lat, at.lng)), timeout_s=1.0)
    return Services(
        planner=planner,
        attributor=WeatherAttributor(FakeForecast(), FakeAlerts(), timeout_s=1.0),
        inserter=WaypointInserter(planner),
    )


@pytest.fixture
def client():
    app.dependency_overrides[get_services] = lambda: _services(FakeDirections(ROUTE))
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def no_route_client():
    app.dependency_overrides[get_services] = lambda: _services(FakeDirections(None))
    yield TestClient(app)
    app.dependency_overrides.clear()


def _route_body(**extra):
    return {
        "origin": ORIGIN.model_dump(mode="json"),
        "destination": DEST.model_dump(mode="json"),
        "sample_interval_minutes": 60,
        "departure_time": T0.isoformat(),
        **extra,
    }


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_plan_route_returns_enriched_steps(client):
    r = client.post("/v1/route", json=_route_body())
    assert r.status_code == 200
    data = r.json()
    assert data["total_time"] == "3 hr"
    steps = data["steps"]
    assert [s["time_offset_hours"] for s in steps] == [0.0, 1.0, 2.0, 3.0]
    assert steps[0]["place"]["short_name"] == "Denver"
    assert steps[-1]["place"]["short_name"] == "Goodland"
    assert all(s["weather"] is not None for s in steps)


def test_plan_route_without_route_is_404(no_route_client):
    r = no_route_client.post("/v1/route", json=_route_body())
    assert r.status_code == 404


def test_plan_route_rejects_bad_interval(client):
    r = client.post("/v1/route", json=_route_body(sample_interval_minutes=5))
    assert r.status_code == 422


def test_enrich_recomputes_arrival_times(client):
    steps = client.post("/v1/route", json=_route_body()).json()["steps"]
    later = T0 + timedelta(hours=6)
    r = client.post("/v1/route/enrich", json={"steps": steps, "departure_time": later.isoformat()})
    assert r.status_code == 200
    arrivals = [s["arrival_time"] for s in r.json()["steps"]]
    assert arrivals[0].startswith("2026-10-19T06:00:00")


def test_add_waypoint(client):
    steps = client.post("/v1/route", json=_route_body()).json()["steps"]
    body = {
        "steps": steps,
        "origin": ORIGIN.model_dump(mode="json"),
        "place": place("Stop", 39.5, -103.0).model_dump(mode="json"),
        "departure_time": T0.isoformat(),
    }
    r = client.post("/v1/route/waypoints", json=body)
    assert r.status_code == 200
    out = r.json()["steps"]
    manual = [s for s in out if s["is_manual_waypoint"]]
    assert len(manual) == 1
    assert manual[0]["place"]["short_name"] == "Stop"
    offsets = [s["time_offset_hours"] for s in out]
    assert offsets == sorted(offsets)


def test_api_key_is_enforced(client, monkeypatch):
    monkeypatch.setattr(auth, "API_KEY", "secret")
    assert client.post("/v1/route", json=_route_body()).status_code == 401
    ok = client.post("/v1/route", json=_route_body(), headers={"X-API-Key": "secret"})
    assert ok.status_code == 200


def test_live_session_plans_and_scrubs(client):
    with client.websocket_connect("/v1/route/live") as ws:
        ws.send_json({"type": "route", **_route_body()})
        first = ws.receive_json()
        assert first["type"] == "route"
        assert first["offset_hours"] == 0.0
        assert first["steps"][0]["arrival_time"].startswith("2026-10-19T00:00:00")

        ws.send_json({"type": "scrub", "offset_hours": 2.0})
        moved = ws.receive_json()
        assert moved["offset_hours"] == 2.0
        assert moved["steps"][0]["arrival_time"].startswith("2026-10-19T02:00:00")


def test_live_session_reports_bad_messages(client):
    with client.websocket_connect("/v1/route/live") as ws:
        ws.send_json({"type": "teleport"})
        assert ws.receive_json()["status"] == 400
        ws.send_json({"type": "scrub"})
        assert ws.receive_json()["status"] == 422
        ws.send_json({"type": "waypoint", "place": place("Stop").model_dump(mode="json")})
        assert ws.receive_json()["status"] == 409


def test_live_session_requires_credentials(client, monkeypatch):
    monkeypatch.setattr(auth, "API_KEY", "secret")
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/v1/route/live") as ws:
            ws.receive_json()


class ExplodingPlanner:
    async def plan_params(self, params):
        raise KeyError("geometry")


def test_live_session_reports_unexpected_failures():
    services = _services(FakeDirections(ROUTE))
    services.planner = ExplodingPlanner()
    app.dependency_overrides[get_services] = lambda: services
    try:
        with TestClient(app).websocket_connect("/v1/route/live") as ws:
            ws.send_json({"type": "route", **_route_body()})
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["status"] == 500
            # the session keeps serving after the failure
            ws.send_json({"type": "teleport"})
            assert ws.receive_json()["status"] == 400
    finally:
        app.dependency_overrides.clear()
