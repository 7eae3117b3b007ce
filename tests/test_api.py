"""
test_api.py — HTTP tests for the alert API and health endpoints.

Covers:
    • Submission (201, merge flag, 422 envelope with field name)
    • Listing, stats, map and change-feed endpoints
    • Point lookup of active and resolved alerts, 404
    • Operator hooks and 409 on illegal transitions
    • Health probes

The app runs with the static geocoder and no plan generator, so every
alert is planned from the fallback table.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.service import build_alert_service
from backend.app.core.config import settings
from backend.app.main import app

BASE = "/api/v1/alerts"


def _report(**overrides):
    body = {
        "type": "flood",
        "location_text": "Mumbai Coastal Area",
        "description": "Severe flooding in coastal areas, water level rising rapidly",
        "reported_severity": "High",
        "estimated_affected": 8000,
        "threats": ["Flooding", "Power Outage"],
        "anonymous": False,
        "reporter": {"name": "Priya Sharma", "phone": "+919876543210"},
    }
    body.update(overrides)
    return body


@pytest.fixture
def client():
    app.state.alerts = build_alert_service(settings)
    with TestClient(app) as c:
        yield c
    app.state.alerts = None


def _wait_for_state(client, alert_id, state, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"{BASE}/{alert_id}").json()
        if body["state"] == state and not body["processing"]:
            return body
        time.sleep(0.01)
    raise AssertionError(f"{alert_id} never reached {state}")


def _submit_planned(client, **overrides):
    resp = client.post(BASE, json=_report(**overrides))
    assert resp.status_code == 201
    alert_id = resp.json()["alert_id"]
    return _wait_for_state(client, alert_id, "planned")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Submission
# ═══════════════════════════════════════════════════════════════════════════

class TestSubmit:

    def test_created(self, client):
        resp = client.post(BASE, json=_report())
        assert resp.status_code == 201
        body = resp.json()
        assert body["alert_id"].startswith("ALR-")
        assert body["merged"] is False
        assert "X-Request-ID" in resp.headers

    def test_reaches_planned_with_fallback_plan(self, client):
        alert = _submit_planned(client)
        assert alert["priority_score"] == 93
        assert alert["plan"]["confidence"] == "degraded"
        assert alert["plan"]["estimated_response_time_minutes"] == 20
        assert alert["resolved_location"]["lat"] == pytest.approx(19.076)
        assert alert["reporter"]["name"] == "Priya Sharma"

    def test_duplicate_merged(self, client):
        first = client.post(BASE, json=_report()).json()
        second = client.post(BASE, json=_report(location_text="mumbai coastal area")).json()
        assert second == {"alert_id": first["alert_id"], "merged": True}
        alert = _wait_for_state(client, first["alert_id"], "planned")
        assert alert["merge_count"] == 1

    def test_validation_error_envelope(self, client):
        resp = client.post(BASE, json=_report(description="short"))
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["status"] == 422
        assert error["details"]["field"] == "description"

    def test_missing_type(self, client):
        body = _report()
        del body["type"]
        resp = client.post(BASE, json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "type"

    def test_anonymous_needs_no_reporter(self, client):
        body = _report(anonymous=True)
        del body["reporter"]
        assert client.post(BASE, json=body).status_code == 201

    def test_reporter_required_unless_anonymous(self, client):
        body = _report()
        del body["reporter"]
        resp = client.post(BASE, json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "reporter.name"

    def test_malformed_reporter_block(self, client):
        resp = client.post(BASE, json=_report(reporter="Priya"))
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "reporter"

    def test_nothing_created_on_rejection(self, client):
        client.post(BASE, json=_report(reported_severity="Apocalyptic"))
        assert client.get(f"{BASE}/stats").json()["total_active"] == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Dashboard Reads
# ═══════════════════════════════════════════════════════════════════════════

class TestDashboard:

    @pytest.fixture
    def seeded(self, client):
        flood = _submit_planned(client)
        fire = _submit_planned(
            client, type="fire", location_text="Delhi Sadar Bazaar",
            reported_severity="Critical", estimated_affected=40, threats=["Gas Leak"],
        )
        unknown = _submit_planned(
            client, type="other", location_text="Village near the ridge",
            reported_severity="Low", estimated_affected=0, threats=[],
        )
        return {"flood": flood, "fire": fire, "unknown": unknown}

    def test_list_all(self, client, seeded):
        body = client.get(BASE).json()
        assert body["count"] == 3
        assert body["alerts"][0]["alert_id"] == seeded["fire"]["alert_id"]

    def test_list_filters(self, client, seeded):
        body = client.get(BASE, params=[("severity", "High"), ("severity", "critical")]).json()
        assert {a["alert_id"] for a in body["alerts"]} == {
            seeded["flood"]["alert_id"], seeded["fire"]["alert_id"],
        }
        body = client.get(BASE, params={"type": "fire"}).json()
        assert [a["alert_id"] for a in body["alerts"]] == [seeded["fire"]["alert_id"]]
        body = client.get(BASE, params={"q": "power outage"}).json()
        assert [a["alert_id"] for a in body["alerts"]] == [seeded["flood"]["alert_id"]]

    def test_bad_filter(self, client):
        resp = client.get(BASE, params={"severity": "Extreme"})
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "severity"

    def test_stats(self, client, seeded):
        stats = client.get(f"{BASE}/stats").json()
        assert stats["total_active"] == 3
        assert stats["severity_counts"] == {"Critical": 1, "High": 1, "Medium": 0, "Low": 1}
        assert stats["total_affected"] == 8040

    def test_map(self, client, seeded):
        body = client.get(f"{BASE}/map").json()
        markers = {m["alert_id"]: m for m in body["markers"]}
        assert not markers[seeded["flood"]["alert_id"]]["approximate"]
        fallback = markers[seeded["unknown"]["alert_id"]]
        assert fallback["approximate"]
        assert (fallback["lat"], fallback["lng"]) == (
            settings.MAP_FALLBACK_LAT, settings.MAP_FALLBACK_LNG,
        )

    def test_events_poll(self, client, seeded):
        page = client.get(f"{BASE}/events").json()
        assert page["count"] == len(page["events"])
        assert page["events"][0]["event"] == "AlertCreated"
        last = page["last_sequence"]
        assert client.get(f"{BASE}/events", params={"since": last}).json()["count"] == 0
        assert client.get(f"{BASE}/events", params={"limit": 2}).json()["count"] == 2

    def test_unknown_alert(self, client):
        resp = client.get(f"{BASE}/ALR-000000000000")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Operator Hooks
# ═══════════════════════════════════════════════════════════════════════════

class TestOperatorHooks:

    def test_dispatch_then_resolve(self, client):
        alert_id = _submit_planned(client)["alert_id"]
        resp = client.post(f"{BASE}/{alert_id}/dispatch")
        assert resp.status_code == 200
        assert resp.json()["state"] == "dispatched"
        resp = client.post(f"{BASE}/{alert_id}/resolve")
        assert resp.json()["state"] == "resolved"
        # resolved alerts leave the live index but remain retrievable
        assert client.get(f"{BASE}/stats").json()["total_active"] == 0
        assert client.get(f"{BASE}/{alert_id}").json()["state"] == "resolved"

    def test_illegal_transition(self, client):
        alert_id = _submit_planned(client)["alert_id"]
        resp = client.post(f"{BASE}/{alert_id}/resolve")
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["details"]["current_state"] == "planned"

    def test_replan(self, client):
        alert_id = _submit_planned(client)["alert_id"]
        resp = client.post(f"{BASE}/{alert_id}/replan")
        assert resp.status_code == 202
        assert resp.json()["replanning"] is True
        alert = _wait_for_state(client, alert_id, "planned")
        assert alert["plan"] is not None

    def test_geocode(self, client):
        alert_id = _submit_planned(client)["alert_id"]
        resp = client.post(f"{BASE}/{alert_id}/geocode")
        assert resp.status_code == 200
        assert resp.json()["resolved_location"]["confidence"] == pytest.approx(0.6)

    def test_hooks_on_unknown_alert(self, client):
        assert client.post(f"{BASE}/ALR-000000000000/dispatch").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Root & Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == settings.APP_NAME

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_deep_health_degraded_without_planner(self, client):
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        names = {c["name"]: c for c in body["components"]}
        assert names["live_aggregator"]["status"] == "healthy"
        assert names["collaborators"]["details"]["plan_generator"] is None

    def test_readiness_serves_when_degraded(self, client):
        assert client.get("/health/ready").status_code == 200
