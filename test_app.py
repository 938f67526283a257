# tests/test_app.py
# API tests for the FastAPI app — Meraki and SSH calls are mocked.

import pytest
from unittest.mock import patch, AsyncMock
from fastapi.testclient import TestClient

import app as app_module
from errors import DeviceConnectionError
from meraki_api import MerakiAPIError


@pytest.fixture
def client():
    app_module.sessions.clear()
    with TestClient(app_module.app) as test_client:
        yield test_client
    app_module.sessions.clear()


def destination_body():
    return {
        "credentials": {"api_key": "test-api-key-abc123", "region": "com"},
        "organization_id": "123456",
        "network_id": "L_646829496481105433",
    }


def ready_session(client, sample_config, meraki_api_mock) -> str:
    sid = client.post("/api/sessions").json()["session_id"]
    assert client.post(f"/api/sessions/{sid}/upload", json={"config_text": sample_config}).status_code == 200
    assert client.post(f"/api/sessions/{sid}/review", json={}).status_code == 200
    with patch("migration_session.MerakiDashboardClient") as MockClient:
        MockClient.from_credentials.return_value = meraki_api_mock
        assert client.post(f"/api/sessions/{sid}/destination", json=destination_body()).status_code == 200
    return sid


def receive_until_done(ws) -> list[dict]:
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event["type"] in ("done", "error"):
            return events


# ------------------------------------------------------------------ #
#  Stateless endpoints                                                 #
# ------------------------------------------------------------------ #

class TestStateless:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_parse(self, client, sample_config):
        resp = client.post("/api/parse", json={"config_text": sample_config})
        assert resp.status_code == 200
        body = resp.json()
        assert body["parsed"]["hostname"] == "C9300-ACCESS-01"
        assert body["summary"]["n_acl_rules"] == 3

    def test_fetch_config(self, client, netmiko_mock):
        with patch("config_fetcher.ConnectHandler", return_value=netmiko_mock):
            resp = client.post("/api/fetch-config", json={
                "host": "192.168.1.10", "username": "admin", "password": "Cisco123!",
            })
        assert resp.status_code == 200
        assert resp.json()["summary"]["n_radius_servers"] == 1

    def test_fetch_config_ssh_failure(self, client):
        with patch("app.RunningConfigFetcher") as MockFetcher:
            MockFetcher.return_value.fetch = AsyncMock(side_effect=DeviceConnectionError("192.168.1.10", "timed out"))
            resp = client.post("/api/fetch-config", json={
                "host": "192.168.1.10", "username": "admin", "password": "x",
            })
        assert resp.status_code == 502
        assert "timed out" in resp.json()["detail"]

    def test_verify_key(self, client, meraki_api_mock):
        with patch("app.MerakiDashboardClient", return_value=meraki_api_mock):
            resp = client.get("/api/meraki/verify", params={"api_key": "k", "org_id": "123456"})
        assert resp.json() == {"valid": True, "org_name": "Test Organization"}

    def test_verify_key_invalid(self, client, meraki_api_mock):
        meraki_api_mock.verify_api_key.return_value = (False, "Invalid API key")
        with patch("app.MerakiDashboardClient", return_value=meraki_api_mock):
            resp = client.get("/api/meraki/verify", params={"api_key": "k", "org_id": "123456"})
        assert resp.status_code == 401

    def test_list_networks(self, client, meraki_api_mock):
        with patch("app.MerakiDashboardClient", return_value=meraki_api_mock):
            resp = client.get("/api/meraki/networks", params={"api_key": "k", "org_id": "123456"})
        assert [n["name"] for n in resp.json()] == ["HQ Network", "Branch Network"]

    def test_list_networks_api_error(self, client, meraki_api_mock):
        meraki_api_mock.list_networks.side_effect = MerakiAPIError(403, "Forbidden")
        with patch("app.MerakiDashboardClient", return_value=meraki_api_mock):
            resp = client.get("/api/meraki/networks", params={"api_key": "k", "org_id": "123456"})
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Forbidden"

    def test_unknown_region(self, client):
        resp = client.get("/api/meraki/organizations", params={"api_key": "k", "region": "mars"})
        assert resp.status_code == 400


# ------------------------------------------------------------------ #
#  Sessions                                                            #
# ------------------------------------------------------------------ #

class TestSessions:

    def test_create_and_get(self, client):
        sid = client.post("/api/sessions").json()["session_id"]
        resp = client.get(f"/api/sessions/{sid}")
        assert resp.status_code == 200
        assert resp.json()["phase"] == "upload"

    def test_missing_session(self, client):
        assert client.get("/api/sessions/nope").status_code == 404

    def test_review_before_upload_rejected(self, client):
        sid = client.post("/api/sessions").json()["session_id"]
        resp = client.post(f"/api/sessions/{sid}/review", json={})
        assert resp.status_code == 409

    def test_destination_sets_phase(self, client, sample_config, meraki_api_mock):
        sid = ready_session(client, sample_config, meraki_api_mock)
        status = client.get(f"/api/sessions/{sid}").json()
        assert status["phase"] == "claim"
        assert status["network"]["name"] == "HQ Network"

    def test_delete(self, client):
        sid = client.post("/api/sessions").json()["session_id"]
        assert client.delete(f"/api/sessions/{sid}").status_code == 200
        assert client.get(f"/api/sessions/{sid}").status_code == 404

    def test_results_before_apply(self, client):
        sid = client.post("/api/sessions").json()["session_id"]
        assert client.get(f"/api/sessions/{sid}/results").status_code == 404


# ------------------------------------------------------------------ #
#  WebSockets                                                          #
# ------------------------------------------------------------------ #

class TestWebSockets:

    def test_claim_stream(self, client, sample_config, meraki_api_mock):
        sid = ready_session(client, sample_config, meraki_api_mock)
        with patch("claim_coordinator.MerakiDashboardClient") as MockClient:
            MockClient.from_credentials.return_value = meraki_api_mock
            with client.websocket_connect(f"/ws/sessions/{sid}/claim") as ws:
                ws.send_json({"cloud_ids": ["Q2XX-AAAA-0001"]})
                events = receive_until_done(ws)

        types = [e["type"] for e in events]
        assert types[-2:] == ["result", "done"]
        assert events[-2]["claimed"][0]["model"] == "C9300-48U"
        assert events[-1]["status"]["phase"] == "apply"

    def test_apply_stream(self, client, sample_config, meraki_api_mock):
        sid = ready_session(client, sample_config, meraki_api_mock)
        with patch("apply_orchestrator.MerakiDashboardClient") as MockClient:
            MockClient.from_credentials.return_value = meraki_api_mock
            with client.websocket_connect(f"/ws/sessions/{sid}/apply") as ws:
                ws.send_json({"action": "start"})
                events = receive_until_done(ws)

        summary = next(e for e in events if e["type"] == "summary")
        assert summary["ports_pushed"] == 2
        assert summary["acl_rules_pushed"] == 3
        assert events[-1]["status"]["phase"] == "results"

        results = client.get(f"/api/sessions/{sid}/results").json()
        assert results["policies_created"] == 1

    def test_apply_unknown_session(self, client):
        with client.websocket_connect("/ws/sessions/nope/apply") as ws:
            assert ws.receive_json() == {"type": "error", "msg": "Session not found"}

    def test_apply_before_destination(self, client, sample_config):
        sid = client.post("/api/sessions").json()["session_id"]
        client.post(f"/api/sessions/{sid}/upload", json={"config_text": sample_config})
        with client.websocket_connect(f"/ws/sessions/{sid}/apply") as ws:
            ws.send_json({"action": "start"})
            event = ws.receive_json()
        assert event["type"] == "error"
        assert "destination" in event["msg"]
