"""Tests for the Flask routes (reconciler and Salesforce client patched)."""

from unittest.mock import MagicMock, patch

import pytest

import flask_app
from workflows.call_sync.errors import AuthFailed, SyncInProgress
from workflows.call_sync.models import SyncSummary


@pytest.fixture
def client():
    flask_app.app.config["TESTING"] = True
    with flask_app.app.test_client() as client:
        yield client


@pytest.fixture
def reconciler():
    reconciler = MagicMock()
    with patch.object(flask_app, "get_reconciler", return_value=reconciler):
        yield reconciler


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "scheduler_running": False}


class TestSyncRoute:
    def test_success(self, client, reconciler):
        reconciler.run_sync.return_value = SyncSummary(synced=3, total=3, unique_sessions=3)
        resp = client.post("/sync/ringcentral")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["ok"] is True
        assert body["synced"] == 3

    def test_dropped_is_conflict(self, client, reconciler):
        reconciler.run_sync.return_value = SyncSummary(ok=False, dropped=True, error="sync already in progress")
        resp = client.get("/sync/ringcentral")

        assert resp.status_code == 409
        assert resp.get_json()["dropped"] is True

    def test_failed_pass(self, client, reconciler):
        reconciler.run_sync.return_value = SyncSummary(ok=False, error="503 Service Unavailable")
        resp = client.post("/sync/ringcentral")

        assert resp.status_code == 500
        assert resp.get_json()["error"] == "503 Service Unavailable"


class TestMappingRoute:
    def test_preview(self, client, reconciler):
        reconciler.preview_mappings.return_value = [{"sessionId": "s-1"}, {"sessionId": "s-2"}]
        resp = client.get("/test/ringcentral/mapping?limit=2")

        assert resp.status_code == 200
        assert resp.get_json()["summary"] == {"totalCalls": 2}
        reconciler.preview_mappings.assert_called_once_with(limit=2)

    def test_busy_while_pass_running(self, client, reconciler):
        reconciler.preview_mappings.side_effect = SyncInProgress("sync already in progress")
        resp = client.get("/test/ringcentral/mapping")

        assert resp.status_code == 409
        assert resp.get_json()["ok"] is False

    def test_error(self, client, reconciler):
        reconciler.preview_mappings.side_effect = AuthFailed("Missing RingCentral credentials")
        resp = client.get("/test/ringcentral/mapping")

        assert resp.status_code == 500
        assert resp.get_json()["ok"] is False


class TestJwtRoute:
    def test_token_preview_truncated(self, client):
        token = {"access_token": "x" * 100, "instance_url": "https://example.my.salesforce.com", "id": "id-url"}
        with patch.object(flask_app.SalesforceClient, "request_token", return_value=token):
            resp = client.post("/auth/sf/jwt/test")

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["access_token_preview"] == "x" * 36 + "...(truncated)"
        assert body["instance_url"] == "https://example.my.salesforce.com"

    def test_auth_failure(self, client):
        error = AuthFailed("invalid_grant", details={"error": "invalid_grant"})
        with patch.object(flask_app.SalesforceClient, "request_token", side_effect=error):
            resp = client.post("/auth/sf/jwt/test")

        assert resp.status_code == 500
        assert resp.get_json()["details"] == {"error": "invalid_grant"}

    def test_unexpected_error_is_json(self, client):
        with patch.object(flask_app.SalesforceClient, "request_token", side_effect=RuntimeError("boom")):
            resp = client.post("/auth/sf/jwt/test")

        assert resp.status_code == 500
        assert resp.get_json() == {"ok": False, "error": "boom", "details": None}
