"""Tests for the Dev.Mode HTTP API."""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from devmode.config import Settings
from devmode.core import DevModeGuard
from devmode.errors import PersistenceError
from web.backend.app.main import app
from web.backend.app.routers.devmode import get_guard

MANAGER = {
    "X-DevMode-User-Id": "1",
    "X-DevMode-User": "admin",
    "X-DevMode-Can-Manage": "1",
    "CF-Connecting-IP": "93.184.216.34",
}


@pytest.fixture
def guard():
    with tempfile.TemporaryDirectory() as tmpdir:
        settings = Settings(data_dir=Path(tmpdir) / "data", uploads_dir=Path(tmpdir) / "uploads")
        settings.uploads_dir.mkdir()
        instance = DevModeGuard(settings, clock=lambda: 1700000000.0)
        app.dependency_overrides[get_guard] = lambda: instance
        yield instance
        app.dependency_overrides.clear()


@pytest.fixture
def client(guard):
    return TestClient(app)


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_state_defaults_to_protected(client):
    data = client.get("/api/devmode/state").json()
    assert data["mode"] == "protected"
    assert data["label"] == "Protected"
    assert data["hours_until_revert"] is None
    assert data["capabilities"]["disallow_file_mods"] is True


def test_toggle_requires_manage_capability(client, guard):
    response = client.post("/api/devmode/toggle", headers={"X-DevMode-User": "editor"})
    assert response.status_code == 403
    assert guard.audit.recent() == []


def test_toggle_switches_and_logs(client, guard):
    response = client.post("/api/devmode/toggle", headers=MANAGER)
    assert response.status_code == 200
    assert response.json() == {"new_state": "active", "message": "Dev.Mode state changed to Active."}

    line = guard.audit.recent()[0]
    assert "PROTECTED → ACTIVE" in line
    assert "User: admin (ID: 1) | IP: 93.184.216.34" in line

    assert client.post("/api/devmode/toggle", headers=MANAGER).json()["new_state"] == "protected"


def test_toggle_persistence_failure_returns_500(client, guard, monkeypatch):
    def broken(requester):
        raise PersistenceError("disk full")

    monkeypatch.setattr(guard, "toggle", broken)
    response = client.post("/api/devmode/toggle", headers=MANAGER)
    assert response.status_code == 500


def test_update_settings_clamps(client):
    response = client.put(
        "/api/devmode/settings",
        json={"auto_revert_hours": 400, "block_user_creation": False},
        headers=MANAGER,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["auto_revert_hours"] == 168
    assert data["block_user_creation"] is False
    assert data["block_uploads_php"] is True

    assert client.get("/api/devmode/settings").json() == data


def test_update_settings_requires_manage_capability(client):
    response = client.put("/api/devmode/settings", json={"auto_revert_hours": 2})
    assert response.status_code == 403


def test_state_reports_pending_revert(client):
    client.put("/api/devmode/settings", json={"auto_revert_hours": 2}, headers=MANAGER)
    client.post("/api/devmode/toggle", headers=MANAGER)
    data = client.get("/api/devmode/state").json()
    assert data["mode"] == "active"
    assert data["hours_until_revert"] == 2.0
    assert data["capabilities"]["disallow_file_edit"] is False


def test_log_entries(client):
    client.post("/api/devmode/toggle", headers=MANAGER)
    assert client.get("/api/devmode/log").status_code == 403

    entries = client.get("/api/devmode/log", params={"limit": 5}, headers=MANAGER).json()
    assert len(entries) == 1
    assert entries[0]["category"] == "STATE_CHANGE"
    assert entries[0]["kind"] == "state-change"


def test_notice_is_shown_once(client, guard):
    guard.store.raise_notice()
    assert client.get("/api/devmode/notice").status_code == 403

    first = client.get("/api/devmode/notice", headers=MANAGER).json()
    assert first["auto_reverted"] is True
    assert client.get("/api/devmode/notice", headers=MANAGER).json()["auto_reverted"] is False


def test_hardening_status(client, guard):
    guard.hardener.apply_protection()
    data = client.get("/api/devmode/hardening", headers=MANAGER).json()
    assert data["htaccess_protected"] is True
    assert data["is_protected"] is True
