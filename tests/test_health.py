"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' when the store answers
  - No authentication required
  - Unknown paths still use the error envelope
"""

from __future__ import annotations

from api.main import API_VERSION


def test_health_returns_200_with_components(client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == API_VERSION
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_database_error(client, store, monkeypatch):
    monkeypatch.setattr(store, "ping", lambda: False)
    data = client.get("/api/v1/health").json()
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(client):
    """Health endpoint is accessible without any authentication headers."""
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unknown_path_uses_envelope(client):
    resp = client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
