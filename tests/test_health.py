"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok', and 'error' when the store is down
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError


def test_health_returns_200_with_components(api):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_degraded_when_database_unreachable(api):
    """A failing store ping flips database to 'error' and status to 'degraded'."""
    with patch.object(api.store, "ping", side_effect=OperationalError("SELECT 1", {}, Exception("down"))):
        resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(api):
    """Health endpoint is accessible without any authentication headers."""
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_untrusted_host_rejected(api):
    resp = api.client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
