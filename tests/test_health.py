"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok'
  - No session is created for health probes
  - Never rate limited
"""

from __future__ import annotations


def test_health_returns_200_with_components(portal):
    resp = portal.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_sets_no_session_cookie(portal):
    resp = portal.client.get("/api/v1/health")
    assert "set-cookie" not in resp.headers


def test_health_is_not_rate_limited(portal):
    for _ in range(110):
        assert portal.client.get("/api/v1/health").status_code == 200


def test_health_reports_degraded_store(portal, monkeypatch):
    async def _down():
        return False

    monkeypatch.setattr(portal.state.db, "ping", _down)
    resp = portal.client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
