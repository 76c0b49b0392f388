"""
tests/test_api_routes.py -- Integration tests for the JSON API.

These tests exercise the full stack: FastAPI routing -> session middleware ->
gate dependencies -> stores -> response model serialization. The API shares
the browser's session cookie; CSRF travels in the X-CSRF-Token header.

Coverage:
  - Anonymous requests to protected API routes get 401 JSON, not a redirect
  - POST /auth/login: success regenerates the session, failure is a generic 401
  - GET /auth/me, GET/PUT /allocations, GET /users (admin only)
  - An idle-expired session on an API path is a 401, not a login redirect
  - Errors use the {"error": {"code", "message", "detail"}} envelope
"""

from __future__ import annotations


def _api_login(portal, user_name: str, password: str):
    return portal.client.post(
        "/api/v1/auth/login",
        json={"user_name": user_name, "password": password},
        headers={"X-CSRF-Token": portal.csrf_token()},
    )


class TestApiAuthFailure:
    def test_me_unauthenticated(self, portal) -> None:
        resp = portal.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "login_required"

    def test_allocations_unauthenticated(self, portal) -> None:
        assert portal.client.get("/api/v1/allocations").status_code == 401

    def test_users_requires_admin(self, portal) -> None:
        _api_login(portal, *portal.USER)
        resp = portal.client.get("/api/v1/users")
        assert resp.status_code == 401


class TestApiLogin:
    def test_login_returns_new_csrf_token(self, portal) -> None:
        before = portal.csrf_token()
        resp = portal.client.post(
            "/api/v1/auth/login",
            json={"user_name": portal.USER[0], "password": portal.USER[1]},
            headers={"X-CSRF-Token": before},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["user_name"] == portal.USER[0]
        assert body["landing"] == "/dashboard"
        assert body["csrf_token"] != before
        assert portal.csrf_token() == body["csrf_token"]

    def test_bad_credentials_generic(self, portal) -> None:
        resp = _api_login(portal, portal.USER[0], "Wrong1234")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert _api_login(portal, "nobody", "Wrong1234").json() == resp.json()

    def test_login_without_csrf_rejected(self, portal) -> None:
        portal.csrf_token()
        resp = portal.client.post("/api/v1/auth/login", json={"user_name": portal.USER[0], "password": portal.USER[1]})
        assert resp.status_code == 403

    def test_logout(self, portal) -> None:
        body = _api_login(portal, *portal.USER).json()
        resp = portal.client.post("/api/v1/auth/logout", headers={"X-CSRF-Token": body["csrf_token"]})
        assert resp.status_code == 200
        assert portal.client.get("/api/v1/auth/me").status_code == 401


class TestApiAllocations:
    def test_me(self, portal) -> None:
        _api_login(portal, *portal.USER)
        me = portal.client.get("/api/v1/auth/me").json()
        assert me["id"] == portal.ids["alice"]
        assert me["email"] == "alice@example.com"
        assert "password_hash" not in me

    def test_get_own(self, portal) -> None:
        _api_login(portal, *portal.USER)
        body = portal.client.get("/api/v1/allocations").json()
        assert body["threshold"] is None
        assert body["allocations"][0]["bonds"] == 40

    def test_put_replaces(self, portal) -> None:
        token = _api_login(portal, *portal.USER).json()["csrf_token"]
        resp = portal.client.put(
            "/api/v1/allocations",
            json={"stocks": 40, "funds": 35, "bonds": 25},
            headers={"X-CSRF-Token": token},
        )
        assert resp.status_code == 200
        assert resp.json()["stocks"] == 40

    def test_put_invalid_total(self, portal) -> None:
        token = _api_login(portal, *portal.USER).json()["csrf_token"]
        resp = portal.client.put(
            "/api/v1/allocations",
            json={"stocks": 40, "funds": 35, "bonds": 20},
            headers={"X-CSRF-Token": token},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_allocation"

    def test_put_without_csrf(self, portal) -> None:
        _api_login(portal, *portal.USER)
        resp = portal.client.put("/api/v1/allocations", json={"stocks": 100, "funds": 0, "bonds": 0})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "csrf_rejected"

    def test_threshold_errors(self, portal) -> None:
        _api_login(portal, *portal.USER)
        bad = portal.client.get("/api/v1/allocations?threshold=100")
        assert bad.status_code == 400
        assert bad.json()["error"]["code"] == "invalid_threshold"
        none = portal.client.get("/api/v1/allocations?threshold=90")
        assert none.status_code == 404
        assert none.json()["error"]["code"] == "no_allocations"

    def test_threshold_report(self, portal) -> None:
        _api_login(portal, *portal.USER)
        body = portal.client.get("/api/v1/allocations?threshold=10").json()
        assert body["threshold"] == 10
        assert len(body["allocations"]) == 1

    def test_zero_padded_threshold_is_parsed(self, portal) -> None:
        _api_login(portal, *portal.USER)
        resp = portal.client.get("/api/v1/allocations?threshold=000000010")
        assert resp.status_code == 200
        assert resp.json()["threshold"] == 10

    def test_long_threshold_is_invalid_threshold(self, portal) -> None:
        _api_login(portal, *portal.USER)
        resp = portal.client.get("/api/v1/allocations?threshold=12345678901234")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_threshold"


class TestApiUsers:
    def test_admin_lists_users(self, portal) -> None:
        _api_login(portal, *portal.ADMIN)
        body = portal.client.get("/api/v1/users").json()
        assert body["total"] == 1
        assert body["users"][0]["user_name"] == portal.USER[0]

    def test_admin_can_include_admins(self, portal) -> None:
        _api_login(portal, *portal.ADMIN)
        body = portal.client.get("/api/v1/users?include_admins=true").json()
        assert {u["user_name"] for u in body["users"]} == {portal.ADMIN[0], portal.USER[0]}


class TestApiIdleExpiry:
    def test_expired_session_gets_401_not_redirect(self, portal) -> None:
        _api_login(portal, *portal.USER)
        portal.clock.advance(31 * 60)
        resp = portal.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "login_required"
        assert "set-cookie" in resp.headers

    def test_live_session_within_window(self, portal) -> None:
        _api_login(portal, *portal.USER)
        portal.clock.advance(29 * 60)
        assert portal.client.get("/api/v1/auth/me").status_code == 200
