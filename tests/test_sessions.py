"""
tests/test_sessions.py -- Unit tests for the Session Manager and CSRF Guard.

The gates take a Session value, so these run without any HTTP stack. Time is
driven by FakeClock from conftest.py.

Covers:
  - resume(None) / resume(unknown) create an anonymous session
  - regenerate() changes both the session token and the CSRF token, and the
    old token no longer resolves to the user
  - idle expiry: 29 minutes -> still valid, 31 minutes -> expired
  - sliding window: activity resets the idle clock
  - destroy() and purge_idle()
  - require_authenticated / require_admin, including fail-closed on store errors
  - CsrfGuard: safe methods skipped, mismatch and missing tokens rejected
"""

from __future__ import annotations

import pytest

from auth.csrf import CsrfGuard
from core.errors import CsrfRejected, LoginRequired, StoreUnavailable


@pytest.fixture
def user_factory(stores):
    async def _make(name: str = "bob", *, is_admin: bool = False):
        return await stores.users.create_user(name, "Bob", "Builder", "Secret123", is_admin=is_admin)

    return _make


class TestResume:
    @pytest.mark.asyncio
    async def test_no_cookie_creates_anonymous_session(self, stores) -> None:
        resolution = await stores.sessions.resume(None)
        assert resolution.created is True
        assert resolution.expired is False
        assert resolution.session.user_id is None
        assert resolution.session.csrf_token

    @pytest.mark.asyncio
    async def test_unknown_token_creates_new_session(self, stores) -> None:
        resolution = await stores.sessions.resume("forged-token")
        assert resolution.created is True
        assert resolution.session.token != "forged-token"

    @pytest.mark.asyncio
    async def test_known_token_resumes(self, stores) -> None:
        first = (await stores.sessions.resume(None)).session
        again = await stores.sessions.resume(first.token)
        assert again.created is False
        assert again.session.token == first.token
        assert again.session.csrf_token == first.csrf_token


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_new_token_and_csrf(self, stores, user_factory) -> None:
        bob = await user_factory()
        anon = (await stores.sessions.resume(None)).session
        authed = await stores.sessions.regenerate(anon, bob.id)
        assert authed.token != anon.token
        assert authed.csrf_token != anon.csrf_token
        assert authed.user_id == bob.id

    @pytest.mark.asyncio
    async def test_old_token_does_not_carry_identity(self, stores, user_factory) -> None:
        bob = await user_factory()
        anon = (await stores.sessions.resume(None)).session
        await stores.sessions.regenerate(anon, bob.id)
        stale = await stores.sessions.resume(anon.token)
        assert stale.created is True
        assert stale.session.user_id is None


class TestIdleExpiry:
    @pytest.mark.asyncio
    async def test_29_minutes_is_still_valid(self, stores, user_factory) -> None:
        bob = await user_factory()
        session = await stores.sessions.start(user_id=bob.id)
        stores.clock.advance(29 * 60)
        resolution = await stores.sessions.resume(session.token)
        assert resolution.expired is False
        assert resolution.session.user_id == bob.id

    @pytest.mark.asyncio
    async def test_31_minutes_expires(self, stores, user_factory) -> None:
        bob = await user_factory()
        session = await stores.sessions.start(user_id=bob.id)
        stores.clock.advance(31 * 60)
        resolution = await stores.sessions.resume(session.token)
        assert resolution.expired is True
        assert resolution.session.user_id is None
        assert resolution.session.token != session.token

    @pytest.mark.asyncio
    async def test_activity_slides_the_window(self, stores, user_factory) -> None:
        bob = await user_factory()
        session = await stores.sessions.start(user_id=bob.id)
        for _ in range(3):
            stores.clock.advance(20 * 60)
            resolution = await stores.sessions.resume(session.token)
            assert resolution.expired is False

    @pytest.mark.asyncio
    async def test_idle_anonymous_session_is_replaced_not_expired(self, stores) -> None:
        anon = (await stores.sessions.resume(None)).session
        stores.clock.advance(31 * 60)
        resolution = await stores.sessions.resume(anon.token)
        assert resolution.created is True
        assert resolution.expired is False

    @pytest.mark.asyncio
    async def test_purge_idle(self, stores) -> None:
        await stores.sessions.start()
        stores.clock.advance(31 * 60)
        live = await stores.sessions.start()
        assert await stores.sessions.purge_idle() == 1
        assert (await stores.sessions.resume(live.token)).created is False


class TestDestroy:
    @pytest.mark.asyncio
    async def test_destroyed_session_is_gone(self, stores, user_factory) -> None:
        bob = await user_factory()
        session = await stores.sessions.start(user_id=bob.id)
        await stores.sessions.destroy(session)
        resolution = await stores.sessions.resume(session.token)
        assert resolution.created is True
        assert resolution.session.user_id is None


class TestGates:
    @pytest.mark.asyncio
    async def test_require_authenticated(self, stores, user_factory) -> None:
        bob = await user_factory()
        anon = await stores.sessions.start()
        with pytest.raises(LoginRequired):
            stores.sessions.require_authenticated(anon)
        authed = await stores.sessions.start(user_id=bob.id)
        assert stores.sessions.require_authenticated(authed) == bob.id

    @pytest.mark.asyncio
    async def test_require_admin_allows_admin(self, stores, user_factory) -> None:
        root = await user_factory("root", is_admin=True)
        session = await stores.sessions.start(user_id=root.id)
        assert (await stores.sessions.require_admin(session)).id == root.id

    @pytest.mark.asyncio
    async def test_require_admin_denies_regular_user(self, stores, user_factory) -> None:
        bob = await user_factory()
        session = await stores.sessions.start(user_id=bob.id)
        with pytest.raises(LoginRequired):
            await stores.sessions.require_admin(session)

    @pytest.mark.asyncio
    async def test_require_admin_denies_anonymous(self, stores) -> None:
        with pytest.raises(LoginRequired):
            await stores.sessions.require_admin(await stores.sessions.start())

    @pytest.mark.asyncio
    async def test_require_admin_denies_deleted_user(self, stores) -> None:
        session = await stores.sessions.start(user_id=404)
        with pytest.raises(LoginRequired):
            await stores.sessions.require_admin(session)

    @pytest.mark.asyncio
    async def test_require_admin_fails_closed_on_store_error(self, stores, user_factory, monkeypatch) -> None:
        root = await user_factory("root", is_admin=True)
        session = await stores.sessions.start(user_id=root.id)

        async def _down(user_id):
            raise StoreUnavailable("down")

        monkeypatch.setattr(stores.users, "get_by_id", _down)
        with pytest.raises(LoginRequired):
            await stores.sessions.require_admin(session)


class TestCsrfGuard:
    @pytest.mark.asyncio
    async def test_matching_token_passes(self, stores) -> None:
        session = await stores.sessions.start()
        CsrfGuard().verify(session, session.csrf_token)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("presented", [None, "", "not-the-token"])
    async def test_bad_token_rejected(self, stores, presented) -> None:
        session = await stores.sessions.start()
        with pytest.raises(CsrfRejected):
            CsrfGuard().verify(session, presented)

    @pytest.mark.parametrize("method,expected", [("GET", False), ("head", False), ("POST", True), ("PUT", True)])
    def test_requires_check(self, method, expected) -> None:
        assert CsrfGuard().requires_check(method) is expected
