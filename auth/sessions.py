"""
auth/sessions.py -- Session Manager: lifecycle and access-control gates.

State machine:
  Anonymous --login/signup--> Authenticated(user_id)   via regenerate()
  Authenticated --logout-->   destroyed                via destroy()
  Authenticated --idle-->     destroyed                detected by resume()
  destroyed --next request--> Anonymous                via resume()/start()

There is no "admin" state. Admin is a privilege read from the Credential Store
each time require_admin() runs, so revoking it takes effect on the next request.

Fixation: regenerate() always deletes the current row and mints a new token
and a new CSRF token before binding the user id. A token handed out while the
client was anonymous can never become an authenticated token.

Idle expiry: every resumed session gets last_activity = now (sliding window).
A session whose last_activity is more than idle_seconds in the past is deleted
server-side on its next appearance; resume() reports expired=True when that
session was authenticated, and the HTTP layer redirects to /login.

Storage: the sessions table is keyed by HMAC(SECRET_KEY, raw token). This
module is the only writer of that table.

Gates take the Session value explicitly -- no request object, no ambient
state -- so they can be tested without an HTTP stack.

Layer rule: no imports from api/, web/ or ledger/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import Column, Float, Integer, String, Table

from auth.models import Session, User
from auth.tokens import new_csrf_token, new_session_token, session_key
from core.database import Database, metadata
from core.errors import LoginRequired, NotFound, StoreUnavailable

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("benefits.sessions")

DEFAULT_IDLE_SECONDS = 30 * 60

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(64), primary_key=True),  # HMAC-SHA256 hex of the raw token
    Column("user_id", Integer, index=True),  # NULL = anonymous
    Column("csrf_token", String(64), nullable=False),
    Column("created_at", Float, nullable=False),
    Column("last_activity", Float, nullable=False, index=True),
)


@dataclass
class SessionResolution:
    """Result of resume().

    created: the session is new and the client needs a fresh cookie.
    expired: an authenticated session was just destroyed for idleness.
    """

    session: Session
    created: bool = False
    expired: bool = False


class SessionManager:
    """Owns session creation, regeneration, idle expiry and destruction.

    Usage:
        sessions = SessionManager(db, user_store)
        resolution = await sessions.resume(cookie_value)
        session = await sessions.regenerate(resolution.session, user.id)
        user = await sessions.require_admin(session)
    """

    def __init__(
        self,
        db: Database,
        users: UserStore,
        idle_seconds: int = DEFAULT_IDLE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._users = users
        self.idle_seconds = idle_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, user_id: int | None = None) -> Session:
        """Create and persist a new session (anonymous unless user_id is given)."""
        now = self._clock()
        session = Session(
            token=new_session_token(),
            csrf_token=new_csrf_token(),
            last_activity=now,
            created_at=now,
            user_id=user_id,
        )
        async with self._db.begin() as conn:
            await conn.execute(
                _sessions.insert().values(
                    id=session_key(session.token),
                    user_id=user_id,
                    csrf_token=session.csrf_token,
                    created_at=now,
                    last_activity=now,
                )
            )
        return session

    async def resume(self, token: str | None) -> SessionResolution:
        """Resolve a cookie value to a live session, expiring or creating as needed."""
        if not token:
            return SessionResolution(await self.start(), created=True)

        key = session_key(token)
        async with self._db.connect() as conn:
            row = (await conn.execute(_sessions.select().where(_sessions.c.id == key))).fetchone()

        if row is None:
            return SessionResolution(await self.start(), created=True)

        now = self._clock()
        if self._is_idle(row.last_activity, now):
            await self._delete(key)
            expired = row.user_id is not None
            if expired:
                logger.info("Session for user id=%d expired after %.0fs idle", row.user_id, now - row.last_activity)
            return SessionResolution(await self.start(), created=True, expired=expired)

        async with self._db.begin() as conn:
            await conn.execute(_sessions.update().where(_sessions.c.id == key).values(last_activity=now))
        return SessionResolution(
            Session(
                token=token,
                csrf_token=row.csrf_token,
                last_activity=now,
                created_at=row.created_at,
                user_id=row.user_id,
            )
        )

    async def regenerate(self, session: Session, user_id: int) -> Session:
        """Replace `session` with a brand-new one bound to user_id."""
        await self._delete(session_key(session.token))
        fresh = await self.start(user_id=user_id)
        logger.info("Session regenerated for user id=%d", user_id)
        return fresh

    async def destroy(self, session: Session) -> None:
        await self._delete(session_key(session.token))
        if session.user_id is not None:
            logger.info("Session destroyed for user id=%d", session.user_id)

    async def purge_idle(self) -> int:
        """Delete every session past the idle window. Returns rows removed."""
        cutoff = self._clock() - self.idle_seconds
        async with self._db.begin() as conn:
            result = await conn.execute(_sessions.delete().where(_sessions.c.last_activity < cutoff))
        return result.rowcount

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def require_authenticated(self, session: Session) -> int:
        """Return the session's user id, or raise LoginRequired if anonymous."""
        if session.user_id is None:
            raise LoginRequired("Please log in.")
        return session.user_id

    async def require_admin(self, session: Session) -> User:
        """Return the admin user behind `session`, or raise LoginRequired.

        Fails closed: if the user record cannot be read -- deleted, or the
        store is down -- the request is denied, never allowed.
        """
        user_id = self.require_authenticated(session)
        try:
            user = await self._users.get_by_id(user_id)
        except (NotFound, StoreUnavailable) as exc:
            logger.warning("Admin check for user id=%d denied: %s", user_id, exc.__class__.__name__)
            raise LoginRequired("Please log in.") from exc
        if not user.is_admin:
            logger.warning("Admin check for user id=%d denied: not an admin", user_id)
            raise LoginRequired("Please log in.")
        return user

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_idle(self, last_activity: float, now: float) -> bool:
        return now - last_activity > self.idle_seconds

    async def _delete(self, key: str) -> None:
        async with self._db.begin() as conn:
            await conn.execute(_sessions.delete().where(_sessions.c.id == key))
