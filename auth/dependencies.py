"""
auth/dependencies.py -- FastAPI Depends() helpers wrapping the session gates.

The session middleware (api/main.py) resolves the cookie before any route
runs and leaves the live Session on request.state.session. These helpers
hand that value to the Session Manager's gates:

  current_session()        -- any session, anonymous or not
  require_authenticated()  -- LoginRequired if anonymous
  require_admin()          -- LoginRequired unless the user is an admin
  csrf_protect()           -- CsrfRejected on a mutating request without
                              the session's token

LoginRequired is turned into a 302 to /login by the exception handler in
api/main.py, so a handler guarded by these dependencies never runs for a
request that fails the gate.

Ordering: declare the gate parameter before csrf_protect so FastAPI solves
them in that order (session gate first, then CSRF), matching the request flow.

Layer rule: no imports from web/ or ledger/. fastapi is imported because this
module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.csrf import CSRF_FORM_FIELD, CSRF_HEADER, CsrfGuard
from auth.models import Session, User
from auth.sessions import SessionManager


def current_session(request: Request) -> Session:
    """Return the Session attached by the session middleware."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise RuntimeError("No session on request -- is the session middleware installed?")
    return session


def require_authenticated(request: Request) -> Session:
    """Require a logged-in session.

    Use as a FastAPI dependency:
        @router.get("/dashboard")
        async def route(session: Session = Depends(require_authenticated)): ...
    """
    session = current_session(request)
    sessions: SessionManager = request.app.state.sessions
    sessions.require_authenticated(session)
    return session


async def require_admin(request: Request) -> User:
    """Require a logged-in session whose user is an admin. Returns the admin User."""
    sessions: SessionManager = request.app.state.sessions
    return await sessions.require_admin(current_session(request))


async def csrf_protect(request: Request) -> None:
    """Verify the anti-forgery token on state-changing requests.

    The header is checked first; form posts fall back to the csrf_token field.
    request.form() is cached on the Request, so route Form() parameters still
    see the body afterwards.
    """
    guard: CsrfGuard = request.app.state.csrf
    if not guard.requires_check(request.method):
        return
    presented = request.headers.get(CSRF_HEADER)
    if not presented:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            value = form.get(CSRF_FORM_FIELD)
            presented = value if isinstance(value, str) else None
    guard.verify(current_session(request), presented)
