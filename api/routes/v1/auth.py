"""
api/routes/v1/auth.py -- Session authentication REST endpoints.

Routes:
  POST /api/v1/auth/login   -- password login; regenerates the session
  POST /api/v1/auth/logout  -- destroys the session; cookie cleared
  GET  /api/v1/auth/me      -- current user info (requires login)
  GET  /api/v1/auth/csrf    -- CSRF token for the current session (any session)

JSON clients use the same session cookie as the browser forms. They fetch the
CSRF token from /auth/csrf and send it back in X-CSRF-Token on every POST/PUT.

Security:
  POST /login carries the authentication window (AUTH_LIMIT, 5 per 60 minutes),
  shared with the web login form under AUTH_SCOPE.
  validate_login() runs one bcrypt check on every path -- use it, never inline.
  Wrong user name and wrong password produce the same 401 "bad_credentials";
  the distinct reason only reaches the log.
  Cache-Control: no-store on login and logout responses.
"""

# No "from __future__ import annotations" here: slowapi wraps login() and
# FastAPI resolves the wrapper's annotations against slowapi's globals, so
# they must be real objects, not strings.
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import CsrfTokenResponse, LoginRequest, LoginResponse, UserResponse
from auth.dependencies import csrf_protect, current_session, require_authenticated
from auth.limiter import AUTH_LIMIT, AUTH_SCOPE, limiter
from auth.models import Session
from auth.sessions import SessionManager
from auth.store import UserStore
from core.errors import AuthenticationFailed

logger = logging.getLogger("benefits.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:   any session + CSRF -- the anonymous session's token
# - POST /api/v1/auth/logout:  any session + CSRF
# - GET  /api/v1/auth/me:      requires login (require_authenticated)
# - GET  /api/v1/auth/csrf:    any session
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


# @router must sit ABOVE @limiter.shared_limit so FastAPI registers the rate-limited
# wrapper, not the bare function.
@router.post("/auth/login", response_model=LoginResponse)
@limiter.shared_limit(AUTH_LIMIT, scope=AUTH_SCOPE)
async def login(
    request: Request,
    body: LoginRequest,
    session: Session = Depends(current_session),
    _csrf: None = Depends(csrf_protect),
) -> JSONResponse:
    """Authenticate with user name and password; bind a fresh session."""
    users: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    try:
        user = await users.validate_login(body.user_name, body.password)
    except AuthenticationFailed as exc:
        logger.warning(
            "API login failed for %r from %s (%s)",
            body.user_name,
            request.client.host if request.client else "unknown",
            exc.reason,
        )
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username and/or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    fresh = await sessions.regenerate(session, user.id)
    request.state.session = fresh
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user=UserResponse.from_domain(user),
            csrf_token=fresh.csrf_token,
            landing="/benefits" if user.is_admin else "/dashboard",
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout(
    request: Request,
    session: Session = Depends(current_session),
    _csrf: None = Depends(csrf_protect),
) -> JSONResponse:
    """Destroy the session. The middleware clears the cookie."""
    sessions: SessionManager = request.app.state.sessions
    await sessions.destroy(session)
    request.state.session = None
    resp = JSONResponse(content={"message": "Logged out."})
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/csrf", response_model=CsrfTokenResponse)
async def csrf_token(session: Session = Depends(current_session)) -> CsrfTokenResponse:
    """Return the anti-forgery token bound to the caller's session."""
    return CsrfTokenResponse(csrf_token=session.csrf_token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(request: Request, session: Session = Depends(require_authenticated)) -> UserResponse:
    """Return the logged-in user's public record."""
    users: UserStore = request.app.state.user_store
    user = await users.get_by_id(session.user_id)
    return UserResponse.from_domain(user)
