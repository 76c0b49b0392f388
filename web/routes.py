"""
web/routes.py -- Browser form routes for the Benefits Portal.

These routes back the server-side pages. Markup is produced by a separate
rendering layer, so each page route returns its page context as JSON:
{"page": "<name>", ...context}. Form posts answer with a 302 (PRG) on
success and the page context with a 4xx status on a rejected form.

They share app.state with the API routes (same stores, same session manager).

Access control happens before the handler body ever runs:
  require_authenticated / require_admin  -- Depends(); LoginRequired becomes a
                                            302 to /login?next=<path>
  csrf_protect                           -- Depends(); declared after the gate
  AUTH_LIMIT                             -- @limiter.shared_limit on POST /login,
                                            one budget with the API login

Routes:
  GET  /             -- 302 to /dashboard (logged in) or /login
  GET  /login        -- login page context
  POST /login        -- password login; regenerate session; 302 landing page
  GET  /signup       -- signup page context
  POST /signup       -- create account + random allocation; 302 /dashboard
  POST /logout       -- destroy session (CSRF checked); 302 /login
  GET  /dashboard    -- current user (login required)
  GET  /allocations  -- own allocation or ?threshold= report (login required)
  POST /allocations  -- replace own allocation (login + CSRF)
  GET  /benefits     -- non-admin users and start dates (admin)
  POST /benefits     -- set a user's benefit start date (admin + CSRF)
"""

# slowapi wraps login_post(); annotations must be real objects, not strings,
# so this module does not use "from __future__ import annotations".
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from auth.dependencies import csrf_protect, current_session, require_admin, require_authenticated
from auth.forms import parse_login, parse_signup
from auth.limiter import AUTH_LIMIT, AUTH_SCOPE, limiter
from auth.models import Session, User
from auth.sessions import SessionManager
from auth.store import UserStore
from core.errors import (
    AuthenticationFailed,
    DuplicateUser,
    InvalidThreshold,
    NoAllocations,
    SignupInvalid,
    UserNotFound,
    ValidationFailure,
)
from ledger.store import AllocationLedger

logger = logging.getLogger("benefits.web")

router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login.
# The raw query param is NEVER echoed back -- only the message from this dict
# is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username and/or password.",
    "missing_fields": "Username and password are required.",
}

_EXPIRED_MESSAGE = "Your session expired after 30 minutes of inactivity. Please log in again."


def _safe_next(next_url: Optional[str]) -> Optional[str]:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs and protocol-relative "//host" forms, and the
    backslash variant browsers normalise to "//". Returns None when the
    value is unusable so the caller falls back to the landing page.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith(("//", "/\\")):
        return next_url
    return None


def _landing(user: User) -> str:
    return "/benefits" if user.is_admin else "/dashboard"


def _page(name: str, context: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content={"page": name, **context})
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


@router.get("/")
def index(session: Session = Depends(current_session)) -> RedirectResponse:
    return _redirect("/dashboard" if session.is_authenticated else "/login")


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login")
async def login_form(request: Request, session: Session = Depends(current_session)):
    """Login page context. Already-authenticated users go to their landing page."""
    if session.is_authenticated:
        users: UserStore = request.app.state.user_store
        try:
            user = await users.get_by_id(session.user_id)
        except UserNotFound:
            # Account removed under a live session.
            await request.app.state.sessions.destroy(session)
            request.state.session = None
            return _redirect("/login")
        return _redirect(_landing(user))

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    expired = request.query_params.get("expired") == "1"
    return _page(
        "login",
        {
            "csrf_token": session.csrf_token,
            "error_msg": error_msg,
            "info_msg": _EXPIRED_MESSAGE if expired else None,
            "next": _safe_next(request.query_params.get("next")),
        },
    )


# @router must sit ABOVE @limiter.shared_limit so FastAPI registers the rate-limited
# wrapper, not the bare function.
@router.post("/login")
@limiter.shared_limit(AUTH_LIMIT, scope=AUTH_SCOPE)
async def login_post(
    request: Request,
    user_name: str = Form(""),
    password: str = Form(""),
    next_url: str = Form("", alias="next"),
    session: Session = Depends(current_session),
    _csrf: None = Depends(csrf_protect),
) -> RedirectResponse:
    """Handle username/password login form submission.

    validate_login() does one bcrypt check on every path. Unknown user and
    wrong password are logged with their reason but both send the browser to
    the same generic error.
    """
    users: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    client = request.client.host if request.client else "unknown"

    try:
        form = parse_login(user_name, password)
    except ValidationFailure:
        return _redirect("/login?error=missing_fields")

    try:
        user = await users.validate_login(form.user_name, form.password)
    except AuthenticationFailed as exc:
        logger.warning("Login failed for %r from %s (%s)", form.user_name, client, exc.reason)
        return _redirect("/login?error=bad_credentials")

    # Fixation guard: the anonymous token and CSRF token die here.
    request.state.session = await sessions.regenerate(session, user.id)
    logger.info("User id=%d logged in from %s", user.id, client)
    target = _safe_next(next_url or request.query_params.get("next")) or _landing(user)
    return _redirect(target)


@router.post("/logout")
async def logout_post(
    request: Request,
    session: Session = Depends(current_session),
    _csrf: None = Depends(csrf_protect),
) -> RedirectResponse:
    """Destroy the session and return to the login page."""
    await request.app.state.sessions.destroy(session)
    request.state.session = None
    return _redirect("/login")


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.get("/signup")
def signup_form(session: Session = Depends(current_session)):
    if session.is_authenticated:
        return _redirect("/dashboard")
    return _page("signup", {"csrf_token": session.csrf_token, "errors": {}, "values": {}})


@router.post("/signup")
async def signup_post(
    request: Request,
    user_name: str = Form(""),
    first_name: str = Form(""),
    last_name: str = Form(""),
    password: str = Form(""),
    verify: str = Form(""),
    email: str = Form(""),
    session: Session = Depends(current_session),
    _csrf: None = Depends(csrf_protect),
):
    """Create an account, seed its allocation and log the new user in.

    A rejected form re-renders with one message per field. Password fields
    are never echoed back.
    """
    values = {"user_name": user_name, "first_name": first_name, "last_name": last_name, "email": email}
    try:
        form = parse_signup(
            user_name=user_name,
            first_name=first_name,
            last_name=last_name,
            password=password,
            verify=verify,
            email=email,
        )
    except SignupInvalid as exc:
        return _page(
            "signup",
            {"csrf_token": session.csrf_token, "errors": exc.field_errors, "values": values},
            status_code=400,
        )

    users: UserStore = request.app.state.user_store
    try:
        user = await users.create_user(form.user_name, form.first_name, form.last_name, form.password, form.email)
    except DuplicateUser as exc:
        return _page(
            "signup",
            {"csrf_token": session.csrf_token, "errors": {"user_name": exc.message}, "values": values},
            status_code=409,
        )

    ledger: AllocationLedger = request.app.state.ledger
    await ledger.seed_random(user.id)
    request.state.session = await request.app.state.sessions.regenerate(session, user.id)
    return _redirect("/dashboard")


# ---------------------------------------------------------------------------
# Logged-in pages
# ---------------------------------------------------------------------------


@router.get("/dashboard")
async def dashboard(request: Request, session: Session = Depends(require_authenticated)):
    users: UserStore = request.app.state.user_store
    try:
        user = await users.get_by_id(session.user_id)
    except UserNotFound:
        await request.app.state.sessions.destroy(session)
        request.state.session = None
        return _redirect("/login")
    return _page("dashboard", {"csrf_token": session.csrf_token, "user": user.public()})


@router.get("/allocations")
async def allocations(
    request: Request,
    threshold: Optional[str] = Query(default=None),
    session: Session = Depends(require_authenticated),
):
    """Own allocation, or every allocation with stocks above ?threshold=."""
    ledger: AllocationLedger = request.app.state.ledger
    context = {"csrf_token": session.csrf_token, "threshold": threshold, "allocations": [], "error_msg": None}
    try:
        views = await ledger.get_by_user_and_threshold(session.user_id, threshold)
    except InvalidThreshold as exc:
        return _page("allocations", {**context, "error_msg": exc.message}, status_code=400)
    except NoAllocations as exc:
        return _page("allocations", {**context, "error_msg": exc.message}, status_code=404)
    return _page("allocations", {**context, "allocations": [v.as_dict() for v in views]})


@router.post("/allocations")
async def allocations_post(
    request: Request,
    stocks: str = Form(""),
    funds: str = Form(""),
    bonds: str = Form(""),
    session: Session = Depends(require_authenticated),
    _csrf: None = Depends(csrf_protect),
):
    """Replace the user's allocation. A rejected split leaves the stored one untouched."""
    ledger: AllocationLedger = request.app.state.ledger
    context = {"csrf_token": session.csrf_token, "threshold": None, "allocations": [], "error_msg": None}
    try:
        view = await ledger.update(session.user_id, stocks, funds, bonds)
    except ValidationFailure as exc:
        return _page(
            "allocations",
            {**context, "error_msg": exc.message, "values": {"stocks": stocks, "funds": funds, "bonds": bonds}},
            status_code=400,
        )
    return _page(
        "allocations",
        {**context, "allocations": [view.as_dict()], "info_msg": "Allocations updated successfully."},
    )


# ---------------------------------------------------------------------------
# Admin pages
# ---------------------------------------------------------------------------


@router.get("/benefits")
async def benefits(
    request: Request,
    admin: User = Depends(require_admin),
    session: Session = Depends(current_session),
):
    users: UserStore = request.app.state.user_store
    rows = await users.list_users()
    return _page(
        "benefits",
        {"csrf_token": session.csrf_token, "admin": admin.public(), "users": [u.public() for u in rows]},
    )


@router.post("/benefits")
async def benefits_post(
    request: Request,
    user_id: int = Form(...),
    benefit_start_date: str = Form(""),
    admin: User = Depends(require_admin),
    session: Session = Depends(current_session),
    _csrf: None = Depends(csrf_protect),
):
    """Set one user's benefit start date, then show the refreshed list."""
    users: UserStore = request.app.state.user_store
    context = {"csrf_token": session.csrf_token, "admin": admin.public()}
    try:
        updated = await users.update_benefit_start_date(user_id, benefit_start_date)
    except (ValidationFailure, UserNotFound) as exc:
        rows = await users.list_users()
        status_code = 404 if isinstance(exc, UserNotFound) else 400
        return _page(
            "benefits",
            {**context, "users": [u.public() for u in rows], "error_msg": exc.message},
            status_code=status_code,
        )
    logger.info("Admin id=%d set benefit start date of user id=%d", admin.id, updated.id)
    rows = await users.list_users()
    return _page("benefits", {**context, "users": [u.public() for u in rows], "info_msg": "Benefit start date updated."})
