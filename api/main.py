"""
api/main.py -- FastAPI application entry point for the Benefits Portal.

Exposes the identity, session and allocation services over HTTP. The web
form routes (web/routes.py) are mounted onto this app by asgi.py.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client address
  2. security_headers      -- nosniff / frame / referrer / CSP on every response
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. attach_session        -- resolves the session cookie, expires idle
                              sessions, writes the cookie back

Rate limits are not middleware: the general window is a router-level
dependency (enforce_general_limit) and the authentication window decorates
the two login routes. Both live in auth/limiter.py.

Starlette wraps middleware in reverse registration order: the LAST one
registered is the outermost. The registrations below therefore run from
innermost (attach_session) to outermost (log_requests).

Lifespan builds the database handle and every store on startup, starts the
idle-session purge task, and tears both down symmetrically on shutdown.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.allocations import router as allocations_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.csrf import CsrfGuard
from auth.dependencies import require_authenticated
from auth.limiter import enforce_general_limit, limiter
from auth.sequence import SequenceGenerator
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings
from core.database import Database
from core.errors import (
    AuthenticationFailed,
    Conflict,
    CsrfRejected,
    LoginRequired,
    NotFound,
    PortalError,
    RateLimited,
    StoreUnavailable,
    ValidationFailure,
)
from ledger.store import AllocationLedger

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("benefits.api")

# Paths served without touching the session store. Load balancers poll the
# health check and must not mint a session row per probe.
_SESSIONLESS_PATHS = frozenset({"/api/v1/health"})

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete idle sessions every SESSION_PURGE_INTERVAL_SECONDS.

    resume() already expires a stale session when its cookie comes back; this
    loop removes the rows of clients that never return. A store outage is
    logged and retried on the next tick. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(_settings.session_purge_interval_seconds)
        try:
            removed = await app.state.sessions.purge_idle()
        except StoreUnavailable:
            logger.warning("Idle session purge skipped: store unavailable")
            continue
        if removed:
            logger.info("Purged %d idle session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared database handle and stores, then the purge task.

    Startup order matters:
      1. Database + create_all -- every store needs its table.
      2. SequenceGenerator before UserStore (ids come from the counter).
      3. UserStore before AllocationLedger and SessionManager (both read users).
      4. Purge task last -- references app.state.sessions.
    """
    logger.info("Benefits Portal API starting up")
    db = Database(_settings.database_url)
    await db.create_all()
    app.state.db = db
    app.state.sequence = SequenceGenerator(db)
    app.state.user_store = UserStore(db, app.state.sequence)
    app.state.ledger = AllocationLedger(db, app.state.user_store)
    app.state.sessions = SessionManager(db, app.state.user_store, idle_seconds=_settings.session_idle_seconds)
    app.state.csrf = CsrfGuard()
    logger.info("Stores initialized (dialect=%s)", db.dialect)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    await db.close()
    logger.info("Benefits Portal API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Benefits Portal API",
    description="Accounts, sessions and retirement allocations for the benefits portal.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by session-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Session middleware (innermost)
# ---------------------------------------------------------------------------


@app.middleware("http")
async def attach_session(request: Request, call_next):
    """Resolve the session cookie before any route runs.

    - No cookie or unknown cookie: a new anonymous session, cookie set.
    - Idle authenticated session: destroyed, new anonymous session issued and
      the client is sent to /login?expired=1, or gets a 401 envelope on
      /api/ paths. The route never runs.
    - Live session: last_activity slides forward.

    Routes that change identity (login, signup, logout) replace or clear
    request.state.session; the cookie written here always follows the final
    value, so a regenerated token reaches the client and the old one does not.
    """
    if request.url.path in _SESSIONLESS_PATHS:
        return await call_next(request)

    incoming = request.cookies.get(_settings.session_cookie_name)
    try:
        resolution = await request.app.state.sessions.resume(incoming)
    except StoreUnavailable as exc:
        return _store_unavailable_response(exc)
    request.state.session = resolution.session

    if resolution.expired and request.url.path.startswith("/api/"):
        response = _error_response(401, LoginRequired("Your session expired. Please log in again."))
    elif resolution.expired:
        response = RedirectResponse("/login?expired=1", status_code=302)
        response.headers["Cache-Control"] = "no-store"
    else:
        response = await call_next(request)

    final = getattr(request.state, "session", None)
    if final is None:
        clear_session_cookie(response)
    elif final.token != incoming:
        set_session_cookie(response, final.token)
    return response


# ---------------------------------------------------------------------------
# Middleware stack (registered innermost -> outermost)
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "same-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; form-action 'self'",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware (outermost)
#
# Pattern: Interceptor / Chain of Responsibility. Wall-clock time is captured
# around call_next so every response, including ones produced by inner
# middleware (429, 400 bad host, expiry redirect), reports latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

_rate_limited = [Depends(enforce_general_limit)]

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"], dependencies=_rate_limited)
app.include_router(allocations_router, prefix="/api/v1", tags=["Allocations"], dependencies=_rate_limited)
app.include_router(users_router, prefix="/api/v1", tags=["Users"], dependencies=_rate_limited)
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False, dependencies=_rate_limited)
async def docs(_session=Depends(require_authenticated)):
    """Swagger UI -- requires a logged-in session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Benefits Portal API")


@app.get("/redoc", include_in_schema=False, dependencies=_rate_limited)
async def redoc(_session=Depends(require_authenticated)):
    """ReDoc UI -- requires a logged-in session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Benefits Portal API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler except LoginRequired on browser paths returns the same
# ErrorResponse envelope so API clients can parse errors uniformly.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, exc: PortalError, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, detail=detail)).model_dump(),
    )


def _store_unavailable_response(exc: StoreUnavailable) -> JSONResponse:
    response = _error_response(503, exc)
    response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    """Send browsers to /login?next=<path>; JSON clients get 401.

    next is always the request's own path -- never a caller-supplied URL --
    so the login redirect cannot be turned into an open redirect.
    """
    if request.url.path.startswith("/api/"):
        return _error_response(401, exc)
    target = "/login?next=" + quote(request.url.path, safe="/")
    response = RedirectResponse(target, status_code=302)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(CsrfRejected)
async def csrf_rejected_handler(request: Request, exc: CsrfRejected) -> JSONResponse:
    return _error_response(403, exc)


@app.exception_handler(AuthenticationFailed)
async def authentication_failed_handler(request: Request, exc: AuthenticationFailed) -> JSONResponse:
    """One generic message whatever the underlying reason."""
    return _error_response(401, AuthenticationFailed("Invalid username and/or password."))


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
    return _error_response(400, exc)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return _error_response(404, exc)


@app.exception_handler(Conflict)
async def conflict_handler(request: Request, exc: Conflict) -> JSONResponse:
    return _error_response(409, exc)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """503 with Retry-After. The failure is surfaced, never replaced by a default."""
    logger.error("Store unavailable on %s %s", request.method, request.url.path)
    return _store_unavailable_response(exc)


@app.exception_handler(RateLimited)
async def general_rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    """429 from the general window (auth/limiter.py enforce_general_limit)."""
    response = _error_response(429, exc)
    response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a sliding window is exceeded.

    slowapi records the limit that tripped on request.state.view_rate_limit;
    _inject_headers turns it into Retry-After and X-RateLimit-* headers.
    """
    logger.warning(
        "Rate limit %s exceeded by %s on %s",
        exc.detail,
        request.client.host if request.client else "unknown",
        request.url.path,
    )
    window = int(exc.limit.limit.get_expiry())
    response = _error_response(429, RateLimited(retry_after=window), detail=str(exc.detail))
    view_rate_limit = getattr(request.state, "view_rate_limit", None)
    if view_rate_limit is not None:
        response = request.app.state.limiter._inject_headers(response, view_rate_limit)
    response.headers.setdefault("Retry-After", str(window))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. It carries no enforce_general_limit
# dependency and skips the session middleware, so probes are never throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return liveness, version and database reachability."""
    db_ok = await request.app.state.db.ping()
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())

