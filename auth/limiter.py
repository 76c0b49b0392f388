"""
auth/limiter.py -- Shared slowapi rate limiter instance.

Two independent sliding windows keyed by client address:
  general traffic  -- enforce_general_limit(), a router-level dependency on
                      every API and web router (RATE_LIMIT_GENERAL, default
                      100 per 15 minutes). Routes defined outside those routers
                      (the health check) are not counted.
  authentication   -- AUTH_LIMIT, applied with @limiter.shared_limit() under
                      the single AUTH_SCOPE to both login submissions, so the
                      web form and the JSON API draw from one budget
                      (RATE_LIMIT_AUTH, default 5 per 60 minutes)

strategy="moving-window" keeps a timestamp per hit and counts only hits inside
the trailing window, so there is no fixed-bucket reset to burst across. The
in-memory storage from `limits` guards its counters with a lock, so concurrent
requests never lose a hit. Both windows live in the same storage, so
limiter.reset() clears them together.

The general window is checked from a dependency rather than SlowAPIMiddleware:
the middleware finds its target by scanning app.routes for an endpoint, and
routes mounted with include_router() are not always listed flat there.

headers_enabled=True makes slowapi emit X-RateLimit-* and Retry-After on
limited routes; decorated endpoints must therefore return a Response object.

Layer rule: no imports from api/, web/ or ledger/.
"""

import logging
import time

from fastapi import Request
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings
from core.errors import RateLimited

logger = logging.getLogger("benefits.auth.limiter")

_settings = get_settings()

GENERAL_LIMIT = _settings.rate_limit_general
AUTH_LIMIT = _settings.rate_limit_auth
AUTH_SCOPE = "auth"
GENERAL_SCOPE = "general"

limiter = Limiter(
    key_func=get_remote_address,
    strategy="moving-window",
    storage_uri="memory://",
    headers_enabled=True,
)

_general = parse(GENERAL_LIMIT)


def enforce_general_limit(request: Request) -> None:
    """Count one request against the general window; RateLimited once it is full."""
    key = get_remote_address(request)
    if limiter.limiter.hit(_general, key, GENERAL_SCOPE):
        return
    reset_at, _remaining = limiter.limiter.get_window_stats(_general, key, GENERAL_SCOPE)
    retry_after = max(1, int(reset_at - time.time()))
    logger.warning("General rate limit %s exceeded by %s on %s", GENERAL_LIMIT, key, request.url.path)
    raise RateLimited(f"Rate limit exceeded: {GENERAL_LIMIT}", retry_after=retry_after)
