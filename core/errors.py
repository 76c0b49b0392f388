"""
core/errors.py -- Error taxonomy shared by every store and route.

Six families, each with a stable `code` the HTTP layer puts in the error
envelope:

  ValidationFailure -- malformed input, raised before any write
  NotFound          -- no such user / record
  Conflict          -- duplicate user name
  Unauthorized      -- bad credentials, CSRF mismatch, failed gate
  RateLimited       -- a sliding window was exceeded
  StoreUnavailable  -- transient infrastructure failure, retryable

Stores raise these; routes decide how much of the detail reaches the user.
StoreUnavailable is never converted into a default value anywhere.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/ or ledger/.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base class. `message` is safe to show to an end user."""

    code = "error"

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context


# ---------------------------------------------------------------------------
# ValidationFailure
# ---------------------------------------------------------------------------


class ValidationFailure(PortalError):
    code = "validation_error"


class InvalidAllocation(ValidationFailure):
    code = "invalid_allocation"


class InvalidThreshold(ValidationFailure):
    code = "invalid_threshold"


class SignupInvalid(ValidationFailure):
    """Signup form rejected. `field_errors` maps form field -> message."""

    code = "invalid_signup"

    def __init__(self, field_errors: dict[str, str]) -> None:
        first = next(iter(field_errors.values()), "Invalid signup.")
        super().__init__(first)
        self.field_errors = field_errors


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFound(PortalError):
    code = "not_found"


class UserNotFound(NotFound):
    code = "user_not_found"


class NoAllocations(NotFound):
    """An allocation query matched nothing. Distinct from a malformed query."""

    code = "no_allocations"


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class Conflict(PortalError):
    code = "conflict"


class DuplicateUser(Conflict):
    code = "duplicate_user"


# ---------------------------------------------------------------------------
# Unauthorized
# ---------------------------------------------------------------------------


class Unauthorized(PortalError):
    code = "unauthorized"


class AuthenticationFailed(Unauthorized):
    """validate_login() failure. Subclasses keep the reason for audit logs."""

    code = "bad_credentials"
    reason = "unknown"


class NoSuchUser(AuthenticationFailed):
    reason = "no_such_user"


class InvalidPassword(AuthenticationFailed):
    reason = "invalid_password"


class CsrfRejected(Unauthorized):
    code = "csrf_rejected"


class LoginRequired(Unauthorized):
    """A session gate refused the request. The HTTP layer redirects to /login."""

    code = "login_required"


# ---------------------------------------------------------------------------
# RateLimited / StoreUnavailable
# ---------------------------------------------------------------------------


class RateLimited(PortalError):
    code = "rate_limited"

    def __init__(self, message: str = "Too many requests.", retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StoreUnavailable(PortalError):
    code = "store_unavailable"
