"""
auth/tokens.py -- Password hashing, session/CSRF token minting, cookie helper.

Security design decisions:
  Passwords: bcrypt, used directly. The hash is an opaque one-way value with a
       verify operation; nothing else in the code base looks inside it. The
       _DUMMY_HASH constant lets validate_login() run one bcrypt check even
       for unknown user names, so response time does not reveal whether a
       user exists.

  Session tokens: secrets.token_urlsafe(32) -- 256 bits, unguessable. The
       sessions table is keyed by HMAC-SHA256(SECRET_KEY, token) so a copy of
       the database does not yield a usable cookie value.

  CSRF tokens: an independent secrets.token_urlsafe(32) per session. Never
       derived from the session token, never reused across sessions.

  bcrypt is CPU-bound (~100ms+). The async wrappers push it onto a worker
       thread so a login never stalls the event loop for other requests.

Layer rule: no imports from api/, web/ or ledger/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets

import bcrypt

from core.config import get_settings

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. Signup validation caps passwords
    at 20 characters, well under that limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the store -- treat as a mismatch.
        return False


async def hash_password_async(plain: str) -> str:
    return await asyncio.to_thread(hash_password, plain)


async def verify_password_async(plain: str, hashed: str) -> bool:
    return await asyncio.to_thread(verify_password, plain, hashed)


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("benefits_timing_dummy")


# ---------------------------------------------------------------------------
# Session and CSRF tokens
# ---------------------------------------------------------------------------


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def session_key(token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) -- the sessions table primary key."""
    return hmac.new(
        _settings.secret_key.encode(),
        token.encode(),
        hashlib.sha256,
    ).hexdigest()


def tokens_match(expected: str | None, presented: str | None) -> bool:
    """Constant-time comparison. Missing values never match."""
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode(), presented.encode())


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    No max_age: expiry is enforced server-side by the idle window, and a
    browser-session cookie disappears when the browser closes.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name, path="/")
