"""
auth/csrf.py -- CSRF Guard: per-session anti-forgery token check.

The token itself is minted by the Session Manager whenever a session is
created or regenerated (auth/sessions.py), so it is bound to exactly one
session and dies with it. This module only decides whether a request needs
the check and whether the presented value matches.

Channels, first match wins:
  1. X-CSRF-Token header   -- JSON API clients and fetch()
  2. csrf_token form field -- classic HTML form posts

Layer rule: no imports from api/, web/ or ledger/.
"""

from __future__ import annotations

import logging

from auth.models import Session
from auth.tokens import tokens_match
from core.errors import CsrfRejected

logger = logging.getLogger("benefits.auth.csrf")

CSRF_HEADER = "X-CSRF-Token"
CSRF_FORM_FIELD = "csrf_token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


class CsrfGuard:
    """Stateless verifier. One shared instance lives on app.state."""

    def requires_check(self, method: str) -> bool:
        return method.upper() not in SAFE_METHODS

    def verify(self, session: Session, presented: str | None) -> None:
        """Raise CsrfRejected unless `presented` equals the session's token."""
        if not tokens_match(session.csrf_token, presented):
            logger.warning(
                "CSRF token %s for %s session",
                "missing" if not presented else "mismatch",
                "authenticated" if session.is_authenticated else "anonymous",
            )
            raise CsrfRejected("Invalid or missing CSRF token.")
