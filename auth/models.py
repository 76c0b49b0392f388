"""
auth/models.py -- Domain dataclasses for identity and session entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes only own the shape.

Layer rule: no imports from api/, web/ or ledger/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class User:
    """A portal account.

    id comes from the "userId" counter (auth/sequence.py), never from a
    database auto-increment, and is immutable once assigned.

    email is None when the user signed up without one -- the column is left
    NULL rather than holding an empty string.
    """

    id: int
    user_name: str
    first_name: str
    last_name: str
    password_hash: str
    email: str | None = None
    is_admin: bool = False
    benefit_start_date: str | None = None  # ISO date, YYYY-MM-DD
    created_at: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def public(self) -> dict:
        """Plain view for the rendering layer. The password hash never leaves."""
        data = asdict(self)
        data.pop("password_hash")
        return data


@dataclass
class Session:
    """An HTTP session, anonymous (user_id is None) or authenticated.

    token is the raw value from the client cookie. It is held in memory for the
    duration of one request only; the sessions table stores HMAC(token).
    """

    token: str
    csrf_token: str
    last_activity: float
    created_at: float
    user_id: int | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None
