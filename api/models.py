"""
API request and response models for the Benefits Portal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
ledger/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: auth/ and ledger/ models = domain truth;
api/ models = API contract.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User
from ledger.models import AllocationView

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Body for POST /api/v1/auth/login."""

    model_config = ConfigDict(extra="forbid")

    user_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class AllocationUpdate(BaseModel):
    """Body for PUT /api/v1/allocations.

    Values may arrive as JSON numbers or numeric strings (form-style clients).
    Range and sum checks live in the ledger so the API and web forms reject
    bad splits with the same InvalidAllocation error.
    """

    model_config = ConfigDict(extra="forbid")

    stocks: Union[int, str]
    funds: Union[int, str]
    bonds: Union[int, str]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_name: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    is_admin: bool = False
    benefit_start_date: Optional[str] = None

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(**user.public())


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login.

    csrf_token belongs to the regenerated session; the pre-login token is dead.
    """

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    csrf_token: str
    landing: str


class UserListResponse(BaseModel):
    """Response for GET /api/v1/users."""

    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]
    total: int


class CsrfTokenResponse(BaseModel):
    """Response for GET /api/v1/auth/csrf.

    Clients echo csrf_token back in the X-CSRF-Token header on every
    state-changing request made with the same session cookie.
    """

    model_config = ConfigDict(frozen=True)

    csrf_token: str
    header: str = "X-CSRF-Token"


class AllocationResponse(BaseModel):
    """One allocation joined with its owner's name."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    stocks: int = Field(ge=0, le=100)
    funds: int = Field(ge=0, le=100)
    bonds: int = Field(ge=0, le=100)
    user_name: str
    first_name: str
    last_name: str

    @classmethod
    def from_domain(cls, view: AllocationView) -> "AllocationResponse":
        return cls(**view.as_dict())


class AllocationListResponse(BaseModel):
    """Response for GET /api/v1/allocations."""

    model_config = ConfigDict(frozen=True)

    allocations: list[AllocationResponse]
    threshold: Optional[int] = None


# ---------------------------------------------------------------------------
# Envelope + health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", "degraded" otherwise.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
