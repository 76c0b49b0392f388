"""
api/routes/v1/users.py -- Admin user listing.

Routes:
  GET /api/v1/users[?include_admins=true]  -- requires admin

require_admin() re-reads the caller's record on every request, so an admin
whose flag is revoked loses access on the next call.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import UserListResponse, UserResponse
from auth.dependencies import require_admin
from auth.models import User
from auth.store import UserStore

router = APIRouter()


@router.get("/users", response_model=UserListResponse)
async def list_users(
    request: Request,
    include_admins: bool = Query(default=False),
    _admin: User = Depends(require_admin),
) -> UserListResponse:
    """List users with their benefit start dates. Admins are omitted by default."""
    users: UserStore = request.app.state.user_store
    rows = await users.list_users(include_admins=include_admins)
    return UserListResponse(users=[UserResponse.from_domain(u) for u in rows], total=len(rows))
