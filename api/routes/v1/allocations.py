"""
api/routes/v1/allocations.py -- Allocation Ledger REST endpoints.

Routes:
  GET /api/v1/allocations[?threshold=N]  -- own allocation, or every allocation
                                            with stocks > N (requires login)
  PUT /api/v1/allocations                -- replace own allocation (login + CSRF)

Errors come back through the ErrorResponse envelope via the handlers in
api/main.py: InvalidAllocation / InvalidThreshold -> 400, NoAllocations -> 404,
StoreUnavailable -> 503.

The owner of a PUT is always the session user -- there is no user_id in the
body, so one user can never overwrite another's split.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AllocationListResponse, AllocationResponse, AllocationUpdate
from auth.dependencies import csrf_protect, require_authenticated
from auth.models import Session
from ledger.store import AllocationLedger, parse_threshold

router = APIRouter()


@router.get("/allocations", response_model=AllocationListResponse)
async def list_allocations(
    request: Request,
    threshold: Optional[str] = Query(default=None),
    session: Session = Depends(require_authenticated),
) -> AllocationListResponse:
    """Return the caller's allocation, or the stocks-threshold report."""
    ledger: AllocationLedger = request.app.state.ledger
    views = await ledger.get_by_user_and_threshold(session.user_id, threshold)
    applied = parse_threshold(threshold) if threshold is not None and threshold.strip() else None
    return AllocationListResponse(
        allocations=[AllocationResponse.from_domain(v) for v in views],
        threshold=applied,
    )


@router.put("/allocations", response_model=AllocationResponse)
async def update_allocation(
    request: Request,
    body: AllocationUpdate,
    session: Session = Depends(require_authenticated),
    _csrf: None = Depends(csrf_protect),
) -> AllocationResponse:
    """Validate and store a full stocks / funds / bonds split for the caller."""
    ledger: AllocationLedger = request.app.state.ledger
    view = await ledger.update(session.user_id, body.stocks, body.funds, body.bonds)
    return AllocationResponse.from_domain(view)
