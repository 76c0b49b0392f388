"""
ledger/store.py -- Allocation Ledger: SQLAlchemy Core persistence for allocations.

Pattern: Repository + Data Mapper (same shape as auth/store.py).

Invariant: stocks + funds + bonds == 100 for every stored row. update()
validates before touching the store, and a CHECK constraint backs it up at
the database level, so a bad split can never be half-written.

Upsert semantics: one row per user_id. update() is INSERT ... ON CONFLICT
(user_id) DO UPDATE of all three fields -- a full replace, never a merge.
Concurrent updates for the same user resolve last-write-wins; there is no
version column.

Owner names are joined through UserStore (the users table belongs to the
Credential Store), so callers get display-ready AllocationViews in one call.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import random
import re
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Integer, String, Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from auth.store import UserStore
from core.database import Database, metadata
from core.errors import InvalidAllocation, InvalidThreshold, NoAllocations
from ledger.models import Allocation, AllocationView

logger = logging.getLogger("benefits.ledger")

_INT_RE = re.compile(r"^[+-]?\d+$")

THRESHOLD_MIN = 0
THRESHOLD_MAX = 99

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_allocations = Table(
    "allocations",
    metadata,
    Column("user_id", Integer, primary_key=True),  # at most one allocation per user
    Column("stocks", Integer, nullable=False),
    Column("funds", Integer, nullable=False),
    Column("bonds", Integer, nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("stocks + funds + bonds = 100", name="ck_allocations_total"),
    CheckConstraint("stocks BETWEEN 0 AND 100 AND funds BETWEEN 0 AND 100 AND bonds BETWEEN 0 AND 100"),
)

_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_int(value) -> int | None:
    """Parse an int from an int, an integral float, or a decimal string. None if not possible."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INT_RE.match(value.strip()):
        return int(value.strip())
    return None


def validate_split(stocks, funds, bonds) -> tuple[int, int, int]:
    """Return the three percentages as ints or raise InvalidAllocation."""
    parsed: list[int] = []
    for name, raw in (("stocks", stocks), ("funds", funds), ("bonds", bonds)):
        value = _parse_int(raw)
        if value is None:
            raise InvalidAllocation(f"{name.capitalize()} must be a whole number.", field=name)
        if not 0 <= value <= 100:
            raise InvalidAllocation(f"{name.capitalize()} must be between 0 and 100.", field=name)
        parsed.append(value)
    if sum(parsed) != 100:
        raise InvalidAllocation("Total allocation must equal 100%.", total=sum(parsed))
    return parsed[0], parsed[1], parsed[2]


def parse_threshold(threshold) -> int:
    """Return the threshold as an int in [0, 99] or raise InvalidThreshold."""
    value = _parse_int(threshold)
    if value is None:
        raise InvalidThreshold("Invalid threshold value. Please enter a number between 0 and 99.")
    if not THRESHOLD_MIN <= value <= THRESHOLD_MAX:
        raise InvalidThreshold("Threshold must be between 0 and 99.")
    return value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AllocationLedger:
    """Sole writer of the allocations table.

    Usage:
        ledger = AllocationLedger(db, user_store)
        view = await ledger.update(5, 40, 35, 25)
        rows = await ledger.get_by_user_and_threshold(5, threshold=30)
    """

    def __init__(self, db: Database, users: UserStore) -> None:
        self._db = db
        self._users = users
        self._insert = _INSERTS[db.dialect]

    async def update(self, user_id: int, stocks, funds, bonds) -> AllocationView:
        """Validate and upsert a user's allocation, returning it with the owner's name.

        Raises InvalidAllocation (no write) when the values are not integers in
        [0, 100] summing to 100, UserNotFound when the owner does not exist.
        """
        s, f, b = validate_split(stocks, funds, bonds)
        owner = await self._users.get_by_id(user_id)

        values = {"stocks": s, "funds": f, "bonds": b, "updated_at": _now_iso()}
        stmt = self._insert(_allocations).values(user_id=user_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[_allocations.c.user_id], set_=values)
        async with self._db.begin() as conn:
            await conn.execute(stmt)

        logger.info("Allocation for user id=%d set to %d/%d/%d", user_id, s, f, b)
        return AllocationView(
            user_id=user_id,
            stocks=s,
            funds=f,
            bonds=b,
            user_name=owner.user_name,
            first_name=owner.first_name,
            last_name=owner.last_name,
        )

    async def get_by_user_and_threshold(self, user_id: int, threshold=None) -> list[AllocationView]:
        """Return the user's own allocation, or every allocation above a stocks threshold.

        Without a threshold (None or blank) the result is the user's own
        allocation. With one, it is every user's allocation whose stocks value
        is strictly greater than the threshold -- the cross-user reporting view.

        Raises InvalidThreshold for a malformed threshold and NoAllocations
        when nothing matches; an empty list is never returned.
        """
        query = _allocations.select().order_by(_allocations.c.user_id)
        if threshold is None or (isinstance(threshold, str) and not threshold.strip()):
            query = query.where(_allocations.c.user_id == user_id)
        else:
            query = query.where(_allocations.c.stocks > parse_threshold(threshold))

        async with self._db.connect() as conn:
            rows = (await conn.execute(query)).fetchall()
        if not rows:
            raise NoAllocations("No allocations found matching your criteria.")

        allocations = [_row_to_allocation(r) for r in rows]
        owners = await self._users.get_by_ids([a.user_id for a in allocations])
        views: list[AllocationView] = []
        for alloc in allocations:
            owner = owners.get(alloc.user_id)
            if owner is None:
                logger.warning("Allocation for missing user id=%d skipped", alloc.user_id)
                continue
            views.append(
                AllocationView(
                    user_id=alloc.user_id,
                    stocks=alloc.stocks,
                    funds=alloc.funds,
                    bonds=alloc.bonds,
                    user_name=owner.user_name,
                    first_name=owner.first_name,
                    last_name=owner.last_name,
                )
            )
        if not views:
            raise NoAllocations("No allocations found matching your criteria.")
        return views

    async def seed_random(self, user_id: int, rng: random.Random | None = None) -> AllocationView:
        """Give a new user a random valid split: stocks and funds 1-40, bonds the rest."""
        rng = rng or random.Random()
        stocks = rng.randint(1, 40)
        funds = rng.randint(1, 40)
        return await self.update(user_id, stocks, funds, 100 - stocks - funds)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_allocation(row) -> Allocation:
    return Allocation(
        user_id=row.user_id,
        stocks=row.stocks,
        funds=row.funds,
        bonds=row.bonds,
        updated_at=row.updated_at,
    )
