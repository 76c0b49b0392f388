"""
auth/sequence.py -- Sequence Generator: unique, strictly increasing integers.

User ids are not database auto-increments. They come from a named counter row
in the `counters` table, bumped by a single atomic statement:

    INSERT INTO counters (name, seq) VALUES (:name, 1)
    ON CONFLICT (name) DO UPDATE SET seq = counters.seq + 1
    RETURNING seq

The statement is an upsert-and-fetch, so the first call for a name creates the
row and returns 1, and two racing callers can never read the same value: the
store serializes the conflicting writes. There is no in-process
lock and no read-then-write pair -- several server processes may share one
database, and correctness must not depend on any of them.

Failure: any store error surfaces as StoreUnavailable. The caller must not
invent an id to carry on.

Layer rule: no imports from api/, web/ or ledger/.
"""

from __future__ import annotations

import logging

from sqlalchemy import Column, Integer, String, Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from core.database import Database, metadata
from core.errors import StoreUnavailable

logger = logging.getLogger("benefits.auth.sequence")

_counters = Table(
    "counters",
    metadata,
    Column("name", String(64), primary_key=True),
    Column("seq", Integer, nullable=False),
)

_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class SequenceGenerator:
    """Sole writer of the counters table.

    Usage:
        seq = SequenceGenerator(db)
        user_id = await seq.next("userId")
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        try:
            self._insert = _INSERTS[db.dialect]
        except KeyError:
            raise ValueError(f"No atomic upsert available for dialect {db.dialect!r}") from None

    async def next(self, name: str) -> int:
        """Atomically increment the named counter and return the new value."""
        stmt = self._insert(_counters).values(name=name, seq=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_counters.c.name],
            set_={"seq": _counters.c.seq + 1},
        ).returning(_counters.c.seq)

        async with self._db.begin() as conn:
            value = (await conn.execute(stmt)).scalar_one_or_none()
        if value is None:
            # RETURNING produced no row -- the write did not happen.
            raise StoreUnavailable(f"Counter {name!r} was not incremented.")
        logger.debug("Counter %s advanced to %d", name, value)
        return value
