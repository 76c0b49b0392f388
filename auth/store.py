"""
auth/store.py -- Credential Store: SQLAlchemy Core persistence for users.

Pattern: Repository + Data Mapper (same shape as ledger/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and gate code
never touches SQL directly.

Identifiers:
  users.id is NOT an auto-increment column. create_user() asks the
  SequenceGenerator for the next "userId" value and inserts it explicitly, so
  concurrent signups on several processes still get distinct, contiguous ids.

Uniqueness:
  user_name is UNIQUE (case-sensitive, exact match). create_user() checks first
  for a friendly error, and the index catches the race where two signups for
  the same name pass the check together -- the loser gets DuplicateUser.

Security:
  All queries use bound parameters. Password hashing and verification run on a
  worker thread (auth/tokens.py) so bcrypt never blocks the event loop.

Layer rule: no imports from api/, web/ or ledger/.
"""

from __future__ import annotations

import logging
import random
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import Boolean, Column, Integer, String, Table, Text, false
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.sequence import SequenceGenerator
from auth.tokens import _DUMMY_HASH, hash_password_async, verify_password_async
from core.database import Database, metadata
from core.errors import DuplicateUser, InvalidPassword, NoSuchUser, UserNotFound, ValidationFailure

logger = logging.getLogger("benefits.auth.store")

USER_ID_COUNTER = "userId"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("user_name", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("email", String(255)),  # NULL when not supplied, never ""
    Column("is_admin", Boolean, nullable=False, server_default=false()),
    Column("benefit_start_date", String(10)),  # ISO date
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def random_benefit_start_date(today: date | None = None) -> str:
    """Return an ISO date between tomorrow and roughly 30 years out."""
    today = today or date.today()
    return (today + timedelta(days=random.randint(1, 30 * 365))).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities. Sole writer of the users table.

    Usage:
        store = UserStore(db, SequenceGenerator(db))
        user = await store.create_user("alice", "Alice", "Liddell", "Secret123")
        same = await store.validate_login("alice", "Secret123")
    """

    def __init__(self, db: Database, sequence: SequenceGenerator) -> None:
        self._db = db
        self._sequence = sequence

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_user(
        self,
        user_name: str,
        first_name: str,
        last_name: str,
        password: str,
        email: str | None = None,
        *,
        is_admin: bool = False,
    ) -> User:
        """Hash the password, take an id from the sequence and insert the user.

        Raises DuplicateUser if user_name is already taken, StoreUnavailable if
        the store (including the counter) cannot be reached.
        """
        if await self.get_by_user_name(user_name) is not None:
            raise DuplicateUser("User name already in use. Please choose another.", user_name=user_name)

        password_hash = await hash_password_async(password)
        user_id = await self._sequence.next(USER_ID_COUNTER)

        user = User(
            id=user_id,
            user_name=user_name,
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash,
            email=email or None,
            is_admin=is_admin,
            benefit_start_date=random_benefit_start_date(),
            created_at=_now_iso(),
        )
        values = {
            "id": user.id,
            "user_name": user.user_name,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "password_hash": user.password_hash,
            "is_admin": user.is_admin,
            "benefit_start_date": user.benefit_start_date,
            "created_at": user.created_at,
        }
        if user.email:
            values["email"] = user.email

        try:
            async with self._db.begin() as conn:
                await conn.execute(_users.insert().values(**values))
        except IntegrityError as exc:
            # Lost a race on the UNIQUE(user_name) index.
            raise DuplicateUser("User name already in use. Please choose another.", user_name=user_name) from exc

        logger.info("Created user id=%d user_name=%r admin=%s", user.id, user.user_name, user.is_admin)
        return user

    async def update_benefit_start_date(self, user_id: int, start_date: str) -> User:
        """Set a user's benefit start date (admin benefits page).

        Raises ValidationFailure for a value that is not an ISO date,
        UserNotFound when no such user exists.
        """
        try:
            parsed = date.fromisoformat(start_date)
        except (TypeError, ValueError) as exc:
            raise ValidationFailure("Benefit start date must be a date in YYYY-MM-DD form.") from exc

        async with self._db.begin() as conn:
            result = await conn.execute(
                _users.update().where(_users.c.id == user_id).values(benefit_start_date=parsed.isoformat())
            )
        if result.rowcount == 0:
            raise UserNotFound(f"User {user_id} does not exist.", user_id=user_id)
        return await self.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def validate_login(self, user_name: str, password: str) -> User:
        """Check a user name / password pair and return the full user record.

        Raises NoSuchUser when the name is unknown and InvalidPassword when the
        hash does not match. Both are AuthenticationFailed, so callers that do
        not care about the reason can catch the parent.

        Always runs exactly one bcrypt verification so the two failure paths
        take the same time.
        """
        user = await self.get_by_user_name(user_name)
        if user is None:
            await verify_password_async(password, _DUMMY_HASH)
            logger.info("Login rejected for %r: no_such_user", user_name)
            raise NoSuchUser(f"User {user_name!r} does not exist.", user_name=user_name)
        if not await verify_password_async(password, user.password_hash):
            logger.info("Login rejected for %r: invalid_password", user_name)
            raise InvalidPassword("Invalid password.", user_name=user_name)
        return user

    async def get_by_id(self, user_id: int) -> User:
        """Look up a user by id. Raises UserNotFound if absent."""
        async with self._db.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()
        if row is None:
            raise UserNotFound(f"User {user_id} does not exist.", user_id=user_id)
        return _row_to_user(row)

    async def get_by_user_name(self, user_name: str) -> User | None:
        """Look up a user by exact user name (case-sensitive). Returns None if not found."""
        async with self._db.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.user_name == user_name))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_ids(self, user_ids: list[int]) -> dict[int, User]:
        """Batch lookup keyed by id. Missing ids are simply absent from the result."""
        if not user_ids:
            return {}
        async with self._db.connect() as conn:
            rows = (await conn.execute(_users.select().where(_users.c.id.in_(set(user_ids))))).fetchall()
        return {row.id: _row_to_user(row) for row in rows}

    async def list_users(self, include_admins: bool = False) -> list[User]:
        """Return users ordered by id. Admins are left out unless asked for."""
        query = _users.select().order_by(_users.c.id)
        if not include_admins:
            query = query.where(_users.c.is_admin == false())
        async with self._db.connect() as conn:
            rows = (await conn.execute(query)).fetchall()
        return [_row_to_user(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        user_name=row.user_name,
        first_name=row.first_name,
        last_name=row.last_name,
        password_hash=row.password_hash,
        email=row.email,
        is_admin=bool(row.is_admin),
        benefit_start_date=row.benefit_start_date,
        created_at=row.created_at,
    )
