"""
ledger/models.py -- Domain dataclasses for the Allocation Ledger.

Pure data containers. The 100% invariant is enforced in ledger/store.py before
any write; an Allocation that exists in the store always sums to 100.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class Allocation:
    """A user's three-way percentage split. At most one per user."""

    user_id: int
    stocks: int
    funds: int
    bonds: int
    updated_at: str = ""  # ISO 8601, set by store on upsert


@dataclass
class AllocationView:
    """An Allocation joined with its owner's display name, for the rendering layer."""

    user_id: int
    stocks: int
    funds: int
    bonds: int
    user_name: str
    first_name: str
    last_name: str

    def as_dict(self) -> dict:
        return asdict(self)
