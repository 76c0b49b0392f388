"""ledger/ -- Allocation Ledger: each user's stocks/funds/bonds split.

Layer rule: ledger/ imports from core/ and reads users through auth.store.
It does NOT import from api/ or web/.
"""
