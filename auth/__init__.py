"""auth/ -- Identity, session and access-control package for the benefits portal.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/ or ledger/.
api/, web/ and ledger/ import from auth/, not the other way around.
"""
