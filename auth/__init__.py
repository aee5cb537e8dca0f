"""auth/ -- Identity, sessions and authorization for BookSwap.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/ or market/.
market/ and api/ import from auth/, not the other way around.
"""
