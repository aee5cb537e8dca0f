"""market/ -- Book post moderation and the borrow-request lifecycle.

Layer rule: market/ imports from core/ and auth/ (for TokenClaims and the
principal tables it references). It does NOT import from api/.
"""
