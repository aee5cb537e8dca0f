"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token auth.

Reads `Authorization: Bearer <token>`, validates it with
decode_access_token() (signature, issuer, audience, expiry) and hands the
resulting TokenClaims to the route. No database access happens here; routes
pass the claims on to AccountService / MarketService, which compare the
token-derived ids against the rows they touch.

get_current_claims() raises HTTP 401 on any failure.
require_role(...) wraps it and raises HTTP 403 on a role mismatch.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import UserType
from auth.tokens import TokenClaims, decode_access_token
from core.errors import BookSwapError


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.post("/borrow")
        def borrow(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(token)
    except BookSwapError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require_role(*roles: UserType) -> Callable[[Request], TokenClaims]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.put("/admin/owners/{owner_id}")
        def process(claims: TokenClaims = Depends(require_role(UserType.ADMIN))): ...
    """

    def dependency(request: Request) -> TokenClaims:
        claims = get_current_claims(request)
        if claims.role not in roles:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{' or '.join(r.value for r in roles)} access required."},
            )
        return claims

    return dependency
