"""
auth/tokens.py -- Access token issuance/validation and the refresh cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry `name`, `role` and, for owners
       and readers, a role-specific id claim (`bookOwnerId` / `readerId`),
       plus `iss`, `aud`, `iat` and `exp`. Lifetimes differ per role and
       that difference is deliberate: Admin 1h, BookOwner/Reader 2h.

  Validation: signature, issuer, audience and expiry are all required and
       all checked. Any failure raises; there is no partial trust. An expired
       token raises Expired so clients can refresh instead of re-logging in.

  Refresh cookie: HttpOnly, Secure (SECURE_COOKIES), SameSite=Strict, with
       an expiry equal to the refresh token row's expires_at.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import AuthenticatedPrincipal, UserType
from core.config import get_settings
from core.errors import Expired, Forbidden, InvalidCredentials

logger = logging.getLogger("bookswap.auth")

_ALGORITHM = "HS256"

ACCESS_TOKEN_LIFETIMES: dict[UserType, timedelta] = {
    UserType.ADMIN: timedelta(hours=1),
    UserType.BOOK_OWNER: timedelta(hours=2),
    UserType.READER: timedelta(hours=2),
}


def id_claim_for(role: UserType) -> str:
    """Return the role-specific id claim name, e.g. BookOwner -> bookOwnerId."""
    return f"{role.value[0].lower()}{role.value[1:]}Id"


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


def generate_access_token(
    secret: str,
    issuer: str,
    audience: str,
    name: str,
    role: UserType,
    subject_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """Encode a signed access token for one principal.

    Args:
        secret:     HMAC signing key.
        issuer:     Value of the `iss` claim.
        audience:   Value of the `aud` claim.
        name:       Display name stored in the `name` claim.
        role:       Principal kind; also selects the token lifetime.
        subject_id: Optional numeric id, stored under id_claim_for(role).
        now:        Issue time override (tests).
    """
    issued = now or datetime.now(timezone.utc)
    payload: dict = {
        "name": name,
        "role": role.value,
        "iss": issuer,
        "aud": audience,
        "iat": issued,
        "exp": issued + ACCESS_TOKEN_LIFETIMES[role],
    }
    if subject_id:
        payload[id_claim_for(role)] = subject_id
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def create_access_token(principal: AuthenticatedPrincipal, now: datetime | None = None) -> str:
    """Issue an access token for a principal using the configured key/issuer/audience."""
    settings = get_settings()
    return generate_access_token(
        settings.secret_key,
        settings.jwt_issuer,
        settings.jwt_audience,
        principal.name,
        principal.user_type,
        principal.ref.subject_id,
        now=now,
    )


# ---------------------------------------------------------------------------
# Validate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    """Identity extracted from a validated access token."""

    name: str
    role: UserType
    subject_id: int | None
    expires_at: datetime

    def ensure_role(self, *roles: UserType) -> None:
        if self.role not in roles:
            raise Forbidden(f"This action requires role {' or '.join(r.value for r in roles)}.")

    @property
    def owner_id(self) -> int:
        self.ensure_role(UserType.BOOK_OWNER)
        return self.subject_id  # type: ignore[return-value]

    @property
    def reader_id(self) -> int:
        self.ensure_role(UserType.READER)
        return self.subject_id  # type: ignore[return-value]


def decode_access_token(token: str) -> TokenClaims:
    """Verify a token and return its claims.

    Raises Expired for a well-signed token past its `exp`, and
    InvalidCredentials for anything else (bad signature, wrong issuer or
    audience, missing or malformed claims).
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[_ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_exp": True, "require_iss": True, "require_aud": True},
        )
    except ExpiredSignatureError as exc:
        raise Expired("Access token has expired.") from exc
    except JWTError as exc:
        raise InvalidCredentials("Invalid access token.") from exc

    try:
        role = UserType(payload.get("role"))
    except ValueError as exc:
        raise InvalidCredentials("Access token carries an unknown role.") from exc
    name = payload.get("name")
    if not name:
        raise InvalidCredentials("Access token has no name claim.")

    subject_id: int | None = None
    if role is not UserType.ADMIN:
        raw_id = payload.get(id_claim_for(role))
        try:
            subject_id = int(raw_id)
        except (TypeError, ValueError) as exc:
            raise InvalidCredentials(f"Access token has no valid {id_claim_for(role)} claim.") from exc

    return TokenClaims(
        name=name,
        role=role,
        subject_id=subject_id,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Refresh cookie
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, expires_at: datetime) -> None:
    """Write the refresh token as an HttpOnly, Secure, SameSite=Strict cookie.

    expires and max_age both match the refresh token row so browser and
    store agree on when the session ends.
    """
    settings = get_settings()
    max_age = max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
    response.set_cookie(
        settings.refresh_cookie_name,
        value=token,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
        expires=expires_at,
        max_age=max_age,
    )


def clear_refresh_cookie(response) -> None:
    settings = get_settings()
    response.delete_cookie(
        settings.refresh_cookie_name,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
    )
