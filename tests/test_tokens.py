"""Unit tests for auth/tokens.py -- access token issuance, validation, refresh cookie.

Covers:
- Role-specific lifetimes: Admin 1h, BookOwner and Reader 2h
- Claims: name, role, iss, aud and the role-specific id claim
- Signature, issuer and audience failures raise InvalidCredentials
- A well-signed token past its exp raises Expired
- TokenClaims role guards raise Forbidden
- The refresh cookie is HttpOnly, Secure and SameSite=Strict
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from starlette.responses import Response

from auth.models import AdminRef, AuthenticatedPrincipal, OwnerRef, ReaderRef, UserType
from auth.tokens import (
    clear_refresh_cookie,
    create_access_token,
    decode_access_token,
    generate_access_token,
    id_claim_for,
    set_refresh_cookie,
)
from core.config import get_settings
from core.errors import Expired, Forbidden, InvalidCredentials


def _token(role: UserType, subject_id: str | None = "7", **overrides) -> str:
    settings = get_settings()
    args = {
        "secret": settings.secret_key,
        "issuer": settings.jwt_issuer,
        "audience": settings.jwt_audience,
        "name": "alice",
        "role": role,
        "subject_id": subject_id,
    }
    args.update(overrides)
    return generate_access_token(**args)


class TestIssue:
    @pytest.mark.parametrize(
        ("principal", "hours"),
        [
            (AuthenticatedPrincipal(AdminRef("root"), "root"), 1),
            (AuthenticatedPrincipal(OwnerRef(3), "olga"), 2),
            (AuthenticatedPrincipal(ReaderRef(9), "rita"), 2),
        ],
    )
    def test_lifetime_per_role(self, principal: AuthenticatedPrincipal, hours: int) -> None:
        claims = jwt.get_unverified_claims(create_access_token(principal))
        assert claims["exp"] - claims["iat"] == hours * 3600

    def test_owner_claims(self) -> None:
        token = create_access_token(AuthenticatedPrincipal(OwnerRef(3), "olga"))
        claims = jwt.get_unverified_claims(token)
        assert claims["name"] == "olga"
        assert claims["role"] == "BookOwner"
        assert claims["bookOwnerId"] == "3"
        assert claims["iss"] == "BookSwap"
        assert claims["aud"] == "BookSwapUsers"

    def test_admin_token_has_no_id_claim(self) -> None:
        claims = jwt.get_unverified_claims(create_access_token(AuthenticatedPrincipal(AdminRef("root"), "root")))
        assert "adminId" not in claims
        assert claims["role"] == "Admin"

    def test_id_claim_names(self) -> None:
        assert id_claim_for(UserType.BOOK_OWNER) == "bookOwnerId"
        assert id_claim_for(UserType.READER) == "readerId"


class TestDecode:
    def test_valid_reader_token(self) -> None:
        claims = decode_access_token(_token(UserType.READER, "9"))
        assert claims.role is UserType.READER
        assert claims.subject_id == 9
        assert claims.reader_id == 9
        assert claims.name == "alice"

    def test_valid_admin_token(self) -> None:
        claims = decode_access_token(_token(UserType.ADMIN, None))
        assert claims.role is UserType.ADMIN
        assert claims.subject_id is None

    def test_wrong_signature(self) -> None:
        with pytest.raises(InvalidCredentials):
            decode_access_token(_token(UserType.READER, secret="x" * 40))

    def test_wrong_issuer(self) -> None:
        with pytest.raises(InvalidCredentials):
            decode_access_token(_token(UserType.READER, issuer="SomeoneElse"))

    def test_wrong_audience(self) -> None:
        with pytest.raises(InvalidCredentials):
            decode_access_token(_token(UserType.READER, audience="OtherApp"))

    def test_garbage_token(self) -> None:
        with pytest.raises(InvalidCredentials):
            decode_access_token("not.a.jwt")

    def test_expired_token(self) -> None:
        """An admin token issued 2h ago is past its 1h lifetime."""
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        with pytest.raises(Expired):
            decode_access_token(_token(UserType.ADMIN, None, now=issued))

    def test_owner_token_without_id_claim(self) -> None:
        with pytest.raises(InvalidCredentials):
            decode_access_token(_token(UserType.BOOK_OWNER, None))

    def test_unknown_role(self) -> None:
        settings = get_settings()
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "name": "mallory",
                "role": "Superuser",
                "iss": settings.jwt_issuer,
                "aud": settings.jwt_audience,
                "iat": now,
                "exp": now + timedelta(hours=1),
            },
            settings.secret_key,
            algorithm="HS256",
        )
        with pytest.raises(InvalidCredentials):
            decode_access_token(token)


class TestClaimGuards:
    def test_reader_cannot_act_as_owner(self) -> None:
        claims = decode_access_token(_token(UserType.READER, "9"))
        with pytest.raises(Forbidden):
            _ = claims.owner_id

    def test_ensure_role_accepts_any_listed_role(self) -> None:
        claims = decode_access_token(_token(UserType.BOOK_OWNER, "3"))
        claims.ensure_role(UserType.ADMIN, UserType.BOOK_OWNER)
        with pytest.raises(Forbidden):
            claims.ensure_role(UserType.ADMIN)


class TestRefreshCookie:
    def test_cookie_attributes(self) -> None:
        response = Response()
        expires_at = datetime.now(timezone.utc) + timedelta(days=7)
        set_refresh_cookie(response, "opaque-value", expires_at)
        header = response.headers["set-cookie"]
        assert header.startswith("refreshToken=opaque-value")
        assert "httponly" in header.lower()
        assert "secure" in header.lower()
        assert "samesite=strict" in header.lower()
        max_age = int(header.lower().split("max-age=")[1].split(";")[0])
        assert 7 * 86400 - 60 <= max_age <= 7 * 86400

    def test_clear_cookie_expires_it(self) -> None:
        response = Response()
        clear_refresh_cookie(response)
        header = response.headers["set-cookie"].lower()
        assert header.startswith("refreshtoken=")
        assert "max-age=0" in header
