"""
tests/test_dependencies.py -- Bearer-token dependencies and the error envelope.

These tests mount get_current_claims / require_role and the BookSwapError
handler on a throwaway FastAPI app and drive it through TestClient, so the
real header parsing and exception mapping run end-to-end.

Coverage:
  - Missing / malformed / invalid / expired bearer tokens -> 401
  - Role mismatch -> 403
  - Domain errors raised by a route -> {"error": {"code", "message"}} with their status
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from api.errors import register_error_handlers
from auth.dependencies import get_current_claims, require_role
from auth.models import AdminRef, AuthenticatedPrincipal, ReaderRef, UserType
from auth.tokens import TokenClaims, create_access_token
from core.errors import AlreadyProcessed, InvalidCredentials, NotApproved


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/me")
    def me(claims: TokenClaims = Depends(get_current_claims)) -> dict:
        return {"name": claims.name, "role": claims.role.value, "id": claims.subject_id}

    @app.get("/admin")
    def admin_only(claims: TokenClaims = Depends(require_role(UserType.ADMIN))) -> dict:
        return {"name": claims.name}

    @app.get("/pending")
    def pending() -> dict:
        raise NotApproved("Your account is pending approval.")

    @app.get("/twice")
    def twice() -> dict:
        raise AlreadyProcessed()

    @app.get("/bad-login")
    def bad_login() -> dict:
        raise InvalidCredentials()

    return TestClient(app)


def _bearer(principal: AuthenticatedPrincipal, now: datetime | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(principal, now=now)}"}


READER = AuthenticatedPrincipal(ReaderRef(5), "rita")
ADMIN = AuthenticatedPrincipal(AdminRef("root"), "root")


class TestBearerAuth:
    def test_valid_token(self, client: TestClient) -> None:
        resp = client.get("/me", headers=_bearer(READER))
        assert resp.status_code == 200
        assert resp.json() == {"name": "rita", "role": "Reader", "id": 5}

    def test_missing_header(self, client: TestClient) -> None:
        resp = client.get("/me")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json()["detail"]["code"] == "unauthorized"

    def test_wrong_scheme(self, client: TestClient) -> None:
        resp = client.get("/me", headers={"Authorization": "Basic cm9vdDpyb290"})
        assert resp.status_code == 401

    def test_invalid_token(self, client: TestClient) -> None:
        resp = client.get("/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "invalid_credentials"

    def test_expired_token(self, client: TestClient) -> None:
        issued = datetime.now(timezone.utc) - timedelta(hours=3)
        resp = client.get("/me", headers=_bearer(READER, now=issued))
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "expired"


class TestRoles:
    def test_admin_allowed(self, client: TestClient) -> None:
        resp = client.get("/admin", headers=_bearer(ADMIN))
        assert resp.status_code == 200
        assert resp.json() == {"name": "root"}

    def test_reader_forbidden(self, client: TestClient) -> None:
        resp = client.get("/admin", headers=_bearer(READER))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "forbidden"


class TestErrorEnvelope:
    def test_not_approved(self, client: TestClient) -> None:
        resp = client.get("/pending")
        assert resp.status_code == 403
        assert resp.json() == {"error": {"code": "not_approved", "message": "Your account is pending approval."}}
        assert resp.headers["cache-control"] == "no-store"

    def test_already_processed(self, client: TestClient) -> None:
        resp = client.get("/twice")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "already_processed"

    def test_unauthorized_carries_challenge(self, client: TestClient) -> None:
        resp = client.get("/bad-login")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
