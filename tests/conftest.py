"""
tests/conftest.py -- Shared fixtures for BookSwap tests.

This module provides:
  - services: a fully wired Services graph on a fresh in-memory SQLite DB
  - admin / make_owner / make_reader: create principals and return the
    TokenClaims their access token would carry
  - password, login, post_body: shared credentials and factories
  - offerable_post: an approved post whose borrowing window contains "now"

Design: each test gets its own engine on "sqlite:///:memory:". SQLAlchemy
pins one connection per thread for memory URLs, so every store in the graph
sees the same database. The concurrency tests use a file database instead
(see test_sessions.py) because threads need separate connections.

The DEBUG env var must be set before any project import so get_settings()
auto-generates SECRET_KEY and FIELD_ENCRYPTION_KEY instead of raising.
BCRYPT_ROUNDS=4 keeps hashing fast; the cost factor is not under test.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from datetime import date, timedelta

# CRITICAL: set before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest

from auth.models import UserType
from auth.schemas import AdminCreate, OwnerSignUp, ReaderSignUp
from auth.tokens import TokenClaims, decode_access_token
from core.database import utcnow
from market.schemas import BookPostCreate
from services import Services, build_services

PASSWORD = "correct-horse-9"


@pytest.fixture
def services() -> Generator[Services, None, None]:
    svc = build_services("sqlite:///:memory:")
    yield svc
    svc.close()


def _login_claims(services: Services, user_type: UserType, name: str) -> TokenClaims:
    session = services.sessions.login(user_type, name, PASSWORD)
    return decode_access_token(session.access_token)


@pytest.fixture
def password() -> str:
    """The password every principal created by these fixtures signs up with."""
    return PASSWORD


@pytest.fixture
def login(services: Services) -> Callable[[UserType, str], TokenClaims]:
    """Factory: log a principal in and return the claims of its access token."""

    def _login(user_type: UserType, name: str) -> TokenClaims:
        return _login_claims(services, user_type, name)

    return _login


@pytest.fixture
def admin(services: Services) -> TokenClaims:
    services.accounts.create_admin(AdminCreate(name="root", password=PASSWORD))
    return _login_claims(services, UserType.ADMIN, "root")


@pytest.fixture
def make_owner(services: Services, admin: TokenClaims) -> Callable[..., TokenClaims]:
    """Factory: sign up an owner, approve them, return their claims."""

    def _make(name: str = "owner1") -> TokenClaims:
        owner_id = services.accounts.signup_owner(
            OwnerSignUp(
                name=name,
                password=PASSWORD,
                ssn="123-45-6789",
                email=f"{name}@example.com",
                phone="+1 555 0100",
            )
        )
        services.accounts.process_book_owner(admin, owner_id, "approve")
        return _login_claims(services, UserType.BOOK_OWNER, name)

    return _make


@pytest.fixture
def make_reader(services: Services) -> Callable[..., TokenClaims]:
    def _make(name: str = "reader1") -> TokenClaims:
        services.accounts.signup_reader(
            ReaderSignUp(name=name, password=PASSWORD, email=f"{name}@example.com", phone="555-0199")
        )
        return _login_claims(services, UserType.READER, name)

    return _make


def _post_body(**overrides) -> BookPostCreate:
    now = utcnow()
    fields = {
        "title": "Dune",
        "genre": "Science Fiction",
        "isbn": "978-0441013593",
        "language": "English",
        "publication_date": date(1965, 8, 1),
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=30),
        "price": 5,
    }
    fields.update(overrides)
    return BookPostCreate(**fields)


@pytest.fixture
def post_body() -> Callable[..., BookPostCreate]:
    """Factory: a valid post body whose window runs from yesterday to +30 days."""
    return _post_body


@pytest.fixture
def offerable_post(services: Services, admin: TokenClaims, make_owner) -> tuple[int, TokenClaims]:
    """Return (post_id, owner_claims) for an Available post inside its window."""
    owner = make_owner("lender")
    post_id = services.market.create_post(owner, _post_body())
    services.market.process_book_post(admin, post_id, "approve")
    return post_id, owner
