"""
auth/sessions.py -- Login, refresh-token rotation, logout.

A session is an access token (short-lived JWT) plus a refresh token (opaque,
7 days by default, stored server side, delivered in an HttpOnly cookie).

Rotation is one-time use: refresh() deletes the presented row and inserts
its successor in a single transaction, so replaying an old value fails with
NotFound. The principal is re-checked inside that transaction: a deleted
principal, or an owner who is no longer Approved, cannot refresh into a
usable session and keeps their (now useless) token until it expires or is
purged.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.accounts import AccountService
from auth.crypto import generate_refresh_token
from auth.models import (
    ApprovalStatus,
    AuthenticatedPrincipal,
    BookOwner,
    PrincipalRef,
    RefreshToken,
    UserType,
)
from auth.store import RefreshTokenStore, load_principal
from auth.tokens import create_access_token, set_refresh_cookie
from core.config import get_settings
from core.database import utcnow
from core.errors import Expired, InvalidInput, NotApproved, NotFound, PersistenceFailure

logger = logging.getLogger("bookswap.sessions")


@dataclass
class Session:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    principal: AuthenticatedPrincipal

    def set_cookie(self, response) -> None:
        """Attach the refresh token cookie to an outgoing response."""
        set_refresh_cookie(response, self.refresh_token, self.refresh_expires_at)


class SessionService:
    """Issues and rotates sessions.

    Usage:
        sessions = SessionService(accounts, RefreshTokenStore(engine))
        session = sessions.login(UserType.READER, "alice", "secret-pass")
        session = sessions.refresh(session.refresh_token)
        sessions.logout(session.refresh_token)
    """

    def __init__(self, accounts: AccountService, tokens: RefreshTokenStore) -> None:
        self.accounts = accounts
        self.tokens = tokens

    def _refresh_lifetime(self) -> timedelta:
        return timedelta(days=get_settings().refresh_token_days)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, user_type: UserType, name: str, password: str) -> Session:
        """Authenticate and open a session.

        Raises InvalidCredentials / NotApproved from AccountService.authenticate.
        """
        principal = self.accounts.authenticate(user_type, name, password)
        refresh = self.issue_refresh_token(principal.ref)
        logger.info("%s %s logged in", user_type.value, principal.name)
        return Session(
            access_token=create_access_token(principal),
            refresh_token=refresh.token,
            refresh_expires_at=refresh.expires_at,
            principal=principal,
        )

    def issue_refresh_token(self, ref: PrincipalRef, now: datetime | None = None) -> RefreshToken:
        """Create and persist a refresh token scoped to exactly one principal."""
        now = now or utcnow()
        token = RefreshToken(
            token=generate_refresh_token(),
            principal=ref,
            created_at=now,
            expires_at=now + self._refresh_lifetime(),
        )
        try:
            token.id = self.tokens.create(token)
        except IntegrityError as exc:
            logger.exception("Could not store refresh token for %s", ref.user_type.value)
            raise PersistenceFailure("Failed to save refresh token.") from exc
        return token

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def refresh(self, presented: str | None, now: datetime | None = None) -> Session:
        """Exchange a refresh token for a new access token and refresh token.

        Raises:
            InvalidInput: no token was presented.
            NotFound: unknown, revoked or already-rotated token, or its
                principal no longer exists.
            Expired: the token is past its expiry.
            NotApproved: the token belongs to an owner who is not Approved.
            PersistenceFailure: the swap could not be committed; the
                presented token is still valid.
        """
        if not presented:
            raise InvalidInput("Refresh token is missing.")
        now = now or utcnow()
        resolved: dict[str, AuthenticatedPrincipal] = {}

        def authorize(conn: Connection, old: RefreshToken) -> None:
            record = load_principal(conn, old.principal)
            if record is None:
                raise NotFound(f"{old.user_type.value} not found.")
            if isinstance(record, BookOwner) and record.status is not ApprovalStatus.APPROVED:
                raise NotApproved("Your account is not approved.")
            resolved["principal"] = AuthenticatedPrincipal(ref=old.principal, name=record.name)

        try:
            _old, new = self.tokens.rotate(
                presented,
                generate_refresh_token(),
                now + self._refresh_lifetime(),
                authorize,
                now=now,
            )
        except (NotFound, Expired, NotApproved) as exc:
            logger.warning("Refresh refused: %s", exc.message)
            raise

        principal = resolved["principal"]
        logger.info("Rotated refresh token for %s %s", principal.user_type.value, principal.name)
        return Session(
            access_token=create_access_token(principal),
            refresh_token=new.token,
            refresh_expires_at=new.expires_at,
            principal=principal,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, presented: str | None) -> bool:
        """Revoke a refresh token. Returns False if it was unknown."""
        if not presented:
            return False
        revoked = self.tokens.revoke(presented)
        if revoked:
            logger.info("Refresh token revoked")
        return revoked

    def logout_everywhere(self, ref: PrincipalRef) -> int:
        count = self.tokens.revoke_all_for(ref)
        logger.info("Revoked %d refresh tokens for %s", count, ref.user_type.value)
        return count
