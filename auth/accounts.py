"""
auth/accounts.py -- Signup, credential checks, owner approval, PII reads.

AccountService wraps PrincipalStore with the rules the stores do not know:

  - Passwords are hashed and PII encrypted before anything is written.
  - Authentication runs bcrypt even for unknown names (timing equalization),
    and only reports NotApproved after the password verified, so an
    attacker cannot learn an owner's approval state without the password.
  - Owner approval is an admin-only, one-shot transition. The conditional
    UPDATE in the store decides races: the loser sees AlreadyProcessed.
  - Rejecting an owner revokes their refresh tokens in the same transaction.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.crypto import burn_password_check, decrypt, encrypt, hash_password, verify_password
from auth.models import (
    Admin,
    AdminRef,
    ApprovalStatus,
    AuthenticatedPrincipal,
    BookOwner,
    OwnerProfile,
    OwnerRef,
    Reader,
    ReaderProfile,
    ReaderRef,
    UserType,
)
from auth.schemas import AdminCreate, OwnerSignUp, OwnerUpdate, ReaderSignUp
from auth.store import PrincipalStore, RefreshTokenStore
from auth.tokens import TokenClaims
from core.database import transaction
from core.errors import (
    AlreadyProcessed,
    Conflict,
    InvalidAction,
    InvalidCredentials,
    NotApproved,
    NotFound,
)

logger = logging.getLogger("bookswap.accounts")

# action string (case-insensitive) -> resulting owner status
_OWNER_ACTIONS: dict[str, ApprovalStatus] = {
    "approve": ApprovalStatus.APPROVED,
    "reject": ApprovalStatus.REJECTED,
}


def parse_action(action: str | None, outcomes: dict):
    """Map an admin action string to its outcome, or raise InvalidAction."""
    outcome = outcomes.get((action or "").strip().lower())
    if outcome is None:
        raise InvalidAction(f"Invalid action {action!r}. Use 'approve' or 'reject'.")
    return outcome


class AccountService:
    def __init__(self, principals: PrincipalStore, tokens: RefreshTokenStore) -> None:
        self.principals = principals
        self.tokens = tokens

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def create_admin(self, body: AdminCreate) -> str:
        admin = Admin(name=body.name, hashed_password=hash_password(body.password))
        try:
            self.principals.create_admin(admin)
        except IntegrityError as exc:
            raise Conflict("Admin already exists.") from exc
        logger.info("Admin %s created", body.name)
        return body.name

    def signup_owner(self, body: OwnerSignUp) -> int:
        """Register a book owner in Pending status. Returns the new id."""
        owner = BookOwner(
            name=body.name,
            hashed_password=hash_password(body.password),
            encrypted_ssn=encrypt(body.ssn),
            encrypted_email=encrypt(body.email),
            encrypted_phone=encrypt(body.phone),
            status=ApprovalStatus.PENDING,
        )
        try:
            owner_id = self.principals.create_owner(owner)
        except IntegrityError as exc:
            raise Conflict("BookOwner already exists.") from exc
        logger.info("Book owner %d registered, awaiting approval", owner_id)
        return owner_id

    def signup_reader(self, body: ReaderSignUp) -> int:
        reader = Reader(
            name=body.name,
            hashed_password=hash_password(body.password),
            encrypted_email=encrypt(body.email),
            encrypted_phone=encrypt(body.phone),
        )
        try:
            reader_id = self.principals.create_reader(reader)
        except IntegrityError as exc:
            raise Conflict("Reader already exists.") from exc
        logger.info("Reader %d registered", reader_id)
        return reader_id

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, user_type: UserType, name: str, password: str) -> AuthenticatedPrincipal:
        """Check a name/password pair for one principal kind.

        Raises InvalidCredentials for an unknown name or a wrong password,
        NotApproved for an owner whose account is Pending or Rejected.
        """
        if user_type is UserType.ADMIN:
            admin = self.principals.get_admin(name)
            self._check_password(admin, password, user_type, name)
            return AuthenticatedPrincipal(ref=AdminRef(admin.name), name=admin.name)

        if user_type is UserType.BOOK_OWNER:
            owner = self.principals.get_owner_by_name(name)
            self._check_password(owner, password, user_type, name)
            if owner.status is ApprovalStatus.PENDING:
                logger.warning("Login refused for owner %d: pending approval", owner.id)
                raise NotApproved("Your account is pending approval.")
            if owner.status is not ApprovalStatus.APPROVED:
                logger.warning("Login refused for owner %d: status %s", owner.id, owner.status.value)
                raise NotApproved("Your account is not approved.")
            return AuthenticatedPrincipal(ref=OwnerRef(owner.id), name=owner.name)

        reader = self.principals.get_reader_by_name(name)
        self._check_password(reader, password, user_type, name)
        return AuthenticatedPrincipal(ref=ReaderRef(reader.id), name=reader.name)

    @staticmethod
    def _check_password(record, password: str, user_type: UserType, name: str) -> None:
        if record is None:
            # Equalize timing -- do NOT return before running bcrypt.
            burn_password_check(password)
            logger.warning("Failed %s login for unknown name", user_type.value)
            raise InvalidCredentials()
        if not password or not verify_password(password, record.hashed_password):
            logger.warning("Failed %s login: wrong password", user_type.value)
            raise InvalidCredentials()

    # ------------------------------------------------------------------
    # Owner approval
    # ------------------------------------------------------------------

    def list_pending_owners(self, claims: TokenClaims) -> list[OwnerProfile]:
        """Admin queue of owners awaiting a decision, with PII decrypted."""
        claims.ensure_role(UserType.ADMIN)
        return [_owner_profile(o) for o in self.principals.list_owners(ApprovalStatus.PENDING)]

    def process_book_owner(self, claims: TokenClaims, owner_id: int, action: str) -> ApprovalStatus:
        """Approve or reject a Pending owner. Admin only, exactly once.

        The action is validated after the status check, so processing an
        already-decided owner fails AlreadyProcessed whatever the action is.
        """
        claims.ensure_role(UserType.ADMIN)
        owner = self.principals.get_owner(owner_id)
        if owner is None:
            raise NotFound("Book Owner not found.")
        if owner.status is not ApprovalStatus.PENDING:
            raise AlreadyProcessed("Book Owner request is already processed.")
        new_status = parse_action(action, _OWNER_ACTIONS)

        with transaction(self.principals.engine, "book owner approval") as conn:
            if not self.principals.transition_owner_status(owner_id, ApprovalStatus.PENDING, new_status, conn=conn):
                raise AlreadyProcessed("Book Owner request is already processed.")
            if new_status is ApprovalStatus.REJECTED:
                self.tokens.revoke_all_for(OwnerRef(owner_id), conn=conn)
        logger.info("Admin %s set owner %d to %s", claims.name, owner_id, new_status.value)
        return new_status

    # ------------------------------------------------------------------
    # Profiles (authorized PII reads)
    # ------------------------------------------------------------------

    def get_owner_profile(self, claims: TokenClaims, owner_id: int) -> OwnerProfile:
        """Decrypt an owner's PII for an admin or for the owner themself."""
        is_self = claims.role is UserType.BOOK_OWNER and claims.subject_id == owner_id
        if not is_self:
            claims.ensure_role(UserType.ADMIN)
        owner = self.principals.get_owner(owner_id)
        if owner is None:
            raise NotFound("BookOwner not found.")
        return _owner_profile(owner)

    def get_reader_profile(self, claims: TokenClaims) -> ReaderProfile:
        reader_id = claims.reader_id
        reader = self.principals.get_reader(reader_id)
        if reader is None:
            raise NotFound("Reader not found.")
        return ReaderProfile(
            id=reader.id,
            name=reader.name,
            email=decrypt(reader.encrypted_email),
            phone=decrypt(reader.encrypted_phone),
        )

    def update_owner(self, claims: TokenClaims, body: OwnerUpdate) -> OwnerProfile:
        """Owner edits their own record; only supplied fields change."""
        owner_id = claims.owner_id
        fields: dict = {}
        if body.name:
            fields["name"] = body.name
        if body.password:
            fields["hashed_password"] = hash_password(body.password)
        if body.ssn:
            fields["encrypted_ssn"] = encrypt(body.ssn)
        if body.email is not None:
            fields["encrypted_email"] = encrypt(body.email)
        if body.phone is not None:
            fields["encrypted_phone"] = encrypt(body.phone)
        try:
            updated = self.principals.update_owner(owner_id, **fields)
        except IntegrityError as exc:
            raise Conflict("BookOwner name is already taken.") from exc
        owner = self.principals.get_owner(owner_id)
        if owner is None or (fields and not updated):
            raise NotFound("BookOwner not found.")
        logger.info("Owner %d updated fields: %s", owner_id, ", ".join(sorted(fields)) or "none")
        return _owner_profile(owner)


def _owner_profile(owner: BookOwner) -> OwnerProfile:
    return OwnerProfile(
        id=owner.id,
        name=owner.name,
        status=owner.status,
        ssn=decrypt(owner.encrypted_ssn),
        email=decrypt(owner.encrypted_email),
        phone=decrypt(owner.encrypted_phone),
    )
