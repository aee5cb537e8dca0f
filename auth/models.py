"""
auth/models.py -- Domain dataclasses for principals and refresh tokens.

Pattern: Data class (pure data container, almost zero logic). Stores and
services do the work.

Principal references are a closed tagged variant: AdminRef, OwnerRef and
ReaderRef, one class per principal table. Code that needs to know which
table a refresh token points at dispatches on the class, never on a free
form string.

PII fields on BookOwner/Reader hold ciphertext. Plaintext only exists in
OwnerProfile / ReaderProfile, which are built on an authorized read.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Union


class UserType(str, Enum):
    """Principal kind. The value doubles as the JWT `role` claim."""

    ADMIN = "Admin"
    BOOK_OWNER = "BookOwner"
    READER = "Reader"


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@dataclass
class Admin:
    """Admins are keyed by name; there is no numeric id."""

    name: str
    hashed_password: str
    created_at: str | None = None


@dataclass
class BookOwner:
    """A lender. Cannot log in until an admin moves status to Approved."""

    name: str
    hashed_password: str
    encrypted_ssn: str
    encrypted_email: str
    encrypted_phone: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    id: int | None = None
    created_at: str | None = None


@dataclass
class Reader:
    name: str
    hashed_password: str
    encrypted_email: str
    encrypted_phone: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class OwnerProfile:
    """Decrypted view of a BookOwner. Never persisted."""

    id: int
    name: str
    status: ApprovalStatus
    ssn: str
    email: str
    phone: str


@dataclass
class ReaderProfile:
    id: int
    name: str
    email: str
    phone: str


# ---------------------------------------------------------------------------
# Principal references (tagged variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdminRef:
    name: str
    user_type: ClassVar[UserType] = UserType.ADMIN

    @property
    def subject_id(self) -> str | None:
        # Admin tokens carry no id claim, only the name.
        return None


@dataclass(frozen=True)
class OwnerRef:
    owner_id: int
    user_type: ClassVar[UserType] = UserType.BOOK_OWNER

    @property
    def subject_id(self) -> str:
        return str(self.owner_id)


@dataclass(frozen=True)
class ReaderRef:
    reader_id: int
    user_type: ClassVar[UserType] = UserType.READER

    @property
    def subject_id(self) -> str:
        return str(self.reader_id)


PrincipalRef = Union[AdminRef, OwnerRef, ReaderRef]


@dataclass
class AuthenticatedPrincipal:
    """Who a session belongs to: the reference plus the display name for claims."""

    ref: PrincipalRef
    name: str

    @property
    def user_type(self) -> UserType:
        return self.ref.user_type


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


@dataclass
class RefreshToken:
    """A persisted, one-time-use refresh credential.

    Valid iff the row still exists and expires_at is in the future. Rotation
    deletes the row, so a replayed value is simply not found.
    """

    token: str
    principal: PrincipalRef
    expires_at: datetime
    created_at: datetime
    id: int | None = None

    @property
    def user_type(self) -> UserType:
        return self.principal.user_type

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at
