"""
auth/store.py -- SQLAlchemy Core persistence layer for principals and refresh tokens.

Pattern: Repository + Data Mapper. PrincipalStore and RefreshTokenStore are
the repositories; the _row_to_* functions are the mappers. Service code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  refresh_tokens references exactly one principal table. The CHECK
  constraint ties user_type to the single non-NULL reference column, so a
  row can never point at two principals or at none.

  Rotation runs inside one BEGIN IMMEDIATE transaction (see core/database.py):
  look up, authorize, delete the presented row, insert its successor. The
  DELETE's rowcount is the race arbiter; a concurrent rotation of the same
  value finds nothing and fails with NotFound.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import (
    Admin,
    AdminRef,
    ApprovalStatus,
    BookOwner,
    OwnerRef,
    PrincipalRef,
    Reader,
    ReaderRef,
    RefreshToken,
    UserType,
)
from core.database import from_iso, metadata, to_iso, transaction, utcnow
from core.errors import Expired, NotFound

logger = logging.getLogger("bookswap.sessions")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

admins = Table(
    "admins",
    metadata,
    Column("name", String(100), primary_key=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(40), nullable=False),
)

book_owners = Table(
    "book_owners",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("encrypted_ssn", Text, nullable=False),
    Column("encrypted_email", Text, nullable=False),
    Column("encrypted_phone", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default=ApprovalStatus.PENDING.value),
    Column("created_at", String(40), nullable=False),
)

readers = Table(
    "readers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("encrypted_email", Text, nullable=False),
    Column("encrypted_phone", Text, nullable=False),
    Column("created_at", String(40), nullable=False),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("user_type", String(20), nullable=False),
    Column("admin_name", String(100), ForeignKey("admins.name", ondelete="CASCADE")),
    Column("book_owner_id", Integer, ForeignKey("book_owners.id", ondelete="CASCADE")),
    Column("reader_id", Integer, ForeignKey("readers.id", ondelete="CASCADE")),
    Column("created_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
    CheckConstraint(
        "(user_type = 'Admin' AND admin_name IS NOT NULL AND book_owner_id IS NULL AND reader_id IS NULL)"
        " OR (user_type = 'BookOwner' AND admin_name IS NULL AND book_owner_id IS NOT NULL AND reader_id IS NULL)"
        " OR (user_type = 'Reader' AND admin_name IS NULL AND book_owner_id IS NULL AND reader_id IS NOT NULL)",
        name="ck_refresh_tokens_one_principal",
    ),
)

Principal = Admin | BookOwner | Reader


# ---------------------------------------------------------------------------
# Connection-level helpers (usable inside a caller's transaction)
# ---------------------------------------------------------------------------


def load_principal(conn: Connection, ref: PrincipalRef) -> Principal | None:
    """Fetch the principal row a reference points at, or None if it is gone."""
    if isinstance(ref, AdminRef):
        row = conn.execute(admins.select().where(admins.c.name == ref.name)).fetchone()
        return _row_to_admin(row) if row is not None else None
    if isinstance(ref, OwnerRef):
        row = conn.execute(book_owners.select().where(book_owners.c.id == ref.owner_id)).fetchone()
        return _row_to_owner(row) if row is not None else None
    if isinstance(ref, ReaderRef):
        row = conn.execute(readers.select().where(readers.c.id == ref.reader_id)).fetchone()
        return _row_to_reader(row) if row is not None else None
    raise TypeError(f"Unknown principal reference: {ref!r}")


def _reference_columns(ref: PrincipalRef) -> dict:
    if isinstance(ref, AdminRef):
        return {"admin_name": ref.name, "book_owner_id": None, "reader_id": None}
    if isinstance(ref, OwnerRef):
        return {"admin_name": None, "book_owner_id": ref.owner_id, "reader_id": None}
    if isinstance(ref, ReaderRef):
        return {"admin_name": None, "book_owner_id": None, "reader_id": ref.reader_id}
    raise TypeError(f"Unknown principal reference: {ref!r}")


def _reference_filter(ref: PrincipalRef):
    if isinstance(ref, AdminRef):
        return refresh_tokens.c.admin_name == ref.name
    if isinstance(ref, OwnerRef):
        return refresh_tokens.c.book_owner_id == ref.owner_id
    return refresh_tokens.c.reader_id == ref.reader_id


def _insert_refresh_token(conn: Connection, token: RefreshToken) -> int:
    result = conn.execute(
        refresh_tokens.insert().values(
            token=token.token,
            user_type=token.user_type.value,
            created_at=to_iso(token.created_at),
            expires_at=to_iso(token.expires_at),
            **_reference_columns(token.principal),
        )
    )
    return result.inserted_primary_key[0]


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Admin, BookOwner and Reader records.

    Usage:
        store = PrincipalStore(engine)
        owner_id = store.create_owner(BookOwner(...))
        store.transition_owner_status(owner_id, ApprovalStatus.PENDING, ApprovalStatus.APPROVED)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -- admins ---------------------------------------------------------

    def create_admin(self, admin: Admin) -> str:
        """Insert an admin. Raises sqlalchemy.exc.IntegrityError if the name is taken."""
        with self.engine.connect() as conn:
            conn.execute(
                admins.insert().values(
                    name=admin.name,
                    hashed_password=admin.hashed_password,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
        return admin.name

    def get_admin(self, name: str) -> Admin | None:
        with self.engine.connect() as conn:
            row = conn.execute(admins.select().where(admins.c.name == name)).fetchone()
        return _row_to_admin(row) if row is not None else None

    # -- book owners ----------------------------------------------------

    def create_owner(self, owner: BookOwner) -> int:
        """Insert a book owner and return its id. Raises IntegrityError on a duplicate name."""
        with self.engine.connect() as conn:
            result = conn.execute(
                book_owners.insert().values(
                    name=owner.name,
                    hashed_password=owner.hashed_password,
                    encrypted_ssn=owner.encrypted_ssn,
                    encrypted_email=owner.encrypted_email,
                    encrypted_phone=owner.encrypted_phone,
                    status=owner.status.value,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_owner(self, owner_id: int) -> BookOwner | None:
        with self.engine.connect() as conn:
            row = conn.execute(book_owners.select().where(book_owners.c.id == owner_id)).fetchone()
        return _row_to_owner(row) if row is not None else None

    def get_owner_by_name(self, name: str) -> BookOwner | None:
        with self.engine.connect() as conn:
            row = conn.execute(book_owners.select().where(book_owners.c.name == name)).fetchone()
        return _row_to_owner(row) if row is not None else None

    def list_owners(self, status: ApprovalStatus | None = None) -> list[BookOwner]:
        query = book_owners.select().order_by(book_owners.c.id)
        if status is not None:
            query = query.where(book_owners.c.status == status.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_owner(r) for r in rows]

    def update_owner(self, owner_id: int, **fields) -> bool:
        """Update mutable owner columns (name, hashed_password, encrypted_*).

        Status is deliberately not accepted here; use transition_owner_status().
        Returns True if a row was updated.
        """
        if "status" in fields:
            raise ValueError("Owner status changes must go through transition_owner_status().")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(book_owners.update().where(book_owners.c.id == owner_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def transition_owner_status(
        self,
        owner_id: int,
        expected: ApprovalStatus,
        new: ApprovalStatus,
        conn: Connection | None = None,
    ) -> bool:
        """Move an owner from `expected` to `new` status.

        Conditional UPDATE: returns False when the owner is no longer in the
        expected status, i.e. another request processed it first.
        """
        stmt = (
            book_owners.update()
            .where((book_owners.c.id == owner_id) & (book_owners.c.status == expected.value))
            .values(status=new.value)
        )
        if conn is not None:
            return conn.execute(stmt).rowcount > 0
        with self.engine.connect() as own:
            result = own.execute(stmt)
            own.commit()
        return result.rowcount > 0

    # -- readers --------------------------------------------------------

    def create_reader(self, reader: Reader) -> int:
        """Insert a reader and return its id. Raises IntegrityError on a duplicate name."""
        with self.engine.connect() as conn:
            result = conn.execute(
                readers.insert().values(
                    name=reader.name,
                    hashed_password=reader.hashed_password,
                    encrypted_email=reader.encrypted_email,
                    encrypted_phone=reader.encrypted_phone,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_reader(self, reader_id: int) -> Reader | None:
        with self.engine.connect() as conn:
            row = conn.execute(readers.select().where(readers.c.id == reader_id)).fetchone()
        return _row_to_reader(row) if row is not None else None

    def get_reader_by_name(self, name: str) -> Reader | None:
        with self.engine.connect() as conn:
            row = conn.execute(readers.select().where(readers.c.name == name)).fetchone()
        return _row_to_reader(row) if row is not None else None


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for refresh tokens. Values are one-time use.

    Usage:
        tokens = RefreshTokenStore(engine)
        tokens.create(RefreshToken(token=value, principal=ReaderRef(7), ...))
        old, new = tokens.rotate(value, next_value, expires_at, authorize)
        tokens.revoke(next_value)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, token: RefreshToken) -> int:
        """Persist a refresh token row. A duplicate value raises IntegrityError."""
        with self.engine.connect() as conn:
            token_id = _insert_refresh_token(conn, token)
            conn.commit()
        return token_id

    def get(self, value: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.token == value)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for(self, ref: PrincipalRef) -> list[RefreshToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                refresh_tokens.select().where(_reference_filter(ref)).order_by(refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def rotate(
        self,
        presented: str,
        new_value: str,
        expires_at: datetime,
        authorize: Callable[[Connection, RefreshToken], None],
        now: datetime | None = None,
    ) -> tuple[RefreshToken, RefreshToken]:
        """Replace `presented` with `new_value` in one transaction.

        authorize(conn, old_token) runs inside the transaction before
        anything is written; raising from it aborts the rotation and leaves
        the presented token untouched.

        Raises NotFound if the value is unknown (never issued, revoked, or
        already rotated), Expired if it is past its expiry. Driver failures
        surface as PersistenceFailure with nothing changed.
        """
        now = now or utcnow()
        with transaction(self.engine, "refresh token rotation") as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.token == presented)).fetchone()
            if row is None:
                raise NotFound("Invalid refresh token.")
            old = _row_to_refresh_token(row)
            if old.is_expired(now):
                raise Expired("Refresh token has expired.")

            authorize(conn, old)

            deleted = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.id == old.id)).rowcount
            if deleted != 1:
                raise NotFound("Refresh token was already used.")
            new = RefreshToken(token=new_value, principal=old.principal, expires_at=expires_at, created_at=now)
            new.id = _insert_refresh_token(conn, new)
        return old, new

    def revoke(self, value: str) -> bool:
        """Delete one token. Returns False if it did not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.token == value))
            conn.commit()
        return result.rowcount > 0

    def revoke_all_for(self, ref: PrincipalRef, conn: Connection | None = None) -> int:
        """Delete every token belonging to one principal. Returns the count removed."""
        stmt = refresh_tokens.delete().where(_reference_filter(ref))
        if conn is not None:
            return conn.execute(stmt).rowcount
        with self.engine.connect() as own:
            result = own.execute(stmt)
            own.commit()
        return result.rowcount

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete tokens whose expiry has passed. Returns the count removed."""
        cutoff = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expires_at <= cutoff))
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired refresh tokens", result.rowcount)
        return result.rowcount

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(refresh_tokens)).scalar() or 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_admin(row) -> Admin:
    return Admin(name=row.name, hashed_password=row.hashed_password, created_at=row.created_at)


def _row_to_owner(row) -> BookOwner:
    return BookOwner(
        id=row.id,
        name=row.name,
        hashed_password=row.hashed_password,
        encrypted_ssn=row.encrypted_ssn,
        encrypted_email=row.encrypted_email,
        encrypted_phone=row.encrypted_phone,
        status=ApprovalStatus(row.status),
        created_at=row.created_at,
    )


def _row_to_reader(row) -> Reader:
    return Reader(
        id=row.id,
        name=row.name,
        hashed_password=row.hashed_password,
        encrypted_email=row.encrypted_email,
        encrypted_phone=row.encrypted_phone,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    user_type = UserType(row.user_type)
    if user_type is UserType.ADMIN:
        ref: PrincipalRef = AdminRef(row.admin_name)
    elif user_type is UserType.BOOK_OWNER:
        ref = OwnerRef(row.book_owner_id)
    else:
        ref = ReaderRef(row.reader_id)
    return RefreshToken(
        id=row.id,
        token=row.token,
        principal=ref,
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
    )
