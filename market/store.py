"""
market/store.py -- SQLAlchemy Core persistence for book posts and borrow requests.

Pattern: Repository + Data Mapper (same as auth/store.py). MarketStore is
the repository; _row_to_post / _row_to_request are the mappers.

Every status change is a conditional UPDATE:

    UPDATE book_posts SET status = :new WHERE id = :id AND status = :expected

and callers branch on rowcount. Combined with BEGIN IMMEDIATE transactions
(core/database.py) only one of two conflicting transitions can win; the
other sees rowcount == 0 and reports a clean domain error.

Methods that take `conn` run inside the caller's transaction; without it they
open and commit their own connection.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import Column, Date, ForeignKey, Integer, String, Table, Text, select
from sqlalchemy.engine import Connection, Engine

import auth.store  # noqa: F401  (registers book_owners/readers for the FKs below)
from core.database import from_iso, metadata, to_iso, utcnow
from market.models import BookPost, BookRequest, PostStatus, RequestStatus

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

book_posts = Table(
    "book_posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, ForeignKey("book_owners.id", ondelete="CASCADE"), nullable=False),
    Column("title", String(200), nullable=False),
    Column("genre", String(100), nullable=False),
    Column("isbn", String(17), nullable=False),
    Column("description", Text),
    Column("language", String(50), nullable=False),
    Column("publication_date", Date, nullable=False),
    Column("start_date", String(40), nullable=False),  # ISO 8601 UTC
    Column("end_date", String(40), nullable=False),  # ISO 8601 UTC
    Column("price", Integer, nullable=False),
    Column("status", String(20), nullable=False, server_default=PostStatus.PENDING.value),
    Column("created_at", String(40), nullable=False),
)

book_requests = Table(
    "book_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("post_id", Integer, ForeignKey("book_posts.id", ondelete="CASCADE"), nullable=False),
    Column("reader_id", Integer, ForeignKey("readers.id", ondelete="CASCADE"), nullable=False),
    Column("status", String(20), nullable=False, server_default=RequestStatus.PENDING.value),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)


class MarketStore:
    """Repository for BookPost and BookRequest entities.

    Usage:
        store = MarketStore(engine)
        post_id = store.create_post(BookPost(...))
        store.transition_post(post_id, PostStatus.PENDING, PostStatus.AVAILABLE)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _execute(self, stmt, conn: Optional[Connection]):
        if conn is not None:
            return conn.execute(stmt)
        with self.engine.connect() as own:
            result = own.execute(stmt)
            own.commit()
        return result

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: BookPost) -> int:
        """Insert a post and return its id. Raises IntegrityError if owner_id is unknown."""
        result = self._execute(
            book_posts.insert().values(
                owner_id=post.owner_id,
                title=post.title,
                genre=post.genre,
                isbn=post.isbn,
                description=post.description,
                language=post.language,
                publication_date=post.publication_date,
                start_date=to_iso(post.start_date),
                end_date=to_iso(post.end_date),
                price=post.price,
                status=post.status.value,
                created_at=to_iso(utcnow()),
            ),
            None,
        )
        return result.inserted_primary_key[0]

    def get_post(self, post_id: int, conn: Optional[Connection] = None) -> Optional[BookPost]:
        stmt = book_posts.select().where(book_posts.c.id == post_id)
        if conn is not None:
            row = conn.execute(stmt).fetchone()
        else:
            with self.engine.connect() as own:
                row = own.execute(stmt).fetchone()
        return _row_to_post(row) if row is not None else None

    def list_posts(
        self,
        status: Optional[PostStatus] = None,
        owner_id: Optional[int] = None,
    ) -> list[BookPost]:
        query = book_posts.select().order_by(book_posts.c.id)
        if status is not None:
            query = query.where(book_posts.c.status == status.value)
        if owner_id is not None:
            query = query.where(book_posts.c.owner_id == owner_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_post(r) for r in rows]

    def transition_post(
        self,
        post_id: int,
        expected: PostStatus,
        new: PostStatus,
        conn: Optional[Connection] = None,
    ) -> bool:
        """Conditional status change. False means the post was not in `expected`."""
        stmt = (
            book_posts.update()
            .where((book_posts.c.id == post_id) & (book_posts.c.status == expected.value))
            .values(status=new.value)
        )
        return self._execute(stmt, conn).rowcount > 0

    def delete_post(self, post_id: int, conn: Optional[Connection] = None) -> bool:
        """Delete a post unless it is currently Borrowed."""
        stmt = book_posts.delete().where(
            (book_posts.c.id == post_id) & (book_posts.c.status != PostStatus.BORROWED.value)
        )
        return self._execute(stmt, conn).rowcount > 0

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def create_request(self, request: BookRequest, conn: Optional[Connection] = None) -> int:
        now = to_iso(utcnow())
        result = self._execute(
            book_requests.insert().values(
                post_id=request.post_id,
                reader_id=request.reader_id,
                status=request.status.value,
                created_at=now,
                updated_at=now,
            ),
            conn,
        )
        return result.inserted_primary_key[0]

    def get_request(self, request_id: int, conn: Optional[Connection] = None) -> Optional[BookRequest]:
        stmt = book_requests.select().where(book_requests.c.id == request_id)
        if conn is not None:
            row = conn.execute(stmt).fetchone()
        else:
            with self.engine.connect() as own:
                row = own.execute(stmt).fetchone()
        return _row_to_request(row) if row is not None else None

    def find_open_request(self, post_id: int, reader_id: int, conn: Optional[Connection] = None) -> Optional[BookRequest]:
        """Return the reader's Pending or Accepted request on a post, if any."""
        stmt = book_requests.select().where(
            (book_requests.c.post_id == post_id)
            & (book_requests.c.reader_id == reader_id)
            & (book_requests.c.status.in_([RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value]))
        )
        if conn is not None:
            row = conn.execute(stmt).fetchone()
        else:
            with self.engine.connect() as own:
                row = own.execute(stmt).fetchone()
        return _row_to_request(row) if row is not None else None

    def list_requests(
        self,
        reader_id: Optional[int] = None,
        owner_id: Optional[int] = None,
    ) -> list[BookRequest]:
        """List requests made by a reader, or received on an owner's posts."""
        query = book_requests.select().order_by(book_requests.c.id)
        if reader_id is not None:
            query = query.where(book_requests.c.reader_id == reader_id)
        if owner_id is not None:
            owned = select(book_posts.c.id).where(book_posts.c.owner_id == owner_id)
            query = query.where(book_requests.c.post_id.in_(owned))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_request(r) for r in rows]

    def transition_request(
        self,
        request_id: int,
        expected: RequestStatus,
        new: RequestStatus,
        conn: Optional[Connection] = None,
    ) -> bool:
        """Conditional status change. False means the request was not in `expected`."""
        stmt = (
            book_requests.update()
            .where((book_requests.c.id == request_id) & (book_requests.c.status == expected.value))
            .values(status=new.value, updated_at=to_iso(utcnow()))
        )
        return self._execute(stmt, conn).rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_post(row) -> BookPost:
    publication = row.publication_date
    if isinstance(publication, str):
        publication = date.fromisoformat(publication)
    return BookPost(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        genre=row.genre,
        isbn=row.isbn,
        description=row.description,
        language=row.language,
        publication_date=publication,
        start_date=from_iso(row.start_date),
        end_date=from_iso(row.end_date),
        price=row.price,
        status=PostStatus(row.status),
        created_at=row.created_at,
    )


def _row_to_request(row) -> BookRequest:
    return BookRequest(
        id=row.id,
        post_id=row.post_id,
        reader_id=row.reader_id,
        status=RequestStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
