"""
market/lifecycle.py -- Post moderation and the borrow-request state machine.

MarketService is the only writer of post and request status. Each operation:

  1. Derives the actor from TokenClaims (owner id / reader id from the
     access token, never from the request body).
  2. Opens one transaction (core.database.transaction).
  3. Re-reads the rows it is about to change and checks every guard.
  4. Applies conditional UPDATEs; a zero rowcount raises a domain error,
     which rolls back anything already written in the block.

So a request and its post always change together or not at all, and of two
concurrent conflicting transitions exactly one commits.

Post:     Pending -> Available | Rejected        (admin, one-shot)
          Available -> Borrowed                  (owner accepts a request)
          Borrowed -> Available                  (reader returns)
Request:  Pending -> Accepted | Rejected         (owning owner)
          Accepted -> Returned                   (requesting reader)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.accounts import parse_action
from auth.models import UserType
from auth.tokens import TokenClaims
from core.database import transaction, utcnow
from core.errors import (
    AlreadyProcessed,
    Conflict,
    Forbidden,
    InvalidAction,
    Mismatch,
    NotAvailable,
    NotBorrowed,
    NotFound,
    PersistenceFailure,
)
from market.models import BookPost, BookRequest, PostStatus, RequestStatus
from market.schemas import BookPostCreate, BookRequestResponse, BookRequestReturn
from market.store import MarketStore

logger = logging.getLogger("bookswap.market")

_POST_ACTIONS: dict[str, PostStatus] = {
    "approve": PostStatus.AVAILABLE,
    "reject": PostStatus.REJECTED,
}

_RESPONSES: dict[str, RequestStatus] = {
    "accepted": RequestStatus.ACCEPTED,
    "rejected": RequestStatus.REJECTED,
}


class MarketService:
    def __init__(self, store: MarketStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, claims: TokenClaims, body: BookPostCreate) -> int:
        """Create a Pending post owned by the authenticated owner."""
        owner_id = claims.owner_id
        post = BookPost(
            owner_id=owner_id,
            title=body.title,
            genre=body.genre,
            isbn=body.isbn,
            description=body.description,
            language=body.language,
            publication_date=body.publication_date,
            start_date=body.start_date,
            end_date=body.end_date,
            price=body.price,
            status=PostStatus.PENDING,
        )
        try:
            post_id = self.store.create_post(post)
        except IntegrityError as exc:
            raise NotFound("Book owner not found.") from exc
        logger.info("Owner %d created post %d (pending moderation)", owner_id, post_id)
        return post_id

    def delete_post(self, claims: TokenClaims, post_id: int) -> None:
        owner_id = claims.owner_id
        with transaction(self.store.engine, "book post deletion") as conn:
            post = self.store.get_post(post_id, conn=conn)
            if post is None:
                raise NotFound(f"No BookPost found with ID = {post_id}")
            if post.owner_id != owner_id:
                raise Forbidden("Only the book owner can delete this post.")
            if not self.store.delete_post(post_id, conn=conn):
                raise NotAvailable("Cannot delete a borrowed book post.")
        logger.info("Owner %d deleted post %d", owner_id, post_id)

    def get_post(self, post_id: int) -> BookPost:
        post = self.store.get_post(post_id)
        if post is None:
            raise NotFound("Book post not found.")
        return post

    def list_pending_posts(self, claims: TokenClaims) -> list[BookPost]:
        """Admin moderation queue."""
        claims.ensure_role(UserType.ADMIN)
        return self.store.list_posts(status=PostStatus.PENDING)

    def list_offerable_posts(self, now: Optional[datetime] = None) -> list[BookPost]:
        """Available posts whose borrowing window contains `now`."""
        now = now or utcnow()
        return [p for p in self.store.list_posts(status=PostStatus.AVAILABLE) if p.is_offerable(now)]

    def list_owner_posts(self, claims: TokenClaims) -> list[BookPost]:
        return self.store.list_posts(owner_id=claims.owner_id)

    def process_book_post(self, claims: TokenClaims, post_id: int, action: str) -> PostStatus:
        """Approve (-> Available) or reject a Pending post. Admin only, exactly once."""
        claims.ensure_role(UserType.ADMIN)
        with transaction(self.store.engine, "book post moderation") as conn:
            post = self.store.get_post(post_id, conn=conn)
            if post is None:
                raise NotFound("Book Post not found.")
            if post.status is not PostStatus.PENDING:
                raise AlreadyProcessed("Book Post request is already processed.")
            new_status = parse_action(action, _POST_ACTIONS)
            if not self.store.transition_post(post_id, PostStatus.PENDING, new_status, conn=conn):
                raise AlreadyProcessed("Book Post request is already processed.")
        logger.info("Admin %s set post %d to %s", claims.name, post_id, new_status.value)
        return new_status

    # ------------------------------------------------------------------
    # Borrow requests
    # ------------------------------------------------------------------

    def borrow_book(self, claims: TokenClaims, post_id: int, now: Optional[datetime] = None) -> int:
        """Open a Pending request on a currently offerable post. Returns the request id."""
        reader_id = claims.reader_id
        now = now or utcnow()
        try:
            with transaction(self.store.engine, "borrow request") as conn:
                post = self.store.get_post(post_id, conn=conn)
                if post is None:
                    raise NotFound("Book post not found.")
                if not post.is_offerable(now):
                    raise NotAvailable("Book is not available for borrowing.")
                if self.store.find_open_request(post_id, reader_id, conn=conn) is not None:
                    raise Conflict("You already have an open request for this book.")
                request_id = self.store.create_request(
                    BookRequest(post_id=post_id, reader_id=reader_id, status=RequestStatus.PENDING),
                    conn=conn,
                )
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise NotFound("Reader not found.") from exc.__cause__
            raise
        logger.info("Reader %d requested post %d (request %d)", reader_id, post_id, request_id)
        return request_id

    def respond_to_request(self, claims: TokenClaims, body: BookRequestResponse) -> RequestStatus:
        """Owner accepts or rejects a Pending request on one of their posts.

        Accepting moves the post Available -> Borrowed in the same
        transaction; rejecting leaves it Available.
        """
        owner_id = claims.owner_id
        with transaction(self.store.engine, "borrow request response") as conn:
            request = self.store.get_request(body.request_id, conn=conn)
            if request is None:
                raise NotFound("Book request not found.")
            if request.post_id != body.book_post_id or request.reader_id != body.reader_id:
                raise Mismatch("Book post or reader ID mismatch.")
            post = self.store.get_post(request.post_id, conn=conn)
            if post is None:
                raise NotFound("Book post not found.")
            if post.owner_id != owner_id:
                raise Forbidden("Only the book owner can respond to this request.")
            if request.status is not RequestStatus.PENDING:
                raise AlreadyProcessed("Book request is already processed.")
            try:
                decision = parse_action(body.status, _RESPONSES)
            except InvalidAction as exc:
                raise InvalidAction("Invalid request status. Must be 'Accepted' or 'Rejected'.") from exc
            if post.status is not PostStatus.AVAILABLE:
                raise NotAvailable("Book is already borrowed.")

            post_after = PostStatus.BORROWED if decision is RequestStatus.ACCEPTED else PostStatus.AVAILABLE
            if not self.store.transition_post(post.id, PostStatus.AVAILABLE, post_after, conn=conn):
                raise NotAvailable("Book is already borrowed.")
            if not self.store.transition_request(request.id, RequestStatus.PENDING, decision, conn=conn):
                raise AlreadyProcessed("Book request is already processed.")
        logger.info(
            "Owner %d %s request %d; post %d is %s",
            owner_id,
            decision.value.lower(),
            request.id,
            post.id,
            post_after.value,
        )
        return decision

    def return_book(self, claims: TokenClaims, body: BookRequestReturn) -> BookRequest:
        """Reader hands a borrowed book back: request -> Returned, post -> Available."""
        reader_id = claims.reader_id
        with transaction(self.store.engine, "book return") as conn:
            request = self.store.get_request(body.request_id, conn=conn)
            if request is None:
                raise NotFound("Book request not found.")
            if request.post_id != body.book_post_id or request.reader_id != body.reader_id:
                raise Mismatch("Invalid book request details.")
            if request.reader_id != reader_id:
                raise Forbidden("Only the borrowing reader can return this book.")
            if not self.store.transition_request(request.id, RequestStatus.ACCEPTED, RequestStatus.RETURNED, conn=conn):
                raise NotBorrowed("Book is not currently borrowed.")
            if not self.store.transition_post(request.post_id, PostStatus.BORROWED, PostStatus.AVAILABLE, conn=conn):
                logger.error("Post %d is not Borrowed although request %d was Accepted", request.post_id, request.id)
                raise PersistenceFailure("Book post state is inconsistent with its request; nothing was changed.")
            returned = self.store.get_request(request.id, conn=conn)
        logger.info("Reader %d returned post %d (request %d)", reader_id, request.post_id, request.id)
        return returned

    def list_requests_for_owner(self, claims: TokenClaims) -> list[BookRequest]:
        return self.store.list_requests(owner_id=claims.owner_id)

    def list_requests_for_reader(self, claims: TokenClaims) -> list[BookRequest]:
        return self.store.list_requests(reader_id=claims.reader_id)
