"""
market/models.py -- Domain dataclasses for book posts and borrow requests.

Pure data containers. All transitions live in market/lifecycle.py and are
persisted through the conditional updates in market/store.py.

Post lifecycle:     Pending -> Available | Rejected        (admin moderation)
                    Available -> Borrowed -> Available     (request responses)
Request lifecycle:  Pending -> Accepted | Rejected
                    Accepted -> Returned
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


class PostStatus(str, Enum):
    PENDING = "Pending"
    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    REJECTED = "Rejected"


class RequestStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    RETURNED = "Returned"


@dataclass
class BookPost:
    """A book an owner offers for borrowing during [start_date, end_date].

    id is None before the record is written to the database.
    """

    owner_id: int
    title: str
    genre: str
    isbn: str
    language: str
    publication_date: date
    start_date: datetime
    end_date: datetime
    price: int
    status: PostStatus = PostStatus.PENDING
    description: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""

    def is_offerable(self, now: Optional[datetime] = None) -> bool:
        """True when the post is Available and `now` falls inside its window."""
        now = now or datetime.now(timezone.utc)
        return self.status is PostStatus.AVAILABLE and self.start_date <= now <= self.end_date


@dataclass
class BookRequest:
    """A reader's request to borrow one post."""

    post_id: int
    reader_id: int
    status: RequestStatus = RequestStatus.PENDING
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
