"""
market/schemas.py -- Pydantic input models for posts and borrow requests.

Identity never comes from these bodies: the owner of a new post and the
reader of a new request are taken from the access token. The ids echoed in
BookRequestResponse / BookRequestReturn are only cross-checked against the
stored request (a disagreement is a Mismatch).
"""

from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BookPostCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    genre: str = Field(min_length=1, max_length=100)
    isbn: str = Field(min_length=10, max_length=17, pattern=r"^[0-9Xx-]+$")
    description: Optional[str] = Field(default=None, max_length=1000)
    language: str = Field(min_length=1, max_length=50)
    publication_date: date
    start_date: datetime
    end_date: datetime
    price: int = Field(ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Treat naive datetimes as UTC so window checks compare like with like."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def check_window(self) -> "BookPostCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BorrowRequest(BaseModel):
    book_post_id: int = Field(gt=0)


class BookRequestResponse(BaseModel):
    """Owner's answer to a pending request. status must be Accepted or Rejected."""

    model_config = ConfigDict(str_strip_whitespace=True)

    request_id: int = Field(gt=0)
    book_post_id: int = Field(gt=0)
    reader_id: int = Field(gt=0)
    status: str


class BookRequestReturn(BaseModel):
    request_id: int = Field(gt=0)
    book_post_id: int = Field(gt=0)
    reader_id: int = Field(gt=0)
