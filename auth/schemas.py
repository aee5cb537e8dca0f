"""
auth/schemas.py -- Pydantic input models for signup, login and profile updates.

These define the transport contract the (external) HTTP layer binds request
bodies to. They are separate from the dataclasses in auth/models.py, which
own the stored shape (hashes and ciphertext, never plaintext).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

_NAME = Field(min_length=1, max_length=100)
# bcrypt ignores everything past 72 bytes; keep passwords below that.
_PASSWORD = Field(min_length=8, max_length=64)
_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_PHONE_PATTERN = r"^\+?[0-9 ()-]{6,20}$"


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = _NAME
    password: str = Field(min_length=1, max_length=64)


class AdminCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = _NAME
    password: str = _PASSWORD


class OwnerSignUp(BaseModel):
    """Owner registration. ssn/email/phone are encrypted before they are stored."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = _NAME
    password: str = _PASSWORD
    ssn: str = Field(min_length=4, max_length=20, pattern=r"^[0-9-]+$")
    email: str = Field(max_length=254, pattern=_EMAIL_PATTERN)
    phone: str = Field(pattern=_PHONE_PATTERN)


class ReaderSignUp(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = _NAME
    password: str = _PASSWORD
    email: str = Field(max_length=254, pattern=_EMAIL_PATTERN)
    phone: str = Field(pattern=_PHONE_PATTERN)


class OwnerUpdate(BaseModel):
    """Partial owner update. Omitted fields keep their stored value."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    password: Optional[str] = Field(default=None, min_length=8, max_length=64)
    ssn: Optional[str] = Field(default=None, min_length=4, max_length=20, pattern=r"^[0-9-]+$")
    email: Optional[str] = Field(default=None, max_length=254, pattern=_EMAIL_PATTERN)
    phone: Optional[str] = Field(default=None, pattern=_PHONE_PATTERN)
