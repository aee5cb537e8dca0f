"""
core/errors.py -- Error taxonomy shared by auth/ and market/.

Every failure a caller can branch on has its own class with a stable `code`.
Clients must be able to tell "pending approval" from "bad password" from
"token expired", so these codes are part of the public contract and must
not be renamed.

None of these are retried automatically. status_code is the HTTP status the
api/ layer maps the error to; the domain code never looks at it.
"""

from __future__ import annotations


class BookSwapError(Exception):
    """Base class for all domain errors."""

    code: str = "error"
    status_code: int = 400
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(BookSwapError):
    code = "invalid_input"
    default_message = "Invalid input."


class InvalidCredentials(BookSwapError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials."


class NotApproved(BookSwapError):
    code = "not_approved"
    status_code = 403
    default_message = "Your account is not approved."


class AlreadyProcessed(BookSwapError):
    code = "already_processed"
    status_code = 409
    default_message = "This request is already processed."


class InvalidAction(BookSwapError):
    code = "invalid_action"
    default_message = "Invalid action. Use 'approve' or 'reject'."


class NotAvailable(BookSwapError):
    code = "not_available"
    status_code = 409
    default_message = "Book is not available for borrowing."


class NotBorrowed(BookSwapError):
    code = "not_borrowed"
    status_code = 409
    default_message = "Book is not currently borrowed."


class Mismatch(BookSwapError):
    code = "mismatch"
    default_message = "Book post or reader ID mismatch."


class NotFound(BookSwapError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class Expired(BookSwapError):
    code = "expired"
    status_code = 401
    default_message = "Token has expired."


class Forbidden(BookSwapError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action."


class Conflict(BookSwapError):
    code = "conflict"
    status_code = 409
    default_message = "Already exists."


class CryptoError(BookSwapError):
    code = "crypto_error"
    status_code = 500
    default_message = "Cryptographic operation failed."


class PersistenceFailure(BookSwapError):
    code = "persistence_failure"
    status_code = 500
    default_message = "Error updating the database."
