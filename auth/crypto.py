"""
auth/crypto.py -- Password hashing, PII field encryption, refresh token values.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper) with a configurable cost
       factor (BCRYPT_ROUNDS, default 12). Hashes are salted per call and
       never reversible. verify_password() delegates the comparison to
       bcrypt.checkpw, which is constant-time.

  PII (ssn, email, phone): AES-256-GCM from `cryptography`. Each call draws
       a fresh 12-byte nonce and the stored value is
       base64(nonce || ciphertext || tag). GCM is authenticated, so a
       tampered or truncated value fails loudly with CryptoError instead of
       decrypting to garbage. Empty input passes through unchanged in both
       directions; callers that need "no value" semantics rely on that.

  Key lifecycle: the 32-byte key comes from Settings.field_encryption_key,
       validated at startup. get_field_cipher() builds the cipher once and
       every request shares it read-only.

  Refresh tokens: 32 bytes from `secrets`, base64 encoded. Uniqueness is
       probabilistic (256 bits) and backed by a UNIQUE column in the store.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from functools import lru_cache

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.config import FIELD_KEY_BYTES, decode_field_key, get_settings
from core.errors import CryptoError, InvalidInput

logger = logging.getLogger("bookswap.auth")

_NONCE_BYTES = 12
_TAG_BYTES = 16
_REFRESH_TOKEN_BYTES = 32

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The signup schemas cap
    passwords well below that.
    """
    if not plain:
        raise InvalidInput("Password must not be empty.")
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Empty arguments are a caller bug and raise InvalidInput. A stored hash
    that bcrypt cannot parse counts as a mismatch.
    """
    if not plain:
        raise InvalidInput("Password must not be empty.")
    if not hashed:
        raise InvalidInput("Stored password hash must not be empty.")
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


# Timing equalization: verify against this when the name is unknown so that
# response time does not reveal which names exist.
_DUMMY_HASH: str = hash_password("bookswap_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification on a throwaway hash."""
    verify_password(plain or "x", _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Field encryption
# ---------------------------------------------------------------------------


class FieldCipher:
    """Symmetric encryption for PII columns, bound to one process-wide key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != FIELD_KEY_BYTES:
            raise ValueError(f"Field encryption key must be {FIELD_KEY_BYTES} bytes long.")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str | None) -> str | None:
        if not plaintext:
            return plaintext
        nonce = secrets.token_bytes(_NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str | None) -> str | None:
        if not ciphertext:
            return ciphertext
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CryptoError("Decryption failed: value is not valid base64.") from exc
        if len(raw) < _NONCE_BYTES + _TAG_BYTES:
            raise CryptoError("Decryption failed: value is too short.")
        nonce, sealed = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        try:
            plain = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise CryptoError("Decryption failed: authentication tag mismatch.") from exc
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CryptoError("Decryption failed: plaintext is not valid UTF-8.") from exc


@lru_cache
def get_field_cipher() -> FieldCipher:
    """Return the process-wide FieldCipher, built from settings on first use."""
    return FieldCipher(decode_field_key(get_settings().field_encryption_key))


def encrypt(plaintext: str | None) -> str | None:
    return get_field_cipher().encrypt(plaintext)


def decrypt(ciphertext: str | None) -> str | None:
    return get_field_cipher().decrypt(ciphertext)


# ---------------------------------------------------------------------------
# Refresh token values
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return 32 cryptographically random bytes, base64 encoded."""
    return base64.b64encode(secrets.token_bytes(_REFRESH_TOKEN_BYTES)).decode("ascii")
