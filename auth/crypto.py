"""
auth/crypto.py -- AES-256-GCM envelope encryption for secrets at rest.

Used to store persona webhook URLs. A stolen database row is useless without
ENCRYPTION_KEY, and a modified row fails authentication instead of decrypting
to attacker-chosen plaintext.

Wire/storage format (stable -- values are persisted):

    base64( IV[16] || ciphertext || tag[16] )

Security design decisions:
  IV: 16 fresh bytes from os.urandom() on every encrypt() call. GCM with a
      repeated IV under the same key leaks the XOR of the plaintexts and the
      authentication key, so IVs are never derived, counted, or reused.

  Associated data: the fixed tag b"persona-webhook" is bound on both sides.
      A ciphertext produced for another purpose with the same key will not
      authenticate here.

  Key normalization: ENCRYPTION_KEY may be base64 of 32 bytes (the format
      generate_key() produces, or its URL-safe, unpadded or line-wrapped
      variants) or 32 raw UTF-8 bytes. Anything else is hashed
      with SHA-256 to 32 bytes. The fallback keeps legacy deployments working;
      it is logged at debug level, not hidden.

  Fail closed: every failure raises a CryptoError subclass. No partial
      plaintext is ever returned.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger("personahub.auth.crypto")

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
ASSOCIATED_DATA = b"persona-webhook"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CryptoError(Exception):
    """Base class for all encryption / decryption failures."""


class InvalidKey(CryptoError):
    """Key material is empty or not a string."""


class InvalidInput(CryptoError):
    """Plaintext, ciphertext or key was not supplied."""


class EncryptionFailed(CryptoError):
    """The cipher raised while encrypting."""


class DecryptionFailed(CryptoError):
    """Ciphertext is malformed, truncated, tampered with, or for another key."""


# ---------------------------------------------------------------------------
# Key handling
# ---------------------------------------------------------------------------


def normalize_key(key_material: str) -> bytes:
    """Return exactly 32 key bytes derived from the configured key string.

    Order of attempts:
      1. base64 that decodes to exactly 32 bytes. Whitespace is ignored,
         the URL-safe alphabet is accepted and missing padding is restored.
      2. UTF-8 encoding that is exactly 32 bytes
      3. SHA-256 of the UTF-8 encoding
    """
    if not isinstance(key_material, str) or not key_material:
        raise InvalidKey("Secret key must be a non-empty string")

    decoded = _decode_base64_key(key_material)
    if len(decoded) == KEY_LENGTH:
        return decoded

    raw = key_material.encode("utf-8")
    if len(raw) == KEY_LENGTH:
        return raw

    logger.debug("Encryption key is not 32 bytes; deriving key with SHA-256")
    return hashlib.sha256(raw).digest()


def _decode_base64_key(key_material: str) -> bytes:
    compact = "".join(key_material.split()).replace("-", "+").replace("_", "/")
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        return b""


def generate_key() -> str:
    """Return 32 cryptographically random bytes, base64-encoded.

    Used to provision ENCRYPTION_KEY for a new deployment.
    """
    return base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


# ---------------------------------------------------------------------------
# Encrypt / decrypt
# ---------------------------------------------------------------------------


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt plaintext and return the base64 IV || ciphertext || tag blob."""
    if plaintext is None or key is None:
        raise InvalidInput("Text and secret key are required")
    aes_key = normalize_key(key)

    iv = os.urandom(IV_LENGTH)
    try:
        # AESGCM appends the 16-byte tag to the ciphertext.
        sealed = AESGCM(aes_key).encrypt(iv, plaintext.encode("utf-8"), ASSOCIATED_DATA)
    except (ValueError, TypeError, OverflowError) as exc:
        logger.error("Encryption failed: %s", type(exc).__name__)
        raise EncryptionFailed("Encryption failed") from exc
    return base64.b64encode(iv + sealed).decode("ascii")


def decrypt(blob: str, key: str) -> str:
    """Decrypt a blob produced by encrypt(). Raises DecryptionFailed on any problem."""
    if blob is None or key is None:
        raise InvalidInput("Encrypted text and secret key are required")
    aes_key = normalize_key(key)

    try:
        data = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptionFailed("Decryption failed") from exc

    if len(data) < IV_LENGTH + TAG_LENGTH:
        raise DecryptionFailed("Decryption failed")

    iv, sealed = data[:IV_LENGTH], data[IV_LENGTH:]
    try:
        plaintext = AESGCM(aes_key).decrypt(iv, sealed, ASSOCIATED_DATA)
        return plaintext.decode("utf-8")
    except InvalidTag as exc:
        logger.warning("Decryption failed: authentication tag mismatch")
        raise DecryptionFailed("Decryption failed") from exc
    except (ValueError, UnicodeDecodeError) as exc:
        logger.error("Decryption failed: %s", type(exc).__name__)
        raise DecryptionFailed("Decryption failed") from exc


if __name__ == "__main__":
    print(generate_key())
