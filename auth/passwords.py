"""
auth/passwords.py -- Password hashing and the strict complexity gate.

Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
    offline brute force of low-entropy secrets expensive. DUMMY_HASH enables
    timing equalization in login so response time does not reveal whether an
    email is registered.

Complexity: password_issues() is the gate used on registration, password
    change and password reset. It collects every unmet rule instead of
    stopping at the first so the client can show all problems at once.
    The breach-aware policy in auth/breach.py is a separate, looser check.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import re

import bcrypt

MIN_LENGTH = 8
MAX_LENGTH = 128

# Punctuation accepted as a "special character" by both gates.
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"\d")
_UPPER_RE = re.compile(r"[A-Z]")
_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARACTERS) + "]")


def _encode(plain: str) -> bytes:
    # bcrypt only uses the first 72 bytes and bcrypt>=5 rejects longer input.
    return plain.encode("utf-8")[:72]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    MAX_LENGTH is enforced by password_issues() before anything is hashed;
    the 72-byte bcrypt cut-off is applied explicitly in _encode().
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than later ones. Always verify against this when the account does
# not exist or has no password.
DUMMY_HASH: str = hash_password("personahub_timing_dummy")


def password_issues(password: str | None) -> list[str]:
    """Return every complexity rule the password breaks. Empty list means valid."""
    if not isinstance(password, str):
        return ["Password must be a string"]

    issues: list[str] = []
    if len(password) < MIN_LENGTH:
        issues.append(f"Password must be at least {MIN_LENGTH} characters long")
    if len(password) > MAX_LENGTH:
        issues.append(f"Password must be no more than {MAX_LENGTH} characters long")
    if not _LETTER_RE.search(password):
        issues.append("Password must contain at least one letter")
    if not _DIGIT_RE.search(password):
        issues.append("Password must contain at least one number")
    if not _UPPER_RE.search(password):
        issues.append("Password must contain at least one uppercase letter")
    if not _SPECIAL_RE.search(password):
        issues.append("Password must contain at least one special character")
    return issues


def has_special_character(password: str) -> bool:
    return bool(_SPECIAL_RE.search(password))
