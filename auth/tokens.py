"""
auth/tokens.py -- Stateless JWT access / refresh tokens and one-time token hashing.

Security design decisions:
  JWT: python-jose with HS256. One SECRET_KEY signs both token kinds; a "type"
       claim ("access" / "refresh") separates them. verify_access() rejects a
       refresh token and verify_refresh() rejects an access token -- cross use
       is treated exactly like a forged signature.

  Uniform failure: bad signature, malformed token, expiry, wrong type and a
       missing subject all raise Unauthorized("Invalid or expired token").
       Callers never learn which check failed.

  Stateless trade-off: no session store round trip per request, but also no
       server-side revocation. auth/session.py compensates by reloading the
       account on every request and rejecting anything that is not ACTIVE.

  One-time tokens: email verification / password reset tokens are
       secrets.token_urlsafe(32) (256 bits). Only HMAC-SHA256(SECRET_KEY, raw)
       is stored, so lookup is O(1) and a leaked DB row cannot be replayed.

TokenService is constructed explicitly and injected (see api/main.py lifespan)
rather than reading settings at import time, so tests can build one with any
secret and lifetime.

Layer rule: no imports from api/ or personas/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import TokenClaims, TokenPair, TokenType
from core.errors import Unauthorized

logger = logging.getLogger("personahub.auth.tokens")

INVALID_TOKEN = "Invalid or expired token"

_ALGORITHM = "HS256"


class TokenService:
    """Issue and verify signed access / refresh tokens.

    Usage:
        tokens = TokenService(secret_key, access_ttl=3600, refresh_ttl=604800)
        pair = tokens.issue_pair(TokenClaims(account_id, workspace_id, role))
        claims = tokens.verify_access(pair.access_token)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int = 3600,
        refresh_ttl: int = 7 * 24 * 3600,
        algorithm: str = _ALGORITHM,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a non-empty secret key")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings=None) -> TokenService:
        if settings is None:
            from core.config import get_settings

            settings = get_settings()
        return cls(
            secret_key=settings.secret_key,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _encode(self, claims: TokenClaims, token_type: TokenType, ttl: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": claims.account_id,
            "workspace_id": claims.workspace_id,
            "role": claims.role,
            "type": token_type.value,
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
            # jti keeps two tokens issued in the same second distinct.
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue_access(self, claims: TokenClaims) -> str:
        return self._encode(claims, TokenType.ACCESS, self.access_ttl)

    def issue_refresh(self, claims: TokenClaims) -> str:
        return self._encode(claims, TokenType.REFRESH, self.refresh_ttl)

    def issue_pair(self, claims: TokenClaims) -> TokenPair:
        """Issue an access + refresh token for the same identity."""
        return TokenPair(
            access_token=self.issue_access(claims),
            refresh_token=self.issue_refresh(claims),
            expires_in=self.access_ttl,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str, expected: TokenType) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise Unauthorized(INVALID_TOKEN)
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as exc:
            logger.debug("JWT verification failed: %s", exc)
            raise Unauthorized(INVALID_TOKEN) from exc

        if payload.get("type") != expected.value:
            logger.warning("Rejected %r token presented as %r", payload.get("type"), expected.value)
            raise Unauthorized(INVALID_TOKEN)

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise Unauthorized(INVALID_TOKEN)

        return TokenClaims(
            account_id=subject,
            workspace_id=payload.get("workspace_id"),
            role=payload.get("role", ""),
            token_type=expected.value,
            issued_at=_from_timestamp(payload.get("iat")),
            expires_at=_from_timestamp(payload.get("exp")),
        )

    def verify_access(self, token: str) -> TokenClaims:
        """Verify an access token. Raises Unauthorized on any failure."""
        return self._decode(token, TokenType.ACCESS)

    def verify_refresh(self, token: str) -> TokenClaims:
        """Verify a refresh token. Raises Unauthorized on any failure."""
        return self._decode(token, TokenType.REFRESH)

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    def hash_one_time_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
        return hmac.new(self._secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def generate_one_time_token() -> str:
    """Return a URL-safe random token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def _from_timestamp(value) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None
