"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own
domain shape; stores, services and routes do the work.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class AccountStatus(str, Enum):
    PENDING_VERIFY = "PENDING_VERIFY"
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"
    PENDING_DELETION = "PENDING_DELETION"


class WorkspaceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class OneTimeTokenPurpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


@dataclass
class Workspace:
    """Tenant boundary. domain is unique across all workspaces."""

    name: str
    domain: str
    id: str | None = None
    status: str = WorkspaceStatus.ACTIVE.value
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Account:
    """Identity + credential record.

    password_hash is None for OAuth-only accounts and only for them.
    oauth_provider / oauth_id are set when the account originated from an
    OAuth sign-in. email is always stored lower-cased.
    """

    email: str
    name: str
    role: str = Role.MEMBER.value
    status: str = AccountStatus.PENDING_VERIFY.value
    id: str | None = None
    password_hash: str | None = None
    email_verified: bool = False
    workspace_id: str | None = None
    oauth_provider: str | None = None
    oauth_id: str | None = None
    last_login_at: datetime | None = None
    failed_login_count: int = 0
    locked_until: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_oauth_only(self) -> bool:
        return self.password_hash is None


@dataclass(frozen=True)
class AccountState:
    """The slice of an Account needed for authorization decisions.

    Loaded by the session authenticator on every request. Deliberately has no
    password_hash field so credentials never reach request context.
    """

    id: str
    email: str
    name: str
    role: str
    status: str
    workspace_id: str | None


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to a request."""

    id: str
    email: str
    name: str
    role: str
    workspace_id: str


@dataclass(frozen=True)
class TokenClaims:
    """Claims carried by access and refresh tokens.

    issued_at / expires_at are filled in on verification; callers issuing a
    token only supply the identity fields.
    """

    account_id: str
    workspace_id: str | None
    role: str
    token_type: str = TokenType.ACCESS.value
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int = 0


@dataclass
class OneTimeToken:
    """Email verification / password reset token.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token only exists
    in the email link; a leaked database cannot be replayed.
    """

    account_id: str
    purpose: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    used_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class BreachCheckResult:
    """Outcome of a k-anonymity breach lookup. Never persisted."""

    breached: bool
    count: int
    severity: str
    error: str | None = None


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of the breach-aware password policy."""

    is_valid: bool
    reason: str
    severity: str
    count: int | None = None
    warning: bool = False


@dataclass(frozen=True)
class OAuthProfile:
    """Provider profile as received from the OAuth callback.

    emails keeps provider order; the first syntactically valid one wins.
    """

    id: str | None
    display_name: str | None
    emails: list[str] = field(default_factory=list)
    provider: str = "google"
