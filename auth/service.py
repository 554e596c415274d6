"""
auth/service.py -- Account lifecycle: registration, login, tokens, recovery.

AccountService owns every state transition of an Account:

  register            -> PENDING_VERIFY (or 409 on a taken email)
  verify_email        PENDING_VERIFY -> ACTIVE
  deactivate          * -> DEACTIVATED
  request_deletion    * -> PENDING_DELETION
  register (again)    PENDING_DELETION -> PENDING_VERIFY, role reset to MEMBER

Security design decisions:
  Uniform login failure: unknown email, OAuth-only account and wrong password
      all raise 401 "Invalid email or password". bcrypt always runs (against
      DUMMY_HASH when there is nothing to verify) so timing does not reveal
      whether the email is registered.

  Status after password: PENDING_VERIFY / DEACTIVATED / PENDING_DELETION are
      reported only after the password checked out, so the status of an
      account is never revealed to someone who does not know its password.

  Lockout: max_failed_logins consecutive failures lock the account for
      lockout_minutes (423). Success resets the counter.

  Recovery tokens: 256-bit random, stored as HMAC hashes (auth/tokens.py),
      single use, 24h for email verification and 1h for password reset.
      Password reset requests always return the same message.

  Password rules: password_issues() is the strict gate on every path that
      sets a password. On top of that, register and reset apply the
      breach-aware policy, and change_password rejects any breached password.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.breach import BreachChecker
from auth.mailer import LoggingMailer
from auth.models import (
    Account,
    AccountState,
    AccountStatus,
    OneTimeToken,
    OneTimeTokenPurpose,
    PolicyDecision,
    Role,
    TokenClaims,
    TokenPair,
    Workspace,
    WorkspaceStatus,
)
from auth.passwords import DUMMY_HASH, hash_password, password_issues, verify_password
from auth.session import NO_WORKSPACE, USER_INACTIVE
from auth.store import CredentialStore, normalize_email
from auth.tokens import TokenService, generate_one_time_token
from auth.workspaces import WORKSPACE_INACTIVE, WorkspaceResolver
from core.errors import BadRequest, Conflict, Forbidden, Locked, NotFound, Unauthorized

logger = logging.getLogger("personahub.auth.service")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

VERIFICATION_TTL = timedelta(hours=24)
RESET_TTL = timedelta(hours=1)

INVALID_CREDENTIALS = "Invalid email or password"
EMAIL_TAKEN = "Email already registered"
ACCOUNT_DEACTIVATED_CONFLICT = "Account is deactivated. Contact support to reactivate."
VERIFY_FIRST = "Please verify your email before logging in"
ACCOUNT_DEACTIVATED = "Account is deactivated"
ACCOUNT_PENDING_DELETION = "Account is pending deletion"
PASSWORD_REQUIREMENTS = "Password does not meet requirements"
INVALID_VERIFICATION = "Invalid or expired verification token"
INVALID_RESET = "Invalid or expired reset token"
RESET_REQUESTED = "If the email exists, a reset link has been sent"
OAUTH_ONLY = "Cannot change password for OAuth-only users"
CURRENT_INCORRECT = "Current password is incorrect"
SAME_PASSWORD = "New password must be different from current password"
COMPROMISED = "This password has been compromised in a data breach. Please choose a different password"
USER_NOT_FOUND = "User not found"
REGISTRATION_DISABLED = "Self-registration is disabled"


@dataclass(frozen=True)
class RegistrationResult:
    account: Account
    workspace: Workspace
    is_new_user: bool
    breach_warning: PolicyDecision | None = None


@dataclass(frozen=True)
class LoginResult:
    account: Account
    workspace: Workspace
    tokens: TokenPair


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AccountService:
    """Registration, login and recovery flows on top of CredentialStore.

    Usage:
        service = AccountService(store, tokens, breach, LoggingMailer(), WorkspaceResolver(store))
        result = service.register("a@acme.com", "S3cure!pass", "Alice")
        login = service.login("a@acme.com", "S3cure!pass")
    """

    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenService,
        breach: BreachChecker,
        mailer: LoggingMailer,
        resolver: WorkspaceResolver,
        *,
        max_failed_logins: int = 5,
        lockout_minutes: int = 15,
        self_registration_enabled: bool = True,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._breach = breach
        self._mailer = mailer
        self._resolver = resolver
        self.max_failed_logins = max_failed_logins
        self.lockout_minutes = lockout_minutes
        self.self_registration_enabled = self_registration_enabled

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> RegistrationResult:
        if not self.self_registration_enabled:
            raise Forbidden(REGISTRATION_DISABLED)

        email = normalize_email(email or "")
        if not _EMAIL_RE.match(email):
            raise BadRequest("Valid email is required")
        name = (name or "").strip()
        if not name:
            raise BadRequest("Name is required")

        decision = self._check_new_password(password)
        warning = decision if decision.warning else None

        existing = self._store.find_account_by_email(email)
        if existing is not None:
            if existing.status == AccountStatus.PENDING_DELETION.value:
                return self._reactivate(existing, password, name, warning)
            if existing.status == AccountStatus.DEACTIVATED.value:
                raise Conflict(ACCOUNT_DEACTIVATED_CONFLICT)
            raise Conflict(EMAIL_TAKEN)

        workspace = self._resolver.resolve(email)
        first = self._store.count_accounts_in_workspace(workspace.id) == 0
        account = Account(
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=Role.ADMIN.value if first else Role.MEMBER.value,
            status=AccountStatus.PENDING_VERIFY.value,
            workspace_id=workspace.id,
        )
        try:
            account.id = self._store.create_account(account)
        except IntegrityError as exc:
            raise Conflict(EMAIL_TAKEN) from exc

        self._send_verification(account)
        logger.info("New account registered: %s (role %s)", account.id, account.role)
        return RegistrationResult(account=account, workspace=workspace, is_new_user=True, breach_warning=warning)

    def _reactivate(self, existing: Account, password: str, name: str, warning) -> RegistrationResult:
        workspace = self._resolver.resolve(existing.email)
        self._store.update_account(
            existing.id,
            name=name,
            password_hash=hash_password(password),
            status=AccountStatus.PENDING_VERIFY.value,
            email_verified=False,
            failed_login_count=0,
            locked_until=None,
            workspace_id=workspace.id,
            role=Role.MEMBER.value,
        )
        account = self._store.find_account_by_id(existing.id)
        self._send_verification(account)
        logger.info("Account reactivated from pending deletion: %s", account.id)
        return RegistrationResult(account=account, workspace=workspace, is_new_user=False, breach_warning=warning)

    def _check_new_password(self, password: str) -> PolicyDecision:
        """Strict complexity gate, then the breach-aware policy."""
        issues = password_issues(password)
        if issues:
            raise BadRequest(PASSWORD_REQUIREMENTS, reasons=issues)
        decision = self._breach.validate_with_policy(password)
        if not decision.is_valid:
            raise BadRequest(decision.reason)
        return decision

    # ------------------------------------------------------------------
    # Login / refresh
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        account = self._store.find_account_by_email(email) if isinstance(email, str) and email.strip() else None

        if account is None or account.password_hash is None:
            verify_password(password or "", DUMMY_HASH)
            logger.warning("Failed login for unknown or password-less account")
            raise Unauthorized(INVALID_CREDENTIALS)

        now = _now()
        if account.locked_until is not None and account.locked_until > now:
            remaining = max(1, math.ceil((account.locked_until - now).total_seconds() / 60))
            raise Locked(self._locked_message(remaining))

        if not verify_password(password or "", account.password_hash):
            self._record_failure(account, now)

        if account.status == AccountStatus.PENDING_VERIFY.value:
            raise Forbidden(VERIFY_FIRST)
        if account.status == AccountStatus.DEACTIVATED.value:
            raise Forbidden(ACCOUNT_DEACTIVATED)
        if account.status == AccountStatus.PENDING_DELETION.value:
            raise Forbidden(ACCOUNT_PENDING_DELETION)

        workspace = self._store.find_workspace_by_id(account.workspace_id) if account.workspace_id else None
        if workspace is None:
            raise Forbidden(NO_WORKSPACE)
        if workspace.status != WorkspaceStatus.ACTIVE.value:
            raise Forbidden(WORKSPACE_INACTIVE)

        self._store.update_account(account.id, failed_login_count=0, locked_until=None, last_login_at=now)
        account.failed_login_count = 0
        account.locked_until = None
        account.last_login_at = now

        tokens = self._tokens.issue_pair(
            TokenClaims(account_id=account.id, workspace_id=account.workspace_id, role=account.role)
        )
        logger.info("Account logged in: %s", account.id)
        return LoginResult(account=account, workspace=workspace, tokens=tokens)

    def _record_failure(self, account: Account, now: datetime) -> None:
        failures = account.failed_login_count + 1
        if failures >= self.max_failed_logins:
            self._store.update_account(
                account.id,
                failed_login_count=failures,
                locked_until=now + timedelta(minutes=self.lockout_minutes),
            )
            logger.warning("Account %s locked after %d failed attempts", account.id, failures)
            raise Locked(self._locked_message(self.lockout_minutes))

        self._store.update_account(account.id, failed_login_count=failures)
        logger.warning("Failed login attempt %d/%d for account %s", failures, self.max_failed_logins, account.id)
        raise Unauthorized(INVALID_CREDENTIALS)

    @staticmethod
    def _locked_message(minutes: int) -> str:
        return (
            "Account is temporarily locked due to too many failed attempts. "
            f"Please try again in {minutes} minutes."
        )

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair, re-reading role and workspace."""
        claims = self._tokens.verify_refresh(refresh_token)
        state = self._active_state(claims.account_id)
        return self._tokens.issue_pair(
            TokenClaims(account_id=state.id, workspace_id=state.workspace_id, role=state.role)
        )

    def _active_state(self, account_id: str) -> AccountState:
        state = self._store.find_account_state(account_id)
        if state is None or state.status != AccountStatus.ACTIVE.value:
            raise Unauthorized(USER_INACTIVE)
        if not state.workspace_id:
            raise Forbidden(NO_WORKSPACE)
        return state

    def get_account(self, account_id: str) -> Account:
        account = self._store.find_account_by_id(account_id)
        if account is None:
            raise NotFound(USER_NOT_FOUND)
        return account

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def _issue_one_time_token(self, account: Account, purpose: OneTimeTokenPurpose, ttl: timedelta) -> str:
        self._store.delete_one_time_tokens(account.id, purpose.value)
        raw = generate_one_time_token()
        self._store.create_one_time_token(
            OneTimeToken(
                account_id=account.id,
                purpose=purpose.value,
                token_hash=self._tokens.hash_one_time_token(raw),
                expires_at=_now() + ttl,
            )
        )
        return raw

    def _send_verification(self, account: Account) -> None:
        raw = self._issue_one_time_token(account, OneTimeTokenPurpose.EMAIL_VERIFICATION, VERIFICATION_TTL)
        self._mailer.send_verification(account, raw)

    def verify_email(self, token: str) -> Account:
        if not token:
            raise BadRequest(INVALID_VERIFICATION)
        record = self._store.consume_one_time_token(
            self._tokens.hash_one_time_token(token), OneTimeTokenPurpose.EMAIL_VERIFICATION.value
        )
        if record is None:
            raise BadRequest(INVALID_VERIFICATION)

        account = self.get_account(record.account_id)
        fields: dict = {"email_verified": True}
        if account.status == AccountStatus.PENDING_VERIFY.value:
            fields["status"] = AccountStatus.ACTIVE.value
        self._store.update_account(account.id, **fields)
        logger.info("Email verified for account %s", account.id)
        return self.get_account(account.id)

    def resend_verification(self, email: str) -> None:
        """Send a fresh verification link if the account is still pending. Silent otherwise."""
        account = self._store.find_account_by_email(email) if email else None
        if account is not None and account.status == AccountStatus.PENDING_VERIFY.value:
            self._send_verification(account)

    # ------------------------------------------------------------------
    # Password reset / change
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str:
        """Mail a reset link when the account exists. The return value never differs."""
        account = self._store.find_account_by_email(email) if email else None
        if account is not None and account.status in (
            AccountStatus.ACTIVE.value,
            AccountStatus.PENDING_VERIFY.value,
        ):
            raw = self._issue_one_time_token(account, OneTimeTokenPurpose.PASSWORD_RESET, RESET_TTL)
            self._mailer.send_password_reset(account, raw)
        return RESET_REQUESTED

    def reset_password(self, token: str, new_password: str) -> None:
        self._check_new_password(new_password)
        if not token:
            raise BadRequest(INVALID_RESET)
        record = self._store.consume_one_time_token(
            self._tokens.hash_one_time_token(token), OneTimeTokenPurpose.PASSWORD_RESET.value
        )
        if record is None:
            raise BadRequest(INVALID_RESET)

        self._store.update_account(
            record.account_id,
            password_hash=hash_password(new_password),
            failed_login_count=0,
            locked_until=None,
        )
        self._store.delete_one_time_tokens(record.account_id, OneTimeTokenPurpose.PASSWORD_RESET.value)
        logger.info("Password reset for account %s", record.account_id)

    def change_password(self, account_id: str, current_password: str, new_password: str) -> None:
        account = self.get_account(account_id)
        if account.is_oauth_only:
            raise BadRequest(OAUTH_ONLY)
        if not verify_password(current_password or "", account.password_hash):
            raise Unauthorized(CURRENT_INCORRECT)
        if current_password == new_password:
            raise BadRequest(SAME_PASSWORD)

        issues = password_issues(new_password)
        if issues:
            raise BadRequest(PASSWORD_REQUIREMENTS, reasons=issues)
        if self._breach.check_breach(new_password).breached:
            raise BadRequest(COMPROMISED)

        self._store.update_account(account.id, password_hash=hash_password(new_password))
        logger.info("Password changed for account %s", account.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def deactivate(self, account_id: str) -> None:
        self.get_account(account_id)
        self._store.update_account(account_id, status=AccountStatus.DEACTIVATED.value)
        logger.info("Account deactivated: %s", account_id)

    def request_deletion(self, account_id: str) -> None:
        self.get_account(account_id)
        self._store.update_account(account_id, status=AccountStatus.PENDING_DELETION.value)
        logger.info("Account deletion requested: %s", account_id)
