"""
auth/oauth.py -- Google sign-in: authlib provider registry and account linking.

Two halves:

  Provider registry -- authlib's Starlette OAuth client. Google is registered
      only when both client ID and secret are configured; GET /auth/providers
      lists whatever ended up registered. The OAuth state parameter (CSRF
      protection) is handled by authlib via Starlette SessionMiddleware.

  OAuthLinker -- the decision of *which account* a verified Google profile
      maps to, independent of HTTP:

        validate    profile id, a syntactically valid first email and a
                    non-blank display name. Every violation is collected.
        existing    account with that email must be ACTIVE and its workspace
                    must exist and be ACTIVE.
        new         workspace resolved via WorkspaceResolver; the first ACTIVE
                    account in a workspace becomes ADMIN, later ones MEMBER.
                    Created ACTIVE with email_verified and no password.
        finalize    issue an access/refresh pair from the stored identity.

      Every failure is raised as an ApiError. No callbacks, no None returns.

Security notes:
  Email verification is mandatory. profile_from_userinfo() refuses a userinfo
  payload unless email_verified is true. An unverified address could belong to
  someone who merely typed a victim's email into their provider account.

Layer rule: no imports from api/ or personas/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from auth.models import Account, AccountStatus, OAuthProfile, Role, TokenClaims, TokenPair, Workspace, WorkspaceStatus
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.workspaces import WORKSPACE_INACTIVE, WorkspaceResolver
from core.config import get_settings
from core.errors import ApiError, BadRequest, Forbidden, Internal

logger = logging.getLogger("personahub.auth.oauth")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PROFILE_ID_REQUIRED = "Profile ID is required"
EMAIL_REQUIRED = "Valid email is required"
NAME_REQUIRED = "Display name is required"
ACCOUNT_INACTIVE = "User account is not active"
WORKSPACE_FAILED = "Failed to create user workspace"
TOKENS_FAILED = "Failed to issue tokens"

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


def profile_from_userinfo(userinfo: dict | None, provider: str = "google") -> OAuthProfile:
    """Build an OAuthProfile from an OIDC userinfo payload.

    Raises BadRequest when the payload is missing or the email is unverified.
    Some providers omit email_verified entirely; that counts as unverified.
    """
    if not userinfo:
        raise BadRequest(f"{provider} OAuth: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise BadRequest(f"{provider} OAuth: email is not verified")

    email = userinfo.get("email")
    return OAuthProfile(
        id=userinfo.get("sub"),
        display_name=userinfo.get("name"),
        emails=[email] if email else [],
        provider=provider,
    )


# ---------------------------------------------------------------------------
# Profile validation
# ---------------------------------------------------------------------------


def extract_email(profile: OAuthProfile | None) -> str | None:
    """Return the first email, trimmed and lower-cased, if it looks valid."""
    if profile is None or not profile.emails:
        return None
    first = profile.emails[0]
    if not isinstance(first, str):
        return None
    email = first.strip().lower()
    return email if _EMAIL_RE.match(email) else None


def validate_profile(profile: OAuthProfile | None) -> list[str]:
    """Return every problem with the profile. Empty list means usable."""
    if profile is None:
        return ["Profile is required"]

    issues: list[str] = []
    if not profile.id:
        issues.append(PROFILE_ID_REQUIRED)
    if extract_email(profile) is None:
        issues.append(EMAIL_REQUIRED)
    if not isinstance(profile.display_name, str) or not profile.display_name.strip():
        issues.append(NAME_REQUIRED)
    return issues


# ---------------------------------------------------------------------------
# Linker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OAuthResult:
    account: Account
    workspace: Workspace
    tokens: TokenPair
    is_new_user: bool


class OAuthLinker:
    """Map a verified provider profile onto an account and issue tokens.

    Usage:
        linker = OAuthLinker(store, tokens, WorkspaceResolver(store, "shared"))
        result = linker.link(profile)
    """

    def __init__(self, store: CredentialStore, tokens: TokenService, resolver: WorkspaceResolver) -> None:
        self._store = store
        self._tokens = tokens
        self._resolver = resolver

    def link(self, profile: OAuthProfile) -> OAuthResult:
        issues = validate_profile(profile)
        if issues:
            logger.error("Invalid OAuth profile: %s", issues)
            raise BadRequest(f"Invalid profile data: {', '.join(issues)}", reasons=issues)

        email = extract_email(profile)
        name = profile.display_name.strip()

        try:
            account = self._store.find_account_by_email(email)
            if account is not None:
                workspace = self._check_existing(account)
                is_new = False
            else:
                account, workspace = self._create(profile, email, name)
                is_new = True
        except ApiError:
            raise
        except Exception as exc:
            logger.exception("OAuth linking failed for profile %s", profile.id)
            raise Internal("Authentication failed") from exc

        tokens = self._finalize(account)
        return OAuthResult(account=account, workspace=workspace, tokens=tokens, is_new_user=is_new)

    def _check_existing(self, account: Account) -> Workspace:
        if account.status != AccountStatus.ACTIVE.value:
            logger.warning("Inactive account attempted OAuth login: %s", account.id)
            raise Forbidden(ACCOUNT_INACTIVE)

        workspace = self._store.find_workspace_by_id(account.workspace_id) if account.workspace_id else None
        if workspace is None or workspace.status != WorkspaceStatus.ACTIVE.value:
            logger.warning("Account with inactive workspace attempted OAuth login: %s", account.id)
            raise Forbidden(WORKSPACE_INACTIVE)

        logger.info("Existing account authenticated via OAuth: %s", account.id)
        return workspace

    def _create(self, profile: OAuthProfile, email: str, name: str) -> tuple[Account, Workspace]:
        try:
            workspace = self._resolver.resolve(email)
        except ApiError:
            raise
        except Exception as exc:
            logger.exception("Failed to find or create workspace for new OAuth account")
            raise Internal(WORKSPACE_FAILED) from exc

        active = self._store.count_active_accounts_in_workspace(workspace.id)
        role = Role.ADMIN.value if active == 0 else Role.MEMBER.value

        account = Account(
            email=email,
            name=name,
            role=role,
            status=AccountStatus.ACTIVE.value,
            email_verified=True,
            workspace_id=workspace.id,
            oauth_provider=profile.provider,
            oauth_id=str(profile.id),
        )
        account.id = self._store.create_account(account)
        logger.info("New account %s created via OAuth with role %s", account.id, role)
        return account, workspace

    def _finalize(self, account: Account) -> TokenPair:
        try:
            return self._tokens.issue_pair(
                TokenClaims(account_id=account.id, workspace_id=account.workspace_id, role=account.role)
            )
        except Exception as exc:
            logger.exception("Token issuance failed for account %s", account.id)
            raise Internal(TOKENS_FAILED) from exc
