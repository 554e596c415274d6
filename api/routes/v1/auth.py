"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create account (PENDING_VERIFY), mail verification link
  POST /api/v1/auth/login                   -- password login; returns access + refresh tokens
  POST /api/v1/auth/refresh                 -- exchange refresh token for a new pair
  POST /api/v1/auth/logout                  -- always succeeds; tokens are stateless
  GET  /api/v1/auth/me                      -- current principal (requires auth)
  GET  /api/v1/auth/verify-email            -- consume verification token (?token=)
  POST /api/v1/auth/resend-verification     -- new verification link (uniform response)
  POST /api/v1/auth/password-reset/request  -- mail reset link (uniform response)
  POST /api/v1/auth/password-reset/confirm  -- set new password with reset token
  POST /api/v1/auth/change-password         -- requires auth + update_self
  POST /api/v1/auth/deactivate              -- requires auth + update_self
  POST /api/v1/auth/delete-account          -- requires auth + update_self
  GET  /api/v1/auth/providers               -- list enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/google            -- redirect to Google
  GET  /api/v1/auth/oauth/google/callback   -- link account, redirect to the frontend with tokens

Security:
  POST /login, /register and /password-reset/* are rate-limited per IP.
  Login, refresh and token-bearing responses carry Cache-Control: no-store.
  Domain failures are raised as core.errors.ApiError and rendered by api/main.py.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    BreachWarning,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OAuthProviderInfo,
    PasswordResetConfirm,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    WorkspaceResponse,
)
from auth.access import UPDATE_SELF
from auth.dependencies import get_current_principal, require_permission
from auth.models import Principal
from auth.oauth import OAuthLinker, get_enabled_providers, profile_from_userinfo
from auth.service import AccountService
from core.config import get_settings
from core.errors import ApiError, NotFound

logger = logging.getLogger("personahub.api.auth")

_settings = get_settings()

# Auth policy:
# - register, login, refresh, logout, verify-email, resend-verification,
#   password-reset/*, providers, oauth/*: public
# - me: requires auth (get_current_principal)
# - change-password, deactivate, delete-account: requires update_self permission
router = APIRouter()


def _service(request: Request) -> AccountService:
    return request.app.state.account_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Register with email and password.

    The account starts PENDING_VERIFY and cannot log in until the emailed
    link is followed. A breached-but-strong password is accepted and the
    warning is returned in breach_warning.
    """
    result = _service(request).register(body.email, body.password, body.name)
    return RegisterResponse(
        account=AccountResponse.from_account(result.account),
        workspace=WorkspaceResponse.from_workspace(result.workspace),
        is_new_user=result.is_new_user,
        breach_warning=BreachWarning.from_decision(result.breach_warning),
    )


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password; return an access + refresh pair.

    Unknown email and wrong password return the same 401.
    """
    result = _service(request).login(body.email, body.password)
    _no_store(response)
    return LoginResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        token_type=result.tokens.token_type,
        expires_in=result.tokens.expires_in,
        account=AccountResponse.from_account(result.account),
        workspace=WorkspaceResponse.from_workspace(result.workspace),
    )


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenResponse:
    pair = _service(request).refresh(body.refresh_token)
    _no_store(response)
    return TokenResponse.from_pair(pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> MessageResponse:
    """Tokens are stateless; the client discards them. Always succeeds."""
    return MessageResponse(message="Logout successful")


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return identity information for the authenticated principal."""
    return MeResponse(
        id=principal.id,
        email=principal.email,
        name=principal.name,
        role=principal.role,
        workspace_id=principal.workspace_id,
    )


# ---------------------------------------------------------------------------
# Email verification and password recovery
# ---------------------------------------------------------------------------


@router.get("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, token: str = "") -> MessageResponse:
    _service(request).verify_email(token)
    return MessageResponse(message="Email verified successfully")


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    _service(request).resend_verification(body.email)
    return MessageResponse(message="If the account exists and is pending verification, a new link has been sent")


@router.post("/auth/password-reset/request", response_model=MessageResponse)
@limiter.limit(_settings.password_reset_rate_limit)
def request_password_reset(request: Request, body: EmailRequest) -> MessageResponse:
    """Same response whether or not the email is registered."""
    return MessageResponse(message=_service(request).request_password_reset(body.email))


@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
@limiter.limit(_settings.password_reset_rate_limit)
def confirm_password_reset(request: Request, body: PasswordResetConfirm) -> MessageResponse:
    _service(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset")


# ---------------------------------------------------------------------------
# Self-service (authenticated)
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(require_permission(UPDATE_SELF)),
) -> MessageResponse:
    _service(request).change_password(principal.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post("/auth/deactivate", response_model=MessageResponse)
def deactivate(request: Request, principal: Principal = Depends(require_permission(UPDATE_SELF))) -> MessageResponse:
    _service(request).deactivate(principal.id)
    return MessageResponse(message="Account deactivated")


@router.post("/auth/delete-account", response_model=MessageResponse)
def delete_account(
    request: Request, principal: Principal = Depends(require_permission(UPDATE_SELF))
) -> MessageResponse:
    _service(request).request_deletion(principal.id)
    return MessageResponse(message="Account deletion requested")


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when no OAuth env vars are set."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


def _google_client(request: Request):
    enabled = {p["name"] for p in get_enabled_providers()}
    if "google" not in enabled:
        raise NotFound("OAuth provider not configured")
    return request.app.state.oauth.create_client("google")


def _frontend_redirect(path: str, params: dict) -> RedirectResponse:
    base = get_settings().app_base_url.rstrip("/")
    resp = RedirectResponse(f"{base}{path}?{urlencode(params)}", status_code=302)
    _no_store(resp)
    return resp


@router.get("/auth/oauth/google")
async def google_login(request: Request):
    """Redirect the browser to Google. authlib stores the state in the session."""
    client = _google_client(request)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Exchange the code, link the profile to an account and hand tokens to the frontend.

    Any failure redirects to the frontend login page with an error code
    instead of rendering JSON, since this endpoint is hit by a browser.
    """
    client = _google_client(request)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Google token exchange failed")
        return _frontend_redirect("/login", {"error": "oauth_failed"})

    linker: OAuthLinker = request.app.state.oauth_linker
    try:
        profile = profile_from_userinfo(token.get("userinfo"), provider="google")
        result = linker.link(profile)
    except ApiError as exc:
        logger.warning("Google sign-in rejected: %s", exc.message)
        return _frontend_redirect("/login", {"error": exc.code})

    return _frontend_redirect(
        "/oauth-callback",
        {
            "token": result.tokens.access_token,
            "refreshToken": result.tokens.refresh_token,
            "workspaceId": result.workspace.id,
            "workspaceName": result.workspace.name,
        },
    )
