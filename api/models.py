"""
API request and response models for PersonaHub REST endpoints.

Pydantic v2 shapes for everything that crosses the HTTP boundary. They are
kept apart from the domain dataclasses in auth/models.py and
personas/models.py; route handlers map between the two.

Nothing here ever carries a password hash or a decrypted webhook URL except
WebhookResponse, which exists for exactly that purpose.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Account, PolicyDecision, TokenPair, Workspace
from personas.models import MessageReply, Persona

# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Only size limits are enforced here. Email syntax and the password rules
    are checked by AccountService so every entry point shares one rule set.
    Email and name are trimmed; the password is taken byte for byte, exactly as
    login, reset and change-password receive it.
    """

    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=320)]
    password: str = Field(min_length=1, max_length=1024)
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class EmailRequest(BaseModel):
    """Body for resend-verification and password-reset/request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)


class PasswordResetConfirm(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1, max_length=1024)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=1024)
    new_password: str = Field(min_length=1, max_length=1024)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. No password hash, no lockout counters."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    status: str
    email_verified: bool
    workspace_id: Optional[str]
    oauth_provider: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            name=account.name,
            role=account.role,
            status=account.status,
            email_verified=account.email_verified,
            workspace_id=account.workspace_id,
            oauth_provider=account.oauth_provider,
        )


class WorkspaceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    domain: str
    status: str

    @classmethod
    def from_workspace(cls, workspace: Workspace) -> "WorkspaceResponse":
        return cls(id=workspace.id, name=workspace.name, domain=workspace.domain, status=workspace.status)


class BreachWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    severity: str
    count: Optional[int] = None

    @classmethod
    def from_decision(cls, decision: Optional[PolicyDecision]) -> Optional["BreachWarning"]:
        if decision is None:
            return None
        return cls(message=decision.reason, severity=decision.severity, count=decision.count)


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    workspace: WorkspaceResponse
    is_new_user: bool
    message: str = "Registration successful. Please check your email to verify your account."
    breach_warning: Optional[BreachWarning] = None


class TokenResponse(BaseModel):
    """Access + refresh token pair."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class LoginResponse(TokenResponse):
    account: AccountResponse
    workspace: WorkspaceResponse


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the request principal."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    workspace_id: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    """One entry in GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Personas
# ---------------------------------------------------------------------------


class PersonaCreate(BaseModel):
    """Request body for POST /api/v1/personas."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    webhook_url: str = Field(min_length=1, max_length=2048)
    description: Optional[str] = Field(default=None, max_length=2000)


class WebhookUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    webhook_url: str = Field(min_length=1, max_length=2048)


class PersonaResponse(BaseModel):
    """Persona without its webhook URL (encrypted or otherwise)."""

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    name: str
    slug: str
    description: Optional[str]
    is_active: bool
    created_by: str
    created_at: str

    @classmethod
    def from_persona(cls, persona: Persona) -> "PersonaResponse":
        return cls(
            id=persona.id,
            workspace_id=persona.workspace_id,
            name=persona.name,
            slug=persona.slug,
            description=persona.description,
            is_active=persona.is_active,
            created_by=persona.created_by,
            created_at=persona.created_at,
        )


class WebhookResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    persona_id: str
    webhook_url: str


class ChatRequest(BaseModel):
    """Body for POST /api/v1/personas/{id}/chat.

    Trimming and the 10000 character limit are applied by PersonaService.
    """

    message: str = Field(min_length=1, max_length=100_000)
    conversation_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    persona_id: str
    conversation_id: str
    reply: str

    @classmethod
    def from_reply(cls, reply: MessageReply) -> "ChatResponse":
        return cls(persona_id=reply.persona_id, conversation_id=reply.conversation_id, reply=reply.reply)


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """code is stable for clients to branch on; message is for humans."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    reasons: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
