"""
api/main.py -- The PersonaHub ASGI application.

Serve with:    uvicorn asgi:app --reload

A request passes through these layers, outermost first:
  log_requests          one INFO line per request with status and latency
  TrustedHostMiddleware 400 for a Host header outside ALLOWED_HOSTS
  CORSMiddleware        browser origins from CORS_ORIGINS
  SlowAPIMiddleware     hands the shared limiter to decorated routes
  SessionMiddleware     signed cookie holding authlib's OAuth state

Starlette treats the most recently added middleware as the outermost, so
the add_middleware() calls below run in reverse of that list.

build_components() assembles the object graph (stores, TokenService,
BreachChecker, WebhookClient, authenticator, services) and parks it on
app.state. Routes and dependencies only ever read from app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.personas import router as personas_router
from api.routes.v1.users import router as users_router
from auth.breach import BreachChecker
from auth.mailer import LoggingMailer
from auth.oauth import OAuthLinker
from auth.oauth import oauth as oauth_client
from auth.service import AccountService
from auth.session import SessionAuthenticator
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.workspaces import WorkspaceResolver
from core.config import get_settings
from core.errors import ApiError
from personas.service import PersonaService
from personas.store import PersonaStore
from personas.webhook import BreakerRegistry, WebhookClient

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("personahub.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(
    app: FastAPI,
    credential_store: CredentialStore,
    persona_store: PersonaStore,
    settings=None,
    *,
    breach: BreachChecker | None = None,
    mailer: LoggingMailer | None = None,
    webhooks: WebhookClient | None = None,
) -> None:
    """Construct services around the given stores and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the
    object graph the same way. Tests pass their own breach checker, mailer
    and webhook client.
    """
    settings = settings or get_settings()
    tokens = TokenService.from_settings(settings)
    breach = breach or BreachChecker.from_settings(settings)
    mailer = mailer or LoggingMailer(settings.app_base_url)
    resolver = WorkspaceResolver(credential_store, settings.workspace_mode)

    app.state.credential_store = credential_store
    app.state.persona_store = persona_store
    app.state.tokens = tokens
    app.state.breach = breach
    app.state.authenticator = SessionAuthenticator(credential_store, tokens)
    app.state.oauth = oauth_client
    app.state.oauth_linker = OAuthLinker(credential_store, tokens, resolver)
    app.state.account_service = AccountService(
        credential_store,
        tokens,
        breach,
        mailer,
        resolver,
        max_failed_logins=settings.max_failed_logins,
        lockout_minutes=settings.lockout_minutes,
        self_registration_enabled=settings.self_registration_enabled,
    )
    app.state.persona_service = PersonaService(
        persona_store,
        settings.encryption_key,
        webhooks or WebhookClient.from_settings(settings),
        BreakerRegistry(settings.webhook_failure_threshold, settings.webhook_reset_seconds),
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores on startup and release every pooled resource on shutdown."""
    settings = get_settings()
    logger.info("PersonaHub API starting up")
    build_components(app, CredentialStore(settings.database_url), PersonaStore(settings.persona_database_url), settings)
    logger.info("Auth initialized (workspace_mode=%s)", settings.workspace_mode)

    yield

    app.state.breach.close()
    app.state.persona_service.close()
    app.state.persona_store.close()
    app.state.credential_store.close()
    logger.info("PersonaHub API shutdown complete")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="PersonaHub API",
    description="Multi-tenant accounts, workspaces and AI personas.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware (innermost first)
# ---------------------------------------------------------------------------

app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key)

app.add_middleware(SlowAPIMiddleware)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Access log
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(personas_router, prefix="/api/v1", tags=["Personas"])


# ---------------------------------------------------------------------------
# Error envelope
#
# Every failure leaves the API as {"error": {"code", "message", ...}}, so a
# client needs one parser no matter which layer rejected the request.
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    *,
    detail: str | None = None,
    reasons: list[str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail, reasons=reasons or None))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Domain errors raised by auth/ and personas/."""
    if exc.status_code >= 500:
        logger.error("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return _error_response(exc.status_code, exc.code, exc.message, reasons=exc.reasons)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s %s: %s", request.method, request.url.path, exc.detail)
    response = _error_response(429, "rate_limited", "Too many requests.", detail=str(exc.detail))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body or query failed the pydantic contract in api/models.py (422)."""
    return _error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework-level errors: unknown route, wrong method and the like."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything not mapped above. Logged in full here, opaque to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health (unauthenticated, never rate limited)
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    components = {"app": "ok"}
    try:
        request.app.state.credential_store.ping()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
