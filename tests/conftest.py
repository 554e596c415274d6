"""
tests/conftest.py -- Shared test fixtures for PersonaHub.

This module provides:
  - store / persona_store: isolated in-memory SQLite repositories
  - tokens: a TokenService with a fixed test secret
  - make_breach_checker(): BreachChecker whose HTTP session is a MagicMock
  - make_webhook_client(): WebhookClient on a MagicMock session, no real sleeps
  - RecordingMailer: keeps the raw one-time tokens it was asked to send
  - account_factory: creates accounts directly in the store
  - api: TestClient on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY and ENCRYPTION_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_components
from auth.breach import BreachChecker
from auth.mailer import LoggingMailer
from auth.models import Account, AccountStatus, Role, TokenClaims, Workspace
from auth.passwords import hash_password
from auth.store import CredentialStore
from auth.tokens import TokenService
from personas.store import PersonaStore
from personas.webhook import WebhookClient

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
TEST_PASSWORD = "Str0ng!Passw0rd"
TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"

# Password hashing dominates test runtime; hash the shared password once.
_TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_breach_checker(body: str = "", exc: Exception | None = None) -> tuple[BreachChecker, MagicMock]:
    """Return a BreachChecker whose requests.Session is mocked.

    body is the range-API response text; exc, if given, is raised by get().
    """
    session = MagicMock()
    if exc is not None:
        session.get.side_effect = exc
    else:
        response = MagicMock()
        response.text = body
        response.raise_for_status.return_value = None
        session.get.return_value = response
    return BreachChecker(api_url="https://breach.test/range/", session=session), session


def make_webhook_client(body=None, exc: Exception | None = None, retries: int = 2) -> tuple[WebhookClient, MagicMock]:
    """Return a WebhookClient whose requests.Session is mocked.

    body is what response.json() yields; exc, if given, is raised by post().
    Backoff pauses are recorded on session.sleeps instead of slept.
    """
    session = MagicMock()
    session.sleeps = []
    if exc is not None:
        session.post.side_effect = exc
    else:
        response = MagicMock()
        response.json.return_value = body if body is not None else {"reply": "Hello from the persona"}
        response.raise_for_status.return_value = None
        session.post.return_value = response
    client = WebhookClient(retries=retries, retry_delay=0.5, session=session, sleep=session.sleeps.append)
    return client, session


class RecordingMailer(LoggingMailer):
    """LoggingMailer that also remembers the raw tokens, newest last."""

    def __init__(self) -> None:
        super().__init__("http://testserver")
        self.verifications: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []

    def send_verification(self, account, token):
        super().send_verification(account, token)
        self.verifications.append((account.id, token))

    def send_password_reset(self, account, token):
        super().send_password_reset(account, token)
        self.resets.append((account.id, token))


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore(db_url=_memory_url("test_auth"))
    yield s
    s.close()


@pytest.fixture
def persona_store() -> Generator[PersonaStore, None, None]:
    s = PersonaStore(db_url=_memory_url("test_personas"))
    yield s
    s.close()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(TEST_SECRET, access_ttl=3600, refresh_ttl=7 * 24 * 3600)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def workspace(store: CredentialStore) -> Workspace:
    ws_id = store.create_workspace(Workspace(name="acme.com Workspace", domain="acme.com"))
    return store.find_workspace_by_id(ws_id)


@pytest.fixture
def account_factory(store: CredentialStore, workspace: Workspace):
    """Create accounts directly in the store (bypassing registration)."""

    def create(
        email: str,
        role: str = Role.MEMBER.value,
        status: str = AccountStatus.ACTIVE.value,
        password: str | None = TEST_PASSWORD,
        workspace_id: str | None = "default",
        **extra,
    ) -> Account:
        if password is None:
            password_hash = None
        elif password == TEST_PASSWORD:
            password_hash = _TEST_PASSWORD_HASH
        else:
            password_hash = hash_password(password)
        account = Account(
            email=email,
            name=email.split("@")[0].title(),
            role=role,
            status=status,
            password_hash=password_hash,
            email_verified=status == AccountStatus.ACTIVE.value,
            workspace_id=workspace.id if workspace_id == "default" else workspace_id,
            **extra,
        )
        account_id = store.create_account(account)
        return store.find_account_by_id(account_id)

    return create


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    store: CredentialStore
    persona_store: PersonaStore
    mailer: RecordingMailer
    breach_session: MagicMock
    webhook_session: MagicMock

    @property
    def tokens(self) -> TokenService:
        return self.client.app.state.tokens

    def bearer(self, account: Account) -> dict:
        token = self.tokens.issue_access(
            TokenClaims(account_id=account.id, workspace_id=account.workspace_id, role=account.role)
        )
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(credential_store, persona_store, mailer, breach, webhooks):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores, mocked breach and webhook clients and a recording
    mailer into app.state through the same build_components() the real
    lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_components(app, credential_store, persona_store, breach=breach, mailer=mailer, webhooks=webhooks)
        yield

    return test_lifespan


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Every test starts with empty slowapi counters (TestClient shares one IP)."""
    limiter.reset()
    yield


@pytest.fixture
def api(store: CredentialStore, persona_store: PersonaStore) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext around a TestClient on the real app.

    Route handlers are real; stores are isolated in-memory DBs and the breach
    API is never contacted (every lookup reports "not breached"). Persona
    webhooks answer through api.webhook_session, which tests may reconfigure.
    """
    mailer = RecordingMailer()
    breach, session = make_breach_checker("")
    webhooks, webhook_session = make_webhook_client()
    app.router.lifespan_context = _patch_lifespan(store, persona_store, mailer, breach, webhooks)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            store=store,
            persona_store=persona_store,
            mailer=mailer,
            breach_session=session,
            webhook_session=webhook_session,
        )


@pytest.fixture
def breach_factory():
    """Expose make_breach_checker() to test modules as a fixture."""
    return make_breach_checker


@pytest.fixture
def webhook_factory():
    """Expose make_webhook_client() to test modules as a fixture."""
    return make_webhook_client
