"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and workspaces.

CredentialStore owns every statement against the accounts, workspaces and
one-time token tables; the _row_to_* functions turn result rows into domain
dataclasses. Services, the session authenticator and the OAuth linker never
touch SQL directly.

A CredentialStore is constructed explicitly (api/main.py lifespan, or a test
fixture) and passed into every component that needs it. There is no
module-level client.

Query hygiene:
  Values always travel as bound parameters, never through string formatting.

  find_account_state() selects only the columns needed for authorization.
  password_hash never leaves the store on the per-request path.

  Emails are lower-cased on every write and every lookup, so the UNIQUE
  constraint on accounts.email is effectively case-insensitive.

Timestamps are stored as ISO 8601 UTC strings (same approach for every table)
and returned as timezone-aware datetimes.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account, AccountState, AccountStatus, OneTimeToken, Workspace, WorkspaceStatus

_DEFAULT_DB_URL = "sqlite:///personahub_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_workspaces = Table(
    "workspaces",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("domain", String(255), nullable=False, unique=True),
    Column("status", String(20), nullable=False, server_default="ACTIVE"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for OAuth-only accounts
    Column("name", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default="MEMBER"),
    Column("status", String(20), nullable=False, server_default="PENDING_VERIFY"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("workspace_id", String(32)),
    Column("oauth_provider", String(30)),
    Column("oauth_id", Text),
    Column("last_login_at", String(32)),
    Column("failed_login_count", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_one_time_tokens = Table(
    "one_time_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("account_id", String(32), nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# Columns the session authenticator is allowed to load.
_STATE_COLUMNS = (
    _accounts.c.id,
    _accounts.c.email,
    _accounts.c.name,
    _accounts.c.role,
    _accounts.c.status,
    _accounts.c.workspace_id,
)


# ---------------------------------------------------------------------------
# SQLite journal
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Switch each new SQLite connection to WAL; the pragma is per connection."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _new_id() -> str:
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Account, Workspace and OneTimeToken entities.

    Example:
        store = CredentialStore("sqlite:///:memory:")
        ws_id = store.create_workspace(Workspace(name="acme.com Workspace", domain="acme.com"))
        account_id = store.create_account(Account(email="a@acme.com", name="A", workspace_id=ws_id))
        store.close()
    """

    # Fields update_account() accepts. Anything else raises ValueError so a
    # typo can never silently become a no-op.
    _UPDATABLE_FIELDS: frozenset = frozenset(
        {
            "email",
            "password_hash",
            "name",
            "role",
            "status",
            "email_verified",
            "workspace_id",
            "oauth_provider",
            "oauth_id",
            "last_login_at",
            "failed_login_count",
            "locked_until",
        }
    )

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def find_account_by_id(self, account_id: str) -> Account | None:
        """Full account record, including password_hash. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_account_state(self, account_id: str) -> AccountState | None:
        """Authorization projection only (id, email, name, role, status, workspace_id)."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_STATE_COLUMNS).where(_accounts.c.id == account_id)).fetchone()
        if row is None:
            return None
        return AccountState(
            id=row.id,
            email=row.email,
            name=row.name,
            role=row.role,
            status=row.status,
            workspace_id=row.workspace_id,
        )

    def find_account_by_email(self, email: str) -> Account | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def create_account(self, account: Account) -> str:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email is already registered.
        """
        account_id = account.id or _new_id()
        now = _iso(_now())
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=normalize_email(account.email),
                    password_hash=account.password_hash,
                    name=account.name,
                    role=account.role,
                    status=account.status,
                    email_verified=1 if account.email_verified else 0,
                    workspace_id=account.workspace_id,
                    oauth_provider=account.oauth_provider,
                    oauth_id=account.oauth_id,
                    last_login_at=_iso(account.last_login_at),
                    failed_login_count=account.failed_login_count,
                    locked_until=_iso(account.locked_until),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return account_id

    def update_account(self, account_id: str, **fields) -> bool:
        """Update mutable fields on an existing account.

        datetime values are stored as ISO strings and email_verified as 0/1.
        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if not fields:
            return False

        values: dict = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = _iso(value)
            elif key == "email_verified":
                value = 1 if value else 0
            elif key == "email" and value is not None:
                value = normalize_email(value)
            values[key] = value
        values["updated_at"] = _iso(_now())

        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def count_active_accounts_in_workspace(self, workspace_id: str) -> int:
        """Number of ACTIVE accounts in the workspace (bootstrap admin rule)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_accounts)
                .where(
                    (_accounts.c.workspace_id == workspace_id)
                    & (_accounts.c.status == AccountStatus.ACTIVE.value)
                )
            ).scalar()
        return result or 0

    def count_accounts_in_workspace(self, workspace_id: str) -> int:
        """Number of accounts in the workspace regardless of status."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_accounts).where(_accounts.c.workspace_id == workspace_id)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Workspace queries
    # ------------------------------------------------------------------

    def find_workspace_by_id(self, workspace_id: str) -> Workspace | None:
        with self.engine.connect() as conn:
            row = conn.execute(_workspaces.select().where(_workspaces.c.id == workspace_id)).fetchone()
        return _row_to_workspace(row) if row is not None else None

    def find_workspace_by_domain(self, domain: str) -> Workspace | None:
        with self.engine.connect() as conn:
            row = conn.execute(_workspaces.select().where(_workspaces.c.domain == domain.lower())).fetchone()
        return _row_to_workspace(row) if row is not None else None

    def find_oldest_active_workspace(self) -> Workspace | None:
        """The first ACTIVE workspace by creation order (stable "default workspace")."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _workspaces.select()
                .where(_workspaces.c.status == WorkspaceStatus.ACTIVE.value)
                .order_by(_workspaces.c.created_at.asc(), _workspaces.c.id.asc())
                .limit(1)
            ).fetchone()
        return _row_to_workspace(row) if row is not None else None

    def create_workspace(self, workspace: Workspace) -> str:
        """Insert a new workspace and return its id.

        Raises sqlalchemy.exc.IntegrityError if the domain is taken.
        """
        workspace_id = workspace.id or _new_id()
        now = _iso(_now())
        with self.engine.connect() as conn:
            conn.execute(
                _workspaces.insert().values(
                    id=workspace_id,
                    name=workspace.name,
                    domain=workspace.domain.lower(),
                    status=workspace.status,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return workspace_id

    def update_workspace_status(self, workspace_id: str, status: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _workspaces.update()
                .where(_workspaces.c.id == workspace_id)
                .values(status=status, updated_at=_iso(_now()))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # One-time tokens (email verification, password reset)
    # ------------------------------------------------------------------

    def create_one_time_token(self, token: OneTimeToken) -> str:
        token_id = token.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _one_time_tokens.insert().values(
                    id=token_id,
                    account_id=token.account_id,
                    purpose=token.purpose,
                    token_hash=token.token_hash,
                    expires_at=_iso(token.expires_at),
                    created_at=_iso(_now()),
                )
            )
            conn.commit()
        return token_id

    def consume_one_time_token(self, token_hash: str, purpose: str) -> OneTimeToken | None:
        """Mark a token used and return it, or None if unknown, used, or expired.

        The UPDATE is conditional on used_at IS NULL so two concurrent requests
        cannot both consume the same token.
        """
        now = _now()
        with self.engine.connect() as conn:
            row = conn.execute(
                _one_time_tokens.select().where(
                    (_one_time_tokens.c.token_hash == token_hash) & (_one_time_tokens.c.purpose == purpose)
                )
            ).fetchone()
            if row is None or row.used_at is not None or _parse(row.expires_at) < now:
                return None
            result = conn.execute(
                _one_time_tokens.update()
                .where((_one_time_tokens.c.id == row.id) & (_one_time_tokens.c.used_at.is_(None)))
                .values(used_at=_iso(now))
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        token = _row_to_token(row)
        token.used_at = now
        return token

    def delete_one_time_tokens(self, account_id: str, purpose: str) -> int:
        """Invalidate every outstanding token of this purpose for the account."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _one_time_tokens.delete().where(
                    (_one_time_tokens.c.account_id == account_id) & (_one_time_tokens.c.purpose == purpose)
                )
            )
            conn.commit()
        return result.rowcount

    def ping(self) -> bool:
        """Cheap connectivity check used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row -> dataclass
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        role=row.role,
        status=row.status,
        email_verified=bool(row.email_verified),
        workspace_id=row.workspace_id,
        oauth_provider=row.oauth_provider,
        oauth_id=row.oauth_id,
        last_login_at=_parse(row.last_login_at),
        failed_login_count=row.failed_login_count or 0,
        locked_until=_parse(row.locked_until),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_workspace(row) -> Workspace:
    return Workspace(
        id=row.id,
        name=row.name,
        domain=row.domain,
        status=row.status,
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_token(row) -> OneTimeToken:
    return OneTimeToken(
        id=row.id,
        account_id=row.account_id,
        purpose=row.purpose,
        token_hash=row.token_hash,
        expires_at=_parse(row.expires_at),
        used_at=_parse(row.used_at),
        created_at=_parse(row.created_at),
    )
