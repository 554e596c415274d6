"""
personas/store.py -- SQLAlchemy Core persistence for personas.

Same shape as auth/store.py: a repository class constructed with a DB URL,
one short-lived connection per call, and a row mapper. Every query is scoped
by workspace_id so one tenant can never read another tenant's persona, even
with a guessed id.

The store never sees plaintext webhook URLs; it persists whatever encrypted
blob the service hands it.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine

from personas.models import Persona

_DEFAULT_DB_URL = "sqlite:///personahub_personas.db"

_metadata = MetaData()

_personas = Table(
    "personas",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("workspace_id", String(32), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False),
    Column("description", Text),
    Column("webhook_url_encrypted", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_by", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("workspace_id", "slug", name="uq_personas_workspace_slug"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PersonaStore:
    """Repository for Persona records."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create(self, persona: Persona) -> str:
        """Insert a persona and return its id.

        Raises sqlalchemy.exc.IntegrityError if the slug is taken in the workspace.
        """
        persona_id = persona.id or uuid.uuid4().hex
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _personas.insert().values(
                    id=persona_id,
                    workspace_id=persona.workspace_id,
                    name=persona.name,
                    slug=persona.slug,
                    description=persona.description,
                    webhook_url_encrypted=persona.webhook_url_encrypted,
                    is_active=persona.is_active,
                    created_by=persona.created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return persona_id

    def get(self, workspace_id: str, persona_id: str) -> Optional[Persona]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _personas.select().where(
                    (_personas.c.id == persona_id) & (_personas.c.workspace_id == workspace_id)
                )
            ).fetchone()
        return _row_to_persona(row) if row is not None else None

    def list_for_workspace(self, workspace_id: str, include_inactive: bool = False) -> list[Persona]:
        query = _personas.select().where(_personas.c.workspace_id == workspace_id)
        if not include_inactive:
            query = query.where(_personas.c.is_active.is_(True))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_personas.c.name.asc())).fetchall()
        return [_row_to_persona(r) for r in rows]

    def update(self, workspace_id: str, persona_id: str, **fields) -> bool:
        """Update webhook_url_encrypted / is_active / name / description. Returns False if not found."""
        allowed = {"webhook_url_encrypted", "is_active", "name", "description"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown persona fields: {sorted(unknown)!r}")
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _personas.update()
                .where((_personas.c.id == persona_id) & (_personas.c.workspace_id == workspace_id))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_persona(row) -> Persona:
    return Persona(
        id=row.id,
        workspace_id=row.workspace_id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        webhook_url_encrypted=row.webhook_url_encrypted,
        is_active=bool(row.is_active),
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
