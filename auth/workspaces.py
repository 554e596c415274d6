"""
auth/workspaces.py -- Pick the workspace a newly created account joins.

Two modes, selected by WORKSPACE_MODE:

  shared  -- single-tenant deployments. Every new account joins the oldest
             ACTIVE workspace. Only the very first sign-up creates one, named
             after that user's email domain.

  domain  -- multi-tenant deployments. The email domain is the tenant key:
             alice@acme.com and bob@acme.com share the "acme.com" workspace,
             carol@globex.com gets her own.

Both OAuth sign-in (auth/oauth.py) and password registration (auth/service.py)
resolve through here so the two paths can never disagree about tenancy.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import Workspace, WorkspaceStatus
from auth.store import CredentialStore
from core.errors import Forbidden

logger = logging.getLogger("personahub.auth.workspaces")

MODES = ("shared", "domain")

WORKSPACE_INACTIVE = "User workspace is not active"


def email_domain(email: str) -> str:
    """Return the lower-cased part after the last '@'."""
    return email.rsplit("@", 1)[-1].strip().lower()


class WorkspaceResolver:
    """Find or create the workspace for a new account.

    A workspace that exists but is not ACTIVE is never joined: resolve() raises
    Forbidden(WORKSPACE_INACTIVE), the same refusal an existing member of that
    workspace gets at login. Store errors propagate unchanged.
    """

    def __init__(self, store: CredentialStore, mode: str = "shared") -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown workspace mode {mode!r}; expected one of {MODES}")
        self._store = store
        self.mode = mode

    def resolve(self, email: str) -> Workspace:
        domain = email_domain(email)
        if self.mode == "shared":
            existing = self._store.find_oldest_active_workspace()
        else:
            existing = self._store.find_workspace_by_domain(domain)
        workspace = existing if existing is not None else self._create(domain)
        if workspace.status != WorkspaceStatus.ACTIVE.value:
            logger.warning("Refusing to place %s in inactive workspace %s", domain, workspace.id)
            raise Forbidden(WORKSPACE_INACTIVE)
        return workspace

    def _create(self, domain: str) -> Workspace:
        workspace = Workspace(name=f"{domain} Workspace", domain=domain, status=WorkspaceStatus.ACTIVE.value)
        try:
            workspace.id = self._store.create_workspace(workspace)
        except IntegrityError:
            # Another request created the same domain first; use theirs.
            existing = self._store.find_workspace_by_domain(domain)
            if existing is None:
                raise
            return existing
        logger.info("Created workspace %s for domain %s", workspace.id, domain)
        return self._store.find_workspace_by_id(workspace.id) or workspace
