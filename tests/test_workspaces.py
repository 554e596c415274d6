"""Unit tests for auth/workspaces.py -- shared vs per-domain tenancy."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Workspace, WorkspaceStatus
from auth.workspaces import WorkspaceResolver, email_domain
from core.errors import Forbidden


def test_email_domain():
    assert email_domain("Alice@Sub.Acme.COM ") == "sub.acme.com"
    assert email_domain("odd@name@acme.com") == "acme.com"


def test_unknown_mode_rejected(store):
    with pytest.raises(ValueError, match="Unknown workspace mode"):
        WorkspaceResolver(store, "per-user")


class TestSharedMode:
    def test_first_signup_creates_workspace(self, store):
        workspace = WorkspaceResolver(store, "shared").resolve("alice@acme.com")
        assert workspace.name == "acme.com Workspace"
        assert workspace.domain == "acme.com"
        assert workspace.status == WorkspaceStatus.ACTIVE.value
        assert store.find_workspace_by_id(workspace.id) is not None

    def test_other_domains_join_the_same_workspace(self, store):
        resolver = WorkspaceResolver(store, "shared")
        first = resolver.resolve("alice@acme.com")
        assert resolver.resolve("carol@globex.com").id == first.id

    def test_inactive_workspace_skipped(self, store):
        resolver = WorkspaceResolver(store, "shared")
        first = resolver.resolve("alice@acme.com")
        store.update_workspace_status(first.id, WorkspaceStatus.INACTIVE.value)
        assert resolver.resolve("carol@globex.com").domain == "globex.com"

    def test_inactive_workspace_owning_the_domain_is_not_joined(self, store):
        resolver = WorkspaceResolver(store, "shared")
        acme = resolver.resolve("alice@acme.com")
        store.update_workspace_status(acme.id, WorkspaceStatus.INACTIVE.value)
        with pytest.raises(Forbidden, match="User workspace is not active"):
            resolver.resolve("bob@acme.com")


class TestDomainMode:
    def test_same_domain_same_workspace(self, store):
        resolver = WorkspaceResolver(store, "domain")
        first = resolver.resolve("alice@acme.com")
        assert resolver.resolve("BOB@ACME.com").id == first.id

    def test_new_domain_new_workspace(self, store):
        resolver = WorkspaceResolver(store, "domain")
        acme = resolver.resolve("alice@acme.com")
        globex = resolver.resolve("carol@globex.com")
        assert acme.id != globex.id
        assert globex.name == "globex.com Workspace"

    def test_inactive_domain_workspace_is_not_joined(self, store):
        resolver = WorkspaceResolver(store, "domain")
        acme = resolver.resolve("alice@acme.com")
        store.update_workspace_status(acme.id, WorkspaceStatus.INACTIVE.value)
        with pytest.raises(Forbidden, match="User workspace is not active"):
            resolver.resolve("bob@acme.com")
        assert resolver.resolve("carol@globex.com").status == WorkspaceStatus.ACTIVE.value

    def test_concurrent_create_falls_back_to_existing(self):
        existing = Workspace(name="acme.com Workspace", domain="acme.com", id="ws-1")
        store = MagicMock()
        store.find_workspace_by_domain.side_effect = [None, existing]
        store.create_workspace.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE"))
        assert WorkspaceResolver(store, "domain").resolve("alice@acme.com") is existing

    def test_integrity_error_without_winner_propagates(self):
        store = MagicMock()
        store.find_workspace_by_domain.return_value = None
        store.create_workspace.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE"))
        with pytest.raises(IntegrityError):
            WorkspaceResolver(store, "domain").resolve("alice@acme.com")
