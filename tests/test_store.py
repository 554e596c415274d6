"""
tests/test_store.py -- CredentialStore CRUD against an in-memory SQLite DB.

Covers:
  - Accounts: create/find, case-insensitive email, duplicate rejection,
    update_account field whitelist and type conversion
  - find_account_state never exposes the password hash
  - Workspaces: oldest active, domain lookup, active-account counting
  - One-time tokens: single use, expiry, purpose scoping, bulk delete
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account, AccountStatus, OneTimeToken, Workspace, WorkspaceStatus


class TestAccounts:
    def test_create_and_find(self, store, workspace):
        account_id = store.create_account(Account(email="Alice@Acme.com", name="Alice", workspace_id=workspace.id))
        account = store.find_account_by_id(account_id)
        assert account.email == "alice@acme.com"
        assert account.status == AccountStatus.PENDING_VERIFY.value
        assert account.created_at is not None and account.created_at.tzinfo is not None

    def test_email_lookup_is_case_insensitive(self, store, account_factory):
        created = account_factory("bob@acme.com")
        assert store.find_account_by_email("  BOB@acme.COM ").id == created.id

    def test_duplicate_email_rejected(self, store, account_factory):
        account_factory("dup@acme.com")
        with pytest.raises(IntegrityError):
            store.create_account(Account(email="DUP@acme.com", name="Dup"))

    def test_missing_returns_none(self, store):
        assert store.find_account_by_id("nope") is None
        assert store.find_account_by_email("nobody@acme.com") is None
        assert store.find_account_state("nope") is None

    def test_state_projection_has_no_password(self, store, account_factory):
        account = account_factory("carol@acme.com", role="ADMIN")
        state = store.find_account_state(account.id)
        assert (state.id, state.email, state.role, state.status) == (account.id, "carol@acme.com", "ADMIN", "ACTIVE")
        assert state.workspace_id == account.workspace_id
        assert not hasattr(state, "password_hash")

    def test_update_converts_types(self, store, account_factory):
        account = account_factory("dave@acme.com", status=AccountStatus.PENDING_VERIFY.value)
        locked = datetime.now(timezone.utc) + timedelta(minutes=15)
        assert store.update_account(account.id, email_verified=True, locked_until=locked, failed_login_count=5)
        updated = store.find_account_by_id(account.id)
        assert updated.email_verified is True
        assert updated.locked_until == locked
        assert updated.failed_login_count == 5

    def test_update_can_clear_fields(self, store, account_factory):
        account = account_factory("erin@acme.com", locked_until=datetime.now(timezone.utc))
        store.update_account(account.id, locked_until=None)
        assert store.find_account_by_id(account.id).locked_until is None

    def test_update_rejects_unknown_fields(self, store, account_factory):
        account = account_factory("frank@acme.com")
        with pytest.raises(ValueError, match="Unknown account fields"):
            store.update_account(account.id, is_admin=True)

    def test_update_unknown_id(self, store):
        assert store.update_account("missing", name="x") is False


class TestWorkspaces:
    def test_oldest_active(self, store):
        assert store.find_oldest_active_workspace() is None
        first = store.create_workspace(Workspace(name="A", domain="a.com"))
        store.create_workspace(Workspace(name="B", domain="b.com"))
        assert store.find_oldest_active_workspace().id == first

        store.update_workspace_status(first, WorkspaceStatus.INACTIVE.value)
        assert store.find_oldest_active_workspace().domain == "b.com"

    def test_domain_lookup_and_uniqueness(self, store):
        store.create_workspace(Workspace(name="Globex", domain="Globex.com"))
        assert store.find_workspace_by_domain("globex.com").name == "Globex"
        with pytest.raises(IntegrityError):
            store.create_workspace(Workspace(name="Other", domain="globex.com"))

    def test_active_account_count(self, store, workspace, account_factory):
        assert store.count_active_accounts_in_workspace(workspace.id) == 0
        account_factory("one@acme.com")
        account_factory("two@acme.com", status=AccountStatus.PENDING_VERIFY.value)
        assert store.count_active_accounts_in_workspace(workspace.id) == 1
        assert store.count_accounts_in_workspace(workspace.id) == 2


class TestOneTimeTokens:
    def _token(self, account_id, token_hash="h1", purpose="email_verification", minutes=60):
        return OneTimeToken(
            account_id=account_id,
            purpose=purpose,
            token_hash=token_hash,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        )

    def test_consume_once(self, store, account_factory):
        account = account_factory("tok@acme.com")
        store.create_one_time_token(self._token(account.id))
        record = store.consume_one_time_token("h1", "email_verification")
        assert record.account_id == account.id
        assert record.used_at is not None
        assert store.consume_one_time_token("h1", "email_verification") is None

    def test_expired_token_not_consumed(self, store, account_factory):
        account = account_factory("old@acme.com")
        store.create_one_time_token(self._token(account.id, minutes=-1))
        assert store.consume_one_time_token("h1", "email_verification") is None

    def test_purpose_must_match(self, store, account_factory):
        account = account_factory("purpose@acme.com")
        store.create_one_time_token(self._token(account.id))
        assert store.consume_one_time_token("h1", "password_reset") is None

    def test_delete_for_account(self, store, account_factory):
        account = account_factory("del@acme.com")
        store.create_one_time_token(self._token(account.id, "a"))
        store.create_one_time_token(self._token(account.id, "b"))
        store.create_one_time_token(self._token(account.id, "c", purpose="password_reset"))
        assert store.delete_one_time_tokens(account.id, "email_verification") == 2
        assert store.consume_one_time_token("c", "password_reset") is not None

    def test_ping(self, store):
        assert store.ping() is True
