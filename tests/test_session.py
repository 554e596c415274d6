"""Unit tests for auth/session.py -- bearer extraction and the per-request account reload."""

from unittest.mock import MagicMock

import pytest

from auth.models import AccountStatus, Role, TokenClaims
from auth.session import SessionAuthenticator, extract_bearer_token
from core.errors import Forbidden, Internal, Unauthorized


def _bearer(tokens, account, role=None, workspace_id="from-token"):
    token = tokens.issue_access(
        TokenClaims(account_id=account.id, workspace_id=workspace_id, role=role or account.role)
    )
    return f"Bearer {token}"


class TestExtractBearer:
    def test_valid(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    @pytest.mark.parametrize(
        "header",
        [None, "", "Bearer", "Bearer ", "bearer abc", "Basic abc", "Bearer  abc", "Bearer abc def", "Token abc"],
    )
    def test_malformed(self, header):
        with pytest.raises(Unauthorized, match="Authorization token missing or malformed"):
            extract_bearer_token(header)


class TestAuthenticate:
    def test_principal_uses_stored_role_and_workspace(self, store, tokens, account_factory):
        account = account_factory("member@acme.com", role=Role.MEMBER.value)
        principal = SessionAuthenticator(store, tokens).authenticate(_bearer(tokens, account, role="ADMIN"))
        assert principal.id == account.id
        assert principal.role == "MEMBER"
        assert principal.workspace_id == account.workspace_id
        assert principal.email == "member@acme.com"

    def test_invalid_token(self, store, tokens):
        with pytest.raises(Unauthorized, match="Invalid or expired token"):
            SessionAuthenticator(store, tokens).authenticate("Bearer not-a-jwt")

    def test_refresh_token_not_accepted(self, store, tokens, account_factory):
        account = account_factory("refresh@acme.com")
        refresh = tokens.issue_refresh(TokenClaims(account.id, account.workspace_id, account.role))
        with pytest.raises(Unauthorized, match="Invalid or expired token"):
            SessionAuthenticator(store, tokens).authenticate(f"Bearer {refresh}")

    def test_unknown_account(self, store, tokens):
        token = tokens.issue_access(TokenClaims(account_id="ghost", workspace_id="ws", role="ADMIN"))
        with pytest.raises(Unauthorized, match="User not found or inactive"):
            SessionAuthenticator(store, tokens).authenticate(f"Bearer {token}")

    @pytest.mark.parametrize(
        "status",
        [AccountStatus.PENDING_VERIFY.value, AccountStatus.DEACTIVATED.value, AccountStatus.PENDING_DELETION.value],
    )
    def test_inactive_account(self, store, tokens, account_factory, status):
        account = account_factory(f"{status.lower()}@acme.com", status=status)
        with pytest.raises(Unauthorized, match="User not found or inactive"):
            SessionAuthenticator(store, tokens).authenticate(_bearer(tokens, account))

    def test_deactivation_takes_effect_immediately(self, store, tokens, account_factory):
        account = account_factory("later@acme.com")
        header = _bearer(tokens, account)
        authenticator = SessionAuthenticator(store, tokens)
        authenticator.authenticate(header)
        store.update_account(account.id, status=AccountStatus.DEACTIVATED.value)
        with pytest.raises(Unauthorized):
            authenticator.authenticate(header)

    def test_no_workspace(self, store, tokens, account_factory):
        account = account_factory("nows@acme.com", workspace_id=None)
        with pytest.raises(Forbidden, match="User is not assigned to any workspace") as excinfo:
            SessionAuthenticator(store, tokens).authenticate(_bearer(tokens, account))
        assert excinfo.value.status_code == 403

    def test_store_failure_is_opaque_500(self, tokens):
        broken = MagicMock()
        broken.find_account_state.side_effect = RuntimeError("db down")
        token = tokens.issue_access(TokenClaims(account_id="acc", workspace_id="ws", role="ADMIN"))
        with pytest.raises(Internal, match="Authentication failed") as excinfo:
            SessionAuthenticator(broken, tokens).authenticate(f"Bearer {token}", method="GET", path="/x")
        assert excinfo.value.status_code == 500
