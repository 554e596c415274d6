"""
auth/session.py -- Turn an Authorization header into a verified Principal.

Every protected request goes through the same fixed sequence:

  extract   "Bearer <token>" exactly, otherwise 401
  verify    signature, expiry and token type (TokenService), otherwise 401
  load      AccountState by the token subject (no password hash)
  liveness  account must exist and be ACTIVE, otherwise 401
  tenancy   account must belong to a workspace, otherwise 403
  attach    Principal built from the *stored* role and workspace

The role and workspace inside the token are never trusted for authorization:
a demotion or workspace move takes effect on the next request, not when the
token expires. A deactivated account is locked out the same way.

Missing and inactive accounts share one message so the response does not
reveal whether an id exists.

Layer rule: no imports from api/ or personas/. FastAPI wiring lives in
auth/dependencies.py.
"""

from __future__ import annotations

import logging

from auth.models import AccountStatus, Principal
from auth.store import CredentialStore
from auth.tokens import INVALID_TOKEN, TokenService
from core.errors import ApiError, Forbidden, Internal, Unauthorized

logger = logging.getLogger("personahub.auth.session")

TOKEN_MISSING = "Authorization token missing or malformed"
USER_INACTIVE = "User not found or inactive"
NO_WORKSPACE = "User is not assigned to any workspace"
AUTH_FAILED = "Authentication failed"

_SCHEME = "Bearer "


def extract_bearer_token(header: str | None) -> str:
    """Return the token from "Bearer <token>" or raise Unauthorized.

    The scheme is case-sensitive and must be followed by exactly one space and
    a single non-empty token with no embedded whitespace.
    """
    if not header or not header.startswith(_SCHEME):
        raise Unauthorized(TOKEN_MISSING)
    token = header[len(_SCHEME):]
    if not token or token != token.strip() or any(ch.isspace() for ch in token):
        raise Unauthorized(TOKEN_MISSING)
    return token


class SessionAuthenticator:
    """Stateless bearer-token authentication backed by a per-request account reload.

    Usage:
        authenticator = SessionAuthenticator(store, tokens)
        principal = authenticator.authenticate(request.headers.get("Authorization"))
    """

    def __init__(self, store: CredentialStore, tokens: TokenService) -> None:
        self._store = store
        self._tokens = tokens

    def authenticate(self, header: str | None, method: str = "-", path: str = "-") -> Principal:
        token = extract_bearer_token(header)

        claims = self._tokens.verify_access(token)
        if not claims.account_id:
            raise Unauthorized(INVALID_TOKEN)

        try:
            state = self._store.find_account_state(claims.account_id)
            if state is None or state.status != AccountStatus.ACTIVE.value:
                raise Unauthorized(USER_INACTIVE)
            if not state.workspace_id:
                raise Forbidden(NO_WORKSPACE)
        except ApiError:
            raise
        except Exception as exc:
            logger.exception("Authentication error on %s %s: %s", method, path, type(exc).__name__)
            raise Internal(AUTH_FAILED) from exc

        return Principal(
            id=state.id,
            email=state.email,
            name=state.name,
            role=state.role,
            workspace_id=state.workspace_id,
        )
