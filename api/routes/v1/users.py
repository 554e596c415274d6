"""
api/routes/v1/users.py -- Account lookup.

Routes:
  GET /api/v1/users/{id}  -- ADMIN of the same workspace, or the account itself

IDOR guard: an ADMIN only sees accounts in their own workspace. An id from
another workspace returns 404, the same as an unknown id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AccountResponse
from auth.dependencies import require_roles
from auth.models import Principal, Role
from core.errors import NotFound

router = APIRouter()

_admin_or_self = require_roles(Role.ADMIN.value, permit_self=True)


@router.get("/users/{id}", response_model=AccountResponse)
def get_user(request: Request, id: str, principal: Principal = Depends(_admin_or_self)) -> AccountResponse:  # noqa: A002
    account = request.app.state.credential_store.find_account_by_id(id)
    if account is None or account.workspace_id != principal.workspace_id:
        raise NotFound("User not found")
    return AccountResponse.from_account(account)
