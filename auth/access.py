"""
auth/access.py -- Role and permission checks.

Two independent gates:

  check_roles()       the principal's role must be one of an allowed set, or
                      (with permit_self) the route must be about the principal
                      itself. Self-access is looked up in the path parameters
                      "uid", "userId" and "id", in that order, and only after
                      the role match fails.

  check_permission()  the principal's role must grant a named permission in
                      ROLE_PERMISSIONS.

Both raise Unauthorized when there is no principal at all and Forbidden when
the principal lacks access. The FastAPI dependency factories for them live in
auth/dependencies.py; the checks themselves are plain functions so services
and tests can call them without a request.

ROLE_PERMISSIONS is immutable (MappingProxyType of frozensets). Its coverage
of every Role is checked at import time by ensure_complete(), so a new role
without a permission set fails at startup instead of at the first request.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from auth.models import Principal, Role
from core.errors import Forbidden, Unauthorized

AUTH_REQUIRED = "Authentication required"
INSUFFICIENT = "Insufficient permissions"
ROLE_INVALID = "User role not found/invalid"

# Path parameters that may name "the account this route is about".
SELF_PARAMS = ("uid", "userId", "id")

# ---------------------------------------------------------------------------
# Permission table
# ---------------------------------------------------------------------------

REMOVE_USER = "remove_user"
MANAGE_MEMBERS = "manage_members"
VIEW_WORKSPACE = "view_workspace"
VIEW_PERSONA = "view_persona"
MANAGE_PERSONA = "manage_persona"
DELETE_PERSONA = "delete_persona"
UPDATE_SELF = "update_self"

ROLE_PERMISSIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        Role.ADMIN.value: frozenset(
            {
                REMOVE_USER,
                MANAGE_MEMBERS,
                VIEW_WORKSPACE,
                VIEW_PERSONA,
                MANAGE_PERSONA,
                DELETE_PERSONA,
                UPDATE_SELF,
            }
        ),
        Role.MEMBER.value: frozenset({VIEW_WORKSPACE, VIEW_PERSONA, DELETE_PERSONA, UPDATE_SELF}),
    }
)

ALL_PERMISSIONS: frozenset[str] = frozenset().union(*ROLE_PERMISSIONS.values())


def ensure_complete(table: Mapping[str, frozenset[str]]) -> None:
    """Raise RuntimeError unless every Role has an entry in table."""
    missing = {r.value for r in Role} - set(table)
    if missing:
        raise RuntimeError(f"Permission table has no entry for roles: {sorted(missing)}")


ensure_complete(ROLE_PERMISSIONS)


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def _normalize_role(role: str | None) -> str:
    return role.strip().upper() if isinstance(role, str) else ""


def normalize_roles(roles: Iterable[str]) -> frozenset[str]:
    """Trim and upper-case the allowed roles. Raises ValueError if any is unknown or empty."""
    normalized = set()
    for role in roles:
        value = _normalize_role(role)
        if not value:
            raise ValueError("Role names must be non-empty strings")
        if value not in ROLE_PERMISSIONS:
            raise ValueError(f"Unknown role {role!r}")
        normalized.add(value)
    if not normalized:
        raise ValueError("At least one role is required")
    return frozenset(normalized)


def check_roles(
    principal: Principal | None,
    roles: Iterable[str],
    permit_self: bool = False,
    path_params: Mapping[str, str] | None = None,
) -> Principal:
    """Return the principal if its role is allowed (or it is the subject), else raise."""
    if principal is None:
        raise Unauthorized(AUTH_REQUIRED)

    allowed = {_normalize_role(r) for r in roles}
    if _normalize_role(principal.role) in allowed:
        return principal

    if permit_self and path_params:
        for name in SELF_PARAMS:
            value = path_params.get(name)
            if value:
                if str(value) == principal.id:
                    return principal
                break

    raise Forbidden(INSUFFICIENT)


def has_permission(role: str | None, permission: str, table: Mapping[str, frozenset[str]] = ROLE_PERMISSIONS) -> bool:
    return permission in table.get(_normalize_role(role), frozenset())


def check_permission(
    principal: Principal | None,
    permission: str,
    table: Mapping[str, frozenset[str]] = ROLE_PERMISSIONS,
) -> Principal:
    """Return the principal if its role grants permission, else raise."""
    if principal is None:
        raise Unauthorized(AUTH_REQUIRED)
    role = _normalize_role(principal.role)
    if role not in table:
        raise Unauthorized(ROLE_INVALID)
    if not has_permission(role, permission, table):
        raise Forbidden(INSUFFICIENT)
    return principal
