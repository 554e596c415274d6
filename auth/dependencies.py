"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

get_current_principal() runs the SessionAuthenticator (auth/session.py) against
the Authorization header and stores the result on request.state.principal, so
later dependencies and handlers in the same request see one consistent
identity.

require_roles() / require_permission() are dependency *factories*. Their
arguments are validated when the route module is imported, so a typo in a
role or permission name fails at startup rather than on the first request:

    @router.get("/users/{id}")
    def get_user(principal: Principal = Depends(require_roles("ADMIN", permit_self=True))): ...

Errors are raised as core.errors.ApiError subclasses; api/main.py renders them.

Layer rule: no imports from api/ or personas/. This module may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.access import ALL_PERMISSIONS, check_permission, check_roles, normalize_roles
from auth.models import Principal


def get_current_principal(request: Request) -> Principal:
    """Require a valid bearer token. Raises 401/403/500 ApiErrors otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    cached = getattr(request.state, "principal", None)
    if cached is not None:
        return cached

    authenticator = request.app.state.authenticator
    principal = authenticator.authenticate(
        request.headers.get("Authorization"),
        method=request.method,
        path=request.url.path,
    )
    request.state.principal = principal
    return principal


def require_roles(*roles: str, permit_self: bool = False):
    """Build a dependency that allows only the given roles (or the subject itself).

    Raises ValueError immediately if no roles or an unknown role is given.
    """
    allowed = normalize_roles(roles)

    def dependency(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        return check_roles(principal, allowed, permit_self=permit_self, path_params=request.path_params)

    return dependency


def require_permission(permission: str):
    """Build a dependency that requires a named permission from ROLE_PERMISSIONS.

    Raises ValueError immediately if the permission is not granted to any role.
    """
    if not isinstance(permission, str) or not permission.strip():
        raise ValueError("Permission name must be a non-empty string")
    if permission not in ALL_PERMISSIONS:
        raise ValueError(f"Unknown permission {permission!r}")

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        return check_permission(principal, permission)

    return dependency
