"""Unit tests for auth/access.py and the dependency factories in auth/dependencies.py."""

import pytest

from auth.access import (
    ROLE_PERMISSIONS,
    check_permission,
    check_roles,
    ensure_complete,
    has_permission,
    normalize_roles,
)
from auth.dependencies import require_permission, require_roles
from auth.models import Principal, Role
from core.errors import Forbidden, Unauthorized

_ADMIN = Principal(id="a1", email="a@acme.com", name="A", role="ADMIN", workspace_id="ws")
_MEMBER = Principal(id="m1", email="m@acme.com", name="M", role="MEMBER", workspace_id="ws")


class TestPermissionTable:
    def test_every_role_covered(self):
        assert set(ROLE_PERMISSIONS) == {r.value for r in Role}

    def test_incomplete_table_rejected(self):
        ensure_complete(ROLE_PERMISSIONS)
        with pytest.raises(RuntimeError, match=r"no entry for roles: \['MEMBER'\]"):
            ensure_complete({"ADMIN": ROLE_PERMISSIONS["ADMIN"]})

    def test_admin_permissions(self):
        assert ROLE_PERMISSIONS["ADMIN"] == frozenset(
            {
                "remove_user",
                "manage_members",
                "view_workspace",
                "view_persona",
                "manage_persona",
                "delete_persona",
                "update_self",
            }
        )

    def test_member_permissions(self):
        assert ROLE_PERMISSIONS["MEMBER"] == frozenset(
            {"view_workspace", "view_persona", "delete_persona", "update_self"}
        )

    def test_table_is_immutable(self):
        with pytest.raises(TypeError):
            ROLE_PERMISSIONS["GUEST"] = frozenset()  # type: ignore[index]

    def test_has_permission(self):
        assert has_permission(" admin ", "manage_persona")
        assert not has_permission("MEMBER", "manage_persona")
        assert not has_permission(None, "view_persona")


class TestCheckRoles:
    def test_no_principal(self):
        with pytest.raises(Unauthorized, match="Authentication required"):
            check_roles(None, ["ADMIN"])

    def test_case_insensitive_match(self):
        assert check_roles(_ADMIN, [" admin "]) is _ADMIN

    def test_mismatch(self):
        with pytest.raises(Forbidden, match="Insufficient permissions"):
            check_roles(_MEMBER, ["ADMIN"])

    @pytest.mark.parametrize("param", ["uid", "userId", "id"])
    def test_permit_self(self, param):
        assert check_roles(_MEMBER, ["ADMIN"], permit_self=True, path_params={param: "m1"}) is _MEMBER

    def test_permit_self_other_account(self):
        with pytest.raises(Forbidden):
            check_roles(_MEMBER, ["ADMIN"], permit_self=True, path_params={"id": "someone-else"})

    def test_uid_takes_precedence_over_id(self):
        with pytest.raises(Forbidden):
            check_roles(_MEMBER, ["ADMIN"], permit_self=True, path_params={"uid": "other", "id": "m1"})

    def test_self_ignored_without_flag(self):
        with pytest.raises(Forbidden):
            check_roles(_MEMBER, ["ADMIN"], path_params={"id": "m1"})


class TestCheckPermission:
    def test_granted(self):
        assert check_permission(_MEMBER, "view_persona") is _MEMBER

    def test_denied(self):
        with pytest.raises(Forbidden, match="Insufficient permissions"):
            check_permission(_MEMBER, "manage_persona")

    def test_no_principal(self):
        with pytest.raises(Unauthorized):
            check_permission(None, "view_persona")

    def test_unknown_role(self):
        ghost = Principal(id="g", email="g@acme.com", name="G", role="GUEST", workspace_id="ws")
        with pytest.raises(Unauthorized, match="User role not found/invalid"):
            check_permission(ghost, "view_persona")


class TestFactories:
    def test_normalize_roles(self):
        assert normalize_roles([" admin", "MEMBER"]) == frozenset({"ADMIN", "MEMBER"})

    @pytest.mark.parametrize("roles", [(), ("",), ("OWNER",), ("  ",)])
    def test_require_roles_validates_eagerly(self, roles):
        with pytest.raises(ValueError):
            require_roles(*roles)

    @pytest.mark.parametrize("permission", ["", "  ", "launch_missiles"])
    def test_require_permission_validates_eagerly(self, permission):
        with pytest.raises(ValueError):
            require_permission(permission)

    def test_valid_factories_return_callables(self):
        assert callable(require_roles("ADMIN", permit_self=True))
        assert callable(require_permission("manage_persona"))
