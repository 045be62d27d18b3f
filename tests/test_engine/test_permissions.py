"""Tests for roles and default permission sets."""

from __future__ import annotations

import pytest

from neosynth.engine.permissions import ALL_PERMISSIONS, Role, default_permissions, permission_name


class TestDefaultPermissions:
    @pytest.mark.parametrize("role", list(Role))
    def test_defaults_are_known_permissions(self, role: Role) -> None:
        assert set(default_permissions(role)) <= ALL_PERMISSIONS

    def test_admin_is_superset_of_user(self) -> None:
        assert set(default_permissions(Role.USER)) < set(default_permissions(Role.ADMIN))

    def test_service_is_read_only(self) -> None:
        assert all(p.endswith(".read") for p in default_permissions(Role.SERVICE))

    def test_accepts_role_value(self) -> None:
        assert default_permissions("admin") == default_permissions(Role.ADMIN)

    def test_unknown_role_has_nothing(self) -> None:
        assert default_permissions("root") == []

    def test_returns_fresh_list(self) -> None:
        perms = default_permissions(Role.USER)
        perms.append("users.admin")
        assert "users.admin" not in default_permissions(Role.USER)


def test_permission_name() -> None:
    assert permission_name("admin.users", "read") == "admin.users.read"
