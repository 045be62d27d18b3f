"""Roles and the flat ``resource.action`` permission vocabulary."""

from __future__ import annotations

import enum


class Role(enum.StrEnum):
    """Role carried by a principal or an API key."""

    USER = "user"
    ADMIN = "admin"
    SERVICE = "service"


ALL_PERMISSIONS: frozenset[str] = frozenset(
    {
        "users.read",
        "users.write",
        "users.admin",
        "playlists.read",
        "playlists.write",
        "tracks.read",
        "preferences.read",
        "preferences.write",
        "nowplaying.read",
        "nowplaying.write",
        "admin.users.read",
        "admin.users.write",
        "admin.system.read",
    }
)

_USER_PERMISSIONS = (
    "users.read",
    "playlists.read",
    "playlists.write",
    "tracks.read",
    "preferences.read",
    "preferences.write",
    "nowplaying.read",
    "nowplaying.write",
)

_DEFAULT_PERMISSIONS: dict[Role, tuple[str, ...]] = {
    Role.USER: _USER_PERMISSIONS,
    Role.ADMIN: (
        *_USER_PERMISSIONS,
        "users.write",
        "admin.users.read",
        "admin.users.write",
        "admin.system.read",
    ),
    # Read-mostly automation.
    Role.SERVICE: (
        "users.read",
        "playlists.read",
        "tracks.read",
        "nowplaying.read",
    ),
}


def default_permissions(role: Role | str) -> list[str]:
    """Return the permission set granted to a new key of *role*."""
    try:
        return list(_DEFAULT_PERMISSIONS[Role(role)])
    except ValueError:
        return []


def permission_name(resource: str, action: str) -> str:
    """Join a resource and action into ``resource.action``."""
    return f"{resource}.{action}"
