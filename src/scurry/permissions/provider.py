"""Effective permission lookup for team members.

A member's permission on a shared connection comes from their custom
per-connection permissions when one exists for that connection, and
otherwise from the profile assigned to them. No assignment, or an assigned
profile without an entry for the connection, means no permission.

Storage is external. Callers either implement ``PermissionProvider``
directly or implement the narrower ``AssignmentStore`` and wrap it in
``StoredPermissionProvider``.

Usage:
    >>> store = InMemoryPermissionStore()
    >>> store.add_profile(profile)
    >>> store.assign(MemberPermissionAssignment(team_id="t1", user_id="u1",
    ...                                         profile_id=profile.id))
    >>> perm = await get_effective_permission(StoredPermissionProvider(store),
    ...                                       "u1", "t1", "conn-1")
"""

from typing import Protocol

from scurry.permissions.models import (
    ConnectionPermission,
    MemberPermissionAssignment,
    PermissionProfile,
)


class PermissionProvider(Protocol):
    """Resolves a member's effective permission on one connection."""

    async def get_effective_permissions(
        self, user_id: str, team_id: str, connection_id: str
    ) -> ConnectionPermission | None: ...


class AssignmentStore(Protocol):
    """Read access to stored assignments and profiles."""

    async def get_member_assignment(
        self, team_id: str, user_id: str
    ) -> MemberPermissionAssignment | None: ...

    async def get_profile(self, profile_id: str) -> PermissionProfile | None: ...


def resolve_effective_permission(
    assignment: MemberPermissionAssignment | None,
    profile: PermissionProfile | None,
    connection_id: str,
) -> ConnectionPermission | None:
    """Pick the permission that applies to *connection_id*.

    Args:
        assignment: The member's assignment, or None when unassigned
        profile: The assigned profile, if any
        connection_id: Connection being accessed

    Returns:
        Custom permission for the connection if present, else the profile's,
        else None
    """
    if assignment is None:
        return None

    for custom in assignment.custom_permissions or []:
        if custom.connection_id == connection_id:
            return custom

    if not assignment.profile_id or profile is None or profile.id != assignment.profile_id:
        return None
    return profile.connections.get(connection_id)


async def get_effective_permission(
    provider: PermissionProvider, user_id: str, team_id: str, connection_id: str
) -> ConnectionPermission | None:
    return await provider.get_effective_permissions(user_id, team_id, connection_id)


class StoredPermissionProvider:
    """``PermissionProvider`` over an ``AssignmentStore``."""

    def __init__(self, store: AssignmentStore):
        self._store = store

    async def get_effective_permissions(
        self, user_id: str, team_id: str, connection_id: str
    ) -> ConnectionPermission | None:
        assignment = await self._store.get_member_assignment(team_id, user_id)
        if assignment is None:
            return None

        profile = None
        # Custom permissions win, so the profile is only needed without one
        has_custom = any(
            p.connection_id == connection_id for p in assignment.custom_permissions or []
        )
        if not has_custom and assignment.profile_id:
            profile = await self._store.get_profile(assignment.profile_id)
        return resolve_effective_permission(assignment, profile, connection_id)


class InMemoryPermissionStore:
    """Dict-backed ``AssignmentStore``, used by the CLI and in tests."""

    def __init__(self):
        self._profiles: dict[str, PermissionProfile] = {}
        self._assignments: dict[tuple[str, str], MemberPermissionAssignment] = {}

    def add_profile(self, profile: PermissionProfile) -> None:
        self._profiles[profile.id] = profile

    def assign(self, assignment: MemberPermissionAssignment) -> None:
        self._assignments[(assignment.team_id, assignment.user_id)] = assignment

    async def get_member_assignment(
        self, team_id: str, user_id: str
    ) -> MemberPermissionAssignment | None:
        return self._assignments.get((team_id, user_id))

    async def get_profile(self, profile_id: str) -> PermissionProfile | None:
        return self._profiles.get(profile_id)
