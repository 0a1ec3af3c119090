"""Collaborators the HTTP layer depends on.

Authentication, connection storage, team membership, permission storage
and activity logging live outside scurry. The app receives implementations
of the Protocols below bundled in a ``Services`` container.

Usage:
    >>> services = Services(users=my_auth, connections=registry, access=teams,
    ...                     permissions=perm_provider)
    >>> app = create_app(services)
"""

from dataclasses import dataclass, field
from typing import Protocol

from fastapi import Request
from pydantic import BaseModel

from scurry.adapters.executor import QueryExecutor
from scurry.config.models import ConnectionDescriptor, Settings, get_settings
from scurry.permissions.provider import PermissionProvider
from scurry.schema.introspector import SchemaIntrospector
from scurry.schema.sync import ActivityLogger
from scurry.security.rate_limiter import SlidingWindowRateLimiter, default_rate_limits


class CurrentUser(BaseModel):
    id: str
    email: str | None = None


class AccessValidation(BaseModel):
    """Outcome of a connection access check."""

    is_valid: bool
    error: str | None = None


class UserProvider(Protocol):
    async def get_current_user(self, request: Request) -> CurrentUser | None: ...


class ConnectionRegistry(Protocol):
    async def get_connection_by_id(
        self, connection_id: str, owner_id: str | None = None
    ) -> ConnectionDescriptor | None: ...


class AccessValidator(Protocol):
    """Decides whether a user may use a connection in a workspace.

    ``team_id`` None is the personal workspace: the user must own the
    connection. Otherwise the connection must be shared with the team and
    the user must be a member.
    """

    async def validate_connection_access(
        self, user_id: str, connection_id: str, team_id: str | None
    ) -> AccessValidation: ...


@dataclass
class Services:
    """Everything a request handler needs.

    ``executor``, ``introspector`` and ``rate_limiter`` are created on
    demand when not supplied. Activity logging is optional.
    """

    users: UserProvider
    connections: ConnectionRegistry
    access: AccessValidator
    permissions: PermissionProvider
    activity: ActivityLogger | None = None
    settings: Settings = field(default_factory=get_settings)
    executor: QueryExecutor | None = None
    introspector: SchemaIntrospector | None = None
    rate_limiter: SlidingWindowRateLimiter | None = None

    def __post_init__(self):
        if self.executor is None:
            self.executor = QueryExecutor(settings=self.settings)
        if self.introspector is None:
            self.introspector = SchemaIntrospector(self.executor)
        if self.rate_limiter is None:
            self.rate_limiter = SlidingWindowRateLimiter(default_rate_limits(self.settings))


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's ``Services``."""
    return request.app.state.services
