"""HTTP API over the scurry core.

Usage:
    >>> from scurry.api import Services, create_app
"""

from scurry.api.app import ApiError, create_app, serialize_value, status_for_error
from scurry.api.deps import (
    AccessValidation,
    AccessValidator,
    ConnectionRegistry,
    CurrentUser,
    Services,
    UserProvider,
)

__all__ = [
    "AccessValidation",
    "AccessValidator",
    "ApiError",
    "ConnectionRegistry",
    "CurrentUser",
    "Services",
    "UserProvider",
    "create_app",
    "serialize_value",
    "status_for_error",
]
