"""API middleware modules."""

from .roles import (
    RoleResolutionMiddleware,
    RequestContext,
    get_current_user,
    get_current_grants,
)

__all__ = [
    "RoleResolutionMiddleware",
    "RequestContext",
    "get_current_user",
    "get_current_grants",
]
