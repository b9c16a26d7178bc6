"""
FastAPI middleware for caller resolution and request context population.

Resolves the caller from JWT tokens or API keys, computes their effective
grants once, and attaches both to the request state for use in route
handlers and guards.
"""

import logging
from typing import Callable, List, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.metrics import record_rbac_resolution
from core.rbac.engine import get_engine
from core.rbac.errors import RbacError
from core.rbac.grants import ANONYMOUS_GRANTS, EffectiveGrants
from core.rbac.resolve import get_resolver, ResolvedUser

logger = logging.getLogger(__name__)


# ============================================================================
# Request State Extensions
# ============================================================================

class RequestContext:
    """
    Request context for caller identity and effective grants.

    Attached to request.state by the RoleResolutionMiddleware.
    """

    def __init__(self, user: ResolvedUser, grants: EffectiveGrants = ANONYMOUS_GRANTS):
        self.user_id: Optional[str] = user.user_id
        self.email: Optional[str] = user.email
        self.group_id: Optional[str] = user.group_id
        self.group_name: Optional[str] = user.group_name
        self.auth_method: str = user.auth_method
        self.is_authenticated: bool = user.is_authenticated
        self.metadata: dict = user.metadata
        self.grants: EffectiveGrants = grants

    @property
    def roles(self) -> List[str]:
        return list(self.grants.role_names)

    def __repr__(self) -> str:
        return (
            f"RequestContext(user_id={self.user_id}, "
            f"roles={self.roles}, auth_method={self.auth_method})"
        )


# ============================================================================
# Middleware
# ============================================================================

class RoleResolutionMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve the caller and their grants from request headers.

    Extracts authentication from:
    1. Authorization header (JWT token)
    2. X-API-KEY header (API key)
    3. Falls back to an anonymous caller with no grants

    Grants come from stored role assignments. API keys configured with an
    explicit role list use those roles instead. If the authorization store
    cannot be reached the caller gets no grants.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        authorization = request.headers.get("Authorization")
        api_key = request.headers.get("X-API-KEY") or request.headers.get("X-Api-Key")

        user = get_resolver().resolve_from_request(
            authorization_header=authorization,
            api_key_header=api_key,
        )

        try:
            engine = get_engine()
            if user.roles:
                grants = engine.subject_for_role_names(user.user_id, user.roles)
            else:
                grants = engine.subject_for(user.user_id)
            record_rbac_resolution(success=True, auth_method=user.auth_method)
        except RbacError as e:
            logger.error(f"Error computing grants for user {user.user_id}: {e}", exc_info=True)
            record_rbac_resolution(success=False, auth_method=user.auth_method)
            grants = EffectiveGrants(user_id=user.user_id)

        request.state.ctx = RequestContext(user, grants)

        logger.debug(
            f"Resolved caller for {request.method} {request.url.path}: "
            f"user_id={user.user_id}, roles={list(grants.role_names)}, method={user.auth_method}"
        )

        return await call_next(request)


# ============================================================================
# Helper Functions
# ============================================================================

def get_current_user(request: Request) -> RequestContext:
    """
    Get current user context from request.

    Raises:
        AttributeError: If middleware has not been applied
    """
    if not hasattr(request.state, "ctx"):
        raise AttributeError(
            "Request state does not have 'ctx' attribute. "
            "Ensure RoleResolutionMiddleware is configured."
        )

    return request.state.ctx


def get_current_grants(request: Request) -> EffectiveGrants:
    return get_current_user(request).grants
