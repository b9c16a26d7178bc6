"""
API endpoint guards for capability- and permission-based authorization.

Provides decorators to protect FastAPI routes using the caller's effective
grants computed by RoleResolutionMiddleware.
"""

import inspect
import logging
from functools import wraps
from typing import Callable, Any, Dict, Optional, Tuple
from fastapi import Request, HTTPException, status

from core.rbac.capabilities import get_missing_capabilities, has_any_capability
from core.rbac.grants import EffectiveGrants
from api.middleware.roles import get_current_user, RequestContext
from core.metrics import record_rbac_check, audit_rbac_denial

logger = logging.getLogger(__name__)

# A check returns None when allowed, or the 403 detail dict when denied
Check = Callable[[EffectiveGrants], Optional[Dict[str, Any]]]


# ============================================================================
# Guard Decorators
# ============================================================================

def require(capability: str) -> Callable:
    """
    Decorator to require a specific capability for a FastAPI route.

    Args:
        capability: Capability constant (e.g., CAP_WORKFLOW_MANAGE)

    Raises:
        HTTPException: 403 if the caller lacks the capability

    Examples:
        >>> @router.post("/admin/workflows")
        >>> @require(CAP_WORKFLOW_MANAGE)
        >>> def create_rule(request: Request, body: TransitionRuleCreate):
        >>>     ...
    """
    def check(grants: EffectiveGrants) -> Optional[Dict[str, Any]]:
        if grants.has_capability(capability):
            return None
        return {
            "error": "forbidden",
            "capability": capability,
            "message": f"Capability '{capability}' required",
        }

    return _guard(capability, check)


def require_any(*capabilities: str) -> Callable:
    """
    Decorator to require ANY of the specified capabilities.

    Examples:
        >>> @router.get("/admin/workflows")
        >>> @require_any(CAP_WORKFLOW_MANAGE, CAP_ADMIN_ACCESS)
        >>> def list_rules(request: Request):
        >>>     ...
    """
    def check(grants: EffectiveGrants) -> Optional[Dict[str, Any]]:
        if has_any_capability(grants.capabilities, capabilities):
            return None
        return {
            "error": "forbidden",
            "capabilities": list(capabilities),
            "message": f"One of {', '.join(capabilities)} capabilities required",
        }

    return _guard("|".join(capabilities), check)


def require_all(*capabilities: str) -> Callable:
    """Decorator to require ALL of the specified capabilities."""
    def check(grants: EffectiveGrants) -> Optional[Dict[str, Any]]:
        missing = get_missing_capabilities(grants.capabilities, capabilities)
        if not missing:
            return None
        return {
            "error": "forbidden",
            "capabilities": list(capabilities),
            "missing": sorted(missing),
            "message": f"All of {', '.join(capabilities)} capabilities required",
        }

    return _guard("&".join(capabilities), check)


def require_permission(permission: str) -> Callable:
    """
    Decorator to require a granular permission (e.g. "documents.update").

    Holding the full document permission set does not stand in for other
    permissions here; only the named permission counts.
    """
    def check(grants: EffectiveGrants) -> Optional[Dict[str, Any]]:
        if grants.has_permission(permission):
            return None
        return {
            "error": "forbidden",
            "permission": permission,
            "message": f"Permission '{permission}' required",
        }

    return _guard(permission, check)


# ============================================================================
# Guard Machinery
# ============================================================================

def _guard(label: str, check: Check) -> Callable:
    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                _enforce(label, check, args, kwargs)
                return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            _enforce(label, check, args, kwargs)
            return func(*args, **kwargs)
        return sync_wrapper

    return decorator


def _enforce(label: str, check: Check, args: Tuple, kwargs: Dict[str, Any]) -> RequestContext:
    request = _extract_request_from_args(args, kwargs)

    if request is None:
        logger.error(f"Guard for {label} requires a Request parameter")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Request not found"
        )

    try:
        ctx = get_current_user(request)
    except AttributeError:
        logger.error("Request context not available. Is RoleResolutionMiddleware configured?")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: User context not available"
        )

    denial = check(ctx.grants)
    route = str(request.url.path)
    record_rbac_check(allowed=denial is None, capability=label, route=route)

    if denial is not None:
        audit_rbac_denial(
            capability=label,
            user_id=ctx.user_id,
            roles=ctx.roles,
            route=route,
            method=request.method,
            metadata={"is_authenticated": ctx.is_authenticated}
        )
        logger.warning(
            f"Access denied: user_id={ctx.user_id}, "
            f"roles={ctx.roles}, required={label}"
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=denial)

    logger.debug(f"Access granted: user_id={ctx.user_id}, roles={ctx.roles}, required={label}")
    return ctx


def _extract_request_from_args(args: tuple, kwargs: dict) -> Optional[Request]:
    """Find the Request among a route handler's arguments."""
    if 'request' in kwargs:
        return kwargs['request']

    for arg in args:
        if isinstance(arg, Request):
            return arg

    return None
