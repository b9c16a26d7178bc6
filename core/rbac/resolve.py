"""
Caller identity resolution.

Resolves who is calling from request credentials:
- Supabase JWT tokens (Authorization: Bearer <token>)
- API key headers (service accounts)
- Anonymous fallback

Only identity and group membership are resolved here. Roles, permissions
and capabilities come from the authorization store, except for API keys
configured with an explicit role list.
"""

import logging
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
import jwt

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ResolvedUser:
    """Resolved caller identity."""
    user_id: Optional[str]
    email: Optional[str]
    auth_method: str  # 'jwt', 'api_key', 'anonymous'
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        return self.auth_method == 'anonymous'

    @property
    def is_authenticated(self) -> bool:
        return not self.is_anonymous


# ============================================================================
# Identity Resolver
# ============================================================================

class IdentityResolver:
    """
    Resolves caller identity from authentication headers.

    Priority order: JWT, then API key, then anonymous. A credential that is
    present but invalid falls through to the next source; it never raises.
    """

    def __init__(
        self,
        jwt_secret: Optional[str] = None,
        jwt_algorithm: str = "HS256",
        api_key_to_user_map: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        """
        Initialize identity resolver.

        Args:
            jwt_secret: Secret for verifying Supabase JWT tokens
            jwt_algorithm: Expected JWT signing algorithm
            api_key_to_user_map: Mapping of API keys to user info
                ({"user_id", "email", "group_id", "group_name", "roles"})
        """
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.api_key_to_user_map = api_key_to_user_map or {}

    def resolve_from_request(
        self,
        authorization_header: Optional[str] = None,
        api_key_header: Optional[str] = None,
    ) -> ResolvedUser:
        """
        Resolve caller identity from request headers.

        Args:
            authorization_header: Authorization header value (e.g., "Bearer <token>")
            api_key_header: API key header value

        Returns:
            ResolvedUser with user_id, email, group and auth method
        """
        if authorization_header:
            logger.debug("Resolving caller from bearer token")
            user = self._resolve_from_jwt(authorization_header)
            if user:
                return user

        if api_key_header:
            logger.debug("Resolving caller from API key")
            user = self._resolve_from_api_key(api_key_header)
            if user:
                return user

        logger.debug("No usable credentials, caller is anonymous")
        return ResolvedUser(user_id=None, email=None, auth_method='anonymous')

    def _resolve_from_jwt(self, authorization_header: str) -> Optional[ResolvedUser]:
        if not authorization_header.startswith("Bearer "):
            logger.warning("Authorization header is not a bearer token")
            return None

        token = authorization_header[7:].strip()
        if not token:
            logger.warning("Bearer token is empty")
            return None

        if not self.jwt_secret:
            logger.warning("No JWT secret configured, skipping JWT verification")
            return None

        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                options={"verify_exp": True, "verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Bearer token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected bearer token: {e}")
            return None

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("Bearer token has no subject claim")
            return None

        group_id, group_name = _extract_group(payload)

        logger.info(f"Resolved user from JWT: user_id={user_id}, group={group_name or group_id}")

        return ResolvedUser(
            user_id=str(user_id),
            email=payload.get("email"),
            auth_method='jwt',
            group_id=group_id,
            group_name=group_name,
            metadata={
                'token_issued_at': payload.get('iat'),
                'token_expires_at': payload.get('exp'),
            }
        )

    def _resolve_from_api_key(self, api_key: str) -> Optional[ResolvedUser]:
        user_info = self.api_key_to_user_map.get(api_key)

        if not user_info:
            logger.warning(f"API key {api_key[:8]}... is not configured")
            return None

        user_id = user_info.get('user_id')
        roles = user_info.get('roles') or []
        if not isinstance(roles, list):
            roles = [roles]

        logger.info(f"API key caller {user_id} (configured roles: {roles or 'stored'})")

        return ResolvedUser(
            user_id=user_id,
            email=user_info.get('email'),
            auth_method='api_key',
            group_id=user_info.get('group_id'),
            group_name=user_info.get('group_name'),
            roles=[str(r) for r in roles],
            metadata={
                'api_key_prefix': api_key[:8] if len(api_key) >= 8 else api_key,
            }
        )


def _extract_group(payload: Dict[str, Any]):
    """
    Extract the caller's group from JWT claims.

    Checks the top level first, then app_metadata. user_metadata is
    user-editable in Supabase and is never trusted for authorization.
    """
    for source in (payload, payload.get('app_metadata') or {}):
        if not isinstance(source, dict):
            continue
        group_id = source.get('group_id')
        group_name = source.get('group_name')
        if group_id or group_name:
            return (
                str(group_id) if group_id else None,
                str(group_name) if group_name else None,
            )
    return None, None


# ============================================================================
# Global Resolver Instance
# ============================================================================

_global_resolver: Optional[IdentityResolver] = None


def get_resolver() -> IdentityResolver:
    """
    Get the global identity resolver instance.

    Returns:
        Global IdentityResolver (an unconfigured one that only yields
        anonymous callers if configure_resolver() was never called)
    """
    global _global_resolver

    if _global_resolver is None:
        logger.warning("Using default identity resolver (not configured)")
        _global_resolver = IdentityResolver()

    return _global_resolver


def configure_resolver(
    jwt_secret: Optional[str] = None,
    jwt_algorithm: str = "HS256",
    api_key_to_user_map: Optional[Dict[str, Dict[str, Any]]] = None,
) -> IdentityResolver:
    """
    Configure the global identity resolver.

    Args:
        jwt_secret: Secret for verifying Supabase JWT tokens
        jwt_algorithm: Expected JWT signing algorithm
        api_key_to_user_map: Mapping of API keys to user info

    Returns:
        Configured IdentityResolver instance
    """
    global _global_resolver

    _global_resolver = IdentityResolver(
        jwt_secret=jwt_secret,
        jwt_algorithm=jwt_algorithm,
        api_key_to_user_map=api_key_to_user_map,
    )

    logger.info("Configured global identity resolver")
    return _global_resolver


def reset_resolver():
    """Drop the global resolver so the next get_resolver() starts fresh."""
    global _global_resolver
    _global_resolver = None
