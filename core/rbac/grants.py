"""
Grant aggregation.

Computes a user's effective permissions and capabilities from the union of
their active role assignments, and the "full module" bypass derived from
the permission set.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .interfaces import RbacRepository
from .roles import RoleCatalog, MIN_LEVEL
from .types import GrantState, permission_name

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

DOCUMENTS_MODULE = "documents"

DOCUMENT_CORE_ACTIONS: Tuple[str, ...] = ("read", "create", "update", "approve", "delete")
"""Holding all five makes a user a super-user for the documents module."""


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class EffectiveGrants:
    """
    Everything the decision functions need about one user, computed once
    per request.
    """
    user_id: Optional[str]
    role_ids: Tuple[str, ...] = ()
    role_names: Tuple[str, ...] = ()
    role_level: int = MIN_LEVEL
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    full_document_access: bool = False

    def has_permission(self, name: str) -> bool:
        return name in self.permissions

    def has_capability(self, name: str) -> bool:
        return name in self.capabilities

    def to_dict(self) -> Dict[str, object]:
        return {
            "user_id": self.user_id,
            "role_ids": list(self.role_ids),
            "roles": list(self.role_names),
            "role_level": self.role_level,
            "permissions": sorted(self.permissions),
            "capabilities": sorted(self.capabilities),
            "full_document_access": self.full_document_access,
        }


ANONYMOUS_GRANTS = EffectiveGrants(user_id=None)


@dataclass(frozen=True)
class PermissionExplanation:
    """Why a permission is or is not part of a user's effective set."""
    permission: str
    granted: bool
    states: Dict[str, GrantState]
    reason: str


# ============================================================================
# Module Bypass
# ============================================================================

def has_full_module_access(
    permissions: Iterable[str],
    module_prefix: str,
    required_actions: Sequence[str] = DOCUMENT_CORE_ACTIONS,
) -> bool:
    """
    Check whether a permission set covers every core action of a module.

    Args:
        permissions: Effective permission names
        module_prefix: Module name (e.g., "documents")
        required_actions: Actions that must all be held

    Returns:
        True iff every "module_prefix.action" is present. An empty action
        list never qualifies.

    Examples:
        >>> perms = {"documents.read", "documents.create", "documents.update",
        ...          "documents.approve", "documents.delete"}
        >>> has_full_module_access(perms, "documents")
        True
        >>> has_full_module_access({"documents.read"}, "documents")
        False
    """
    if not module_prefix or not required_actions:
        return False
    held = set(permissions or ())
    return all(permission_name(module_prefix, action) in held for action in required_actions)


# ============================================================================
# Aggregator
# ============================================================================

class GrantAggregator:
    """
    Computes effective grants from persisted role configuration.

    Permissions come from RoleGrant records (granted, explicitly denied or
    absent per role); the effective set is the union of granted records
    across all of a user's active roles. Capabilities are a plain union.
    """

    def __init__(
        self,
        repository: RbacRepository,
        catalog: Optional[RoleCatalog] = None,
        full_access_module: str = DOCUMENTS_MODULE,
        full_access_actions: Sequence[str] = DOCUMENT_CORE_ACTIONS,
    ):
        self.repository = repository
        self.catalog = catalog or RoleCatalog()
        self.full_access_module = full_access_module
        self.full_access_actions = tuple(full_access_actions)

    has_full_module_access = staticmethod(has_full_module_access)

    def _permission_names(self) -> Dict[str, str]:
        return {p.id: p.name for p in self.repository.fetch_permissions()}

    def effective_permissions(self, active_role_ids: Iterable[str]) -> FrozenSet[str]:
        """
        Union of permissions granted by any of the given roles.

        A missing record or an explicit deny on one role never blocks a
        grant coming from another role.
        """
        role_ids = _unique(active_role_ids)
        if not role_ids:
            return frozenset()

        names = self._permission_names()
        granted = set()

        for grant in self.repository.fetch_role_grants(role_ids):
            if grant.role_id not in role_ids or not grant.is_granted:
                continue
            name = names.get(grant.permission_id)
            if name is None:
                logger.warning(
                    f"Role {grant.role_id} references unknown permission {grant.permission_id}"
                )
                continue
            granted.add(name)

        return frozenset(granted)

    def effective_capabilities(self, active_role_ids: Iterable[str]) -> FrozenSet[str]:
        """Union of capability names assigned to any of the given roles."""
        role_ids = _unique(active_role_ids)
        if not role_ids:
            return frozenset()

        names = {c.id: c.name for c in self.repository.fetch_capabilities()}
        held = set()

        for assignment in self.repository.fetch_capability_assignments(role_ids):
            if assignment.role_id not in role_ids:
                continue
            name = names.get(assignment.capability_id)
            if name is None:
                logger.warning(
                    f"Role {assignment.role_id} references unknown capability {assignment.capability_id}"
                )
                continue
            held.add(name)

        return frozenset(held)

    def permission_states(self, active_role_ids: Iterable[str], permission: str) -> Dict[str, GrantState]:
        """
        Per-role state of one permission.

        Returns:
            Mapping role_id -> GRANTED / DENIED / ABSENT
        """
        role_ids = _unique(active_role_ids)
        states = {role_id: GrantState.ABSENT for role_id in role_ids}
        if not role_ids:
            return states

        permission_ids = {p.id for p in self.repository.fetch_permissions() if p.name == permission}
        for grant in self.repository.fetch_role_grants(role_ids):
            if grant.role_id in states and grant.permission_id in permission_ids:
                states[grant.role_id] = grant.state

        return states

    def explain_permission(self, active_role_ids: Iterable[str], permission: str) -> PermissionExplanation:
        """
        Reconstruct why a permission is or is not effective.

        Examples of reasons: "granted by role-editor", "explicitly denied by
        role-viewer", "no role holds a record for documents.publish".
        """
        states = self.permission_states(active_role_ids, permission)
        granted_by = [r for r, s in states.items() if s is GrantState.GRANTED]
        denied_by = [r for r, s in states.items() if s is GrantState.DENIED]

        if granted_by:
            reason = f"granted by {', '.join(granted_by)}"
        elif denied_by:
            reason = f"explicitly denied by {', '.join(denied_by)}"
        elif states:
            reason = f"no role holds a record for {permission}"
        else:
            reason = "no active roles"

        return PermissionExplanation(
            permission=permission,
            granted=bool(granted_by),
            states=states,
            reason=reason,
        )

    def grants_for_roles(self, user_id: Optional[str], role_ids: Iterable[str]) -> EffectiveGrants:
        """Build EffectiveGrants for an explicit set of active role ids."""
        role_ids = _unique(role_ids)

        roles = [self.catalog.get_by_id(role_id) for role_id in role_ids]
        known = [r for r in roles if r is not None and r.is_active]
        for role_id, role in zip(role_ids, roles):
            if role is None:
                logger.warning(f"User {user_id} holds unknown role id {role_id}")

        active_ids = [r.id for r in known]
        permissions = self.effective_permissions(active_ids)
        capabilities = self.effective_capabilities(active_ids)

        grants = EffectiveGrants(
            user_id=user_id,
            role_ids=tuple(active_ids),
            role_names=tuple(r.name for r in known),
            role_level=max((r.level for r in known), default=MIN_LEVEL),
            permissions=permissions,
            capabilities=capabilities,
            full_document_access=has_full_module_access(
                permissions, self.full_access_module, self.full_access_actions
            ),
        )

        logger.debug(
            f"Effective grants for user={user_id}: roles={list(grants.role_names)}, "
            f"level={grants.role_level}, permissions={len(permissions)}, "
            f"capabilities={len(capabilities)}, full_access={grants.full_document_access}"
        )
        return grants

    def grants_for_user(self, user_id: Optional[str]) -> EffectiveGrants:
        """
        Compute a user's effective grants from their active role assignments.

        Inactive assignments are ignored. Anonymous callers get no grants.
        """
        if not user_id:
            return ANONYMOUS_GRANTS

        assignments = self.repository.fetch_active_role_assignments(user_id)
        role_ids = [a.role_id for a in assignments if a.is_active and a.user_id == user_id]
        return self.grants_for_roles(user_id, role_ids)


def _unique(values: Iterable[str]) -> List[str]:
    seen = []
    for value in values or ():
        if value and value not in seen:
            seen.append(value)
    return seen
