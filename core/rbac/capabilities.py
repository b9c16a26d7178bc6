"""
Capability constants and capability-set checks.

Capabilities are coarse, binary, role-scoped flags. They are a separate
axis from fine-grained permissions: nothing propagates between the two, so
callers check both where both are relevant.
"""

from typing import Iterable, Optional, Set

# ============================================================================
# Capability Constants
# ============================================================================

CAP_ADMIN_ACCESS = "ADMIN_ACCESS"
"""Unrestricted administrative access; bypasses document access checks."""

CAP_DOCUMENT_FULL_ACCESS = "DOCUMENT_FULL_ACCESS"
"""See every document regardless of its access groups."""

CAP_DOCUMENT_MANAGE = "DOCUMENT_MANAGE"
"""Manage documents (organize, move, relate)."""

CAP_DOCUMENT_VIEW = "DOCUMENT_VIEW"
CAP_DOCUMENT_CREATE = "DOCUMENT_CREATE"
CAP_DOCUMENT_EDIT = "DOCUMENT_EDIT"
CAP_DOCUMENT_APPROVE = "DOCUMENT_APPROVE"
CAP_DOCUMENT_PUBLISH = "DOCUMENT_PUBLISH"
CAP_DOCUMENT_DELETE = "DOCUMENT_DELETE"

CAP_USER_VIEW = "USER_VIEW"
CAP_USER_MANAGE = "USER_MANAGE"

CAP_ROLE_MANAGE = "ROLE_MANAGE"
"""Create, edit and delete roles and their grants."""

CAP_PERMISSION_MANAGE = "PERMISSION_MANAGE"

CAP_WORKFLOW_MANAGE = "WORKFLOW_MANAGE"
"""Create, edit and delete workflow transition rules."""

CAP_SYSTEM_CONFIG = "SYSTEM_CONFIG"
CAP_AUDIT_VIEW = "AUDIT_VIEW"
CAP_ANALYTICS_VIEW = "ANALYTICS_VIEW"
CAP_ANALYTICS_EXPORT = "ANALYTICS_EXPORT"
CAP_ORGANIZATION_VIEW = "ORGANIZATION_VIEW"
CAP_ORGANIZATION_MANAGE = "ORGANIZATION_MANAGE"

# Complete set of all built-in capabilities
ALL_CAPABILITIES = frozenset({
    CAP_ADMIN_ACCESS,
    CAP_DOCUMENT_FULL_ACCESS,
    CAP_DOCUMENT_MANAGE,
    CAP_DOCUMENT_VIEW,
    CAP_DOCUMENT_CREATE,
    CAP_DOCUMENT_EDIT,
    CAP_DOCUMENT_APPROVE,
    CAP_DOCUMENT_PUBLISH,
    CAP_DOCUMENT_DELETE,
    CAP_USER_VIEW,
    CAP_USER_MANAGE,
    CAP_ROLE_MANAGE,
    CAP_PERMISSION_MANAGE,
    CAP_WORKFLOW_MANAGE,
    CAP_SYSTEM_CONFIG,
    CAP_AUDIT_VIEW,
    CAP_ANALYTICS_VIEW,
    CAP_ANALYTICS_EXPORT,
    CAP_ORGANIZATION_VIEW,
    CAP_ORGANIZATION_MANAGE,
})

# Holding any one of these grants read access to every document
DOCUMENT_BYPASS_CAPABILITIES = frozenset({
    CAP_ADMIN_ACCESS,
    CAP_DOCUMENT_FULL_ACCESS,
})


# ============================================================================
# Capability-Set Functions
# ============================================================================

def has_capability(capabilities: Optional[Iterable[str]], capability: str) -> bool:
    """
    Check if a capability set contains a capability.

    Args:
        capabilities: Effective capabilities of a user
        capability: Capability constant (e.g., CAP_ROLE_MANAGE)

    Returns:
        True if present, False otherwise (including for empty input)

    Examples:
        >>> has_capability({"ADMIN_ACCESS"}, CAP_ADMIN_ACCESS)
        True
        >>> has_capability(None, CAP_ADMIN_ACCESS)
        False
    """
    if not capabilities or not capability:
        return False
    return capability in set(capabilities)


def has_any_capability(capabilities: Optional[Iterable[str]], required: Iterable[str]) -> bool:
    """
    Check if a capability set contains at least one of the required capabilities.

    Examples:
        >>> has_any_capability({"USER_VIEW"}, [CAP_USER_VIEW, CAP_USER_MANAGE])
        True
        >>> has_any_capability(set(), [CAP_USER_VIEW])
        False
    """
    held = set(capabilities or ())
    return any(cap in held for cap in required)


def has_all_capabilities(capabilities: Optional[Iterable[str]], required: Iterable[str]) -> bool:
    """
    Check if a capability set contains every required capability.

    An empty requirement list is never satisfied.

    Examples:
        >>> has_all_capabilities({"USER_VIEW", "USER_MANAGE"}, [CAP_USER_VIEW, CAP_USER_MANAGE])
        True
        >>> has_all_capabilities({"USER_VIEW"}, [])
        False
    """
    required = list(required)
    if not required:
        return False
    held = set(capabilities or ())
    return all(cap in held for cap in required)


def get_missing_capabilities(capabilities: Optional[Iterable[str]], required: Iterable[str]) -> Set[str]:
    """
    Get required capabilities that are not held.

    Examples:
        >>> sorted(get_missing_capabilities({"USER_VIEW"}, [CAP_USER_VIEW, CAP_ROLE_MANAGE]))
        ['ROLE_MANAGE']
    """
    held = set(capabilities or ())
    return {cap for cap in required if cap not in held}


def has_document_bypass(capabilities: Optional[Iterable[str]]) -> bool:
    """True if the set holds ADMIN_ACCESS or DOCUMENT_FULL_ACCESS."""
    return has_any_capability(capabilities, DOCUMENT_BYPASS_CAPABILITIES)


# ============================================================================
# Capability Descriptions
# ============================================================================

# name -> (description, category)
CAPABILITY_DESCRIPTIONS = {
    CAP_ADMIN_ACCESS: ("Full system administration access", "system"),
    CAP_SYSTEM_CONFIG: ("System configuration management", "system"),
    CAP_USER_MANAGE: ("Create, update, delete users", "user"),
    CAP_USER_VIEW: ("View user information", "user"),
    CAP_ROLE_MANAGE: ("Manage roles and permissions", "user"),
    CAP_PERMISSION_MANAGE: ("Manage permissions", "user"),
    CAP_DOCUMENT_FULL_ACCESS: ("Full document management access", "document"),
    CAP_DOCUMENT_MANAGE: ("Organize and manage documents", "document"),
    CAP_DOCUMENT_VIEW: ("View documents", "document"),
    CAP_DOCUMENT_CREATE: ("Create new documents", "document"),
    CAP_DOCUMENT_EDIT: ("Edit documents", "document"),
    CAP_DOCUMENT_DELETE: ("Delete documents", "document"),
    CAP_DOCUMENT_APPROVE: ("Approve documents", "document"),
    CAP_DOCUMENT_PUBLISH: ("Publish documents", "document"),
    CAP_ORGANIZATION_MANAGE: ("Manage organizational units", "organization"),
    CAP_ORGANIZATION_VIEW: ("View organizational units", "organization"),
    CAP_ANALYTICS_VIEW: ("View analytics and reports", "analytics"),
    CAP_ANALYTICS_EXPORT: ("Export analytics data", "analytics"),
    CAP_AUDIT_VIEW: ("View audit logs", "audit"),
    CAP_WORKFLOW_MANAGE: ("Manage workflow configurations", "workflow"),
}
