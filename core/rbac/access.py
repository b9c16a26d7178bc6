"""
Document read/visibility decisions.

A single pure predicate decides whether a user may see a document. It is a
disjunction of six independent conditions; no condition has priority.
"""

import logging
from typing import Iterable, List, Optional

from .capabilities import has_document_bypass
from .grants import EffectiveGrants
from .types import DocumentAccessDescriptor

logger = logging.getLogger(__name__)


# ============================================================================
# Access Reasons
# ============================================================================

REASON_PUBLIC = "public"
REASON_OWNER = "owner"
REASON_GROUP_ID = "group_id"
REASON_GROUP_NAME = "group_name"
REASON_ROLE = "role"
REASON_CAPABILITY = "capability"
REASON_FULL_MODULE = "full_module"


def access_reason(
    doc: DocumentAccessDescriptor,
    user_id: Optional[str],
    user_group_id: Optional[str],
    user_group_name: Optional[str],
    user_role_names: Iterable[str],
    capabilities: Iterable[str],
) -> Optional[str]:
    """
    Name the first satisfied access condition, or None when access is denied.

    access_groups entries are matched against the group id, the group name
    and every role name of the user, since the stored list mixes all three.
    Names that collide across those namespaces are matched all the same.
    """
    if doc.is_public:
        return REASON_PUBLIC

    if user_id and doc.created_by_id == user_id:
        return REASON_OWNER

    groups = set(doc.access_groups or ())

    if user_group_id and user_group_id in groups:
        return REASON_GROUP_ID

    if user_group_name and user_group_name in groups:
        return REASON_GROUP_NAME

    if groups and any(role in groups for role in user_role_names or () if role):
        return REASON_ROLE

    if has_document_bypass(capabilities):
        return REASON_CAPABILITY

    return None


def can_access(
    doc: DocumentAccessDescriptor,
    user_id: Optional[str],
    user_group_id: Optional[str],
    user_group_name: Optional[str],
    user_role_names: Iterable[str],
    capabilities: Iterable[str],
) -> bool:
    """
    Decide whether a user may read a document.

    Access is granted if ANY of these hold:
    1. The document is public
    2. The user created it
    3. The user's group id is in access_groups
    4. The user's group name is in access_groups
    5. One of the user's role names is in access_groups
    6. The user holds ADMIN_ACCESS or DOCUMENT_FULL_ACCESS

    A private document with no access groups is visible to its owner and
    capability-bypass holders only.

    Args:
        doc: Access projection of the document
        user_id: Caller's user id (None for anonymous)
        user_group_id: Caller's group id, if any
        user_group_name: Caller's group display name, if any
        user_role_names: Caller's role names
        capabilities: Caller's effective capabilities

    Returns:
        True if access is granted

    Examples:
        >>> doc = DocumentAccessDescriptor(id="d1", created_by_id="u1")
        >>> can_access(doc, "u1", None, None, [], set())
        True
        >>> can_access(doc, "u2", None, None, [], set())
        False
    """
    return access_reason(
        doc, user_id, user_group_id, user_group_name, user_role_names, capabilities
    ) is not None


def subject_access_reason(
    doc: DocumentAccessDescriptor,
    grants: EffectiveGrants,
    user_group_id: Optional[str] = None,
    user_group_name: Optional[str] = None,
) -> Optional[str]:
    """
    access_reason with the user-side inputs taken from EffectiveGrants.

    Holders of the full document permission set may read every document;
    that is reported as "full_module" when no other condition holds.
    """
    reason = access_reason(
        doc,
        grants.user_id,
        user_group_id,
        user_group_name,
        grants.role_names,
        grants.capabilities,
    )
    if reason is None and grants.full_document_access:
        return REASON_FULL_MODULE
    return reason


def can_subject_access(
    doc: DocumentAccessDescriptor,
    grants: EffectiveGrants,
    user_group_id: Optional[str] = None,
    user_group_name: Optional[str] = None,
) -> bool:
    """can_access for an EffectiveGrants subject, including the full-module bypass."""
    return subject_access_reason(doc, grants, user_group_id, user_group_name) is not None


def filter_accessible_documents(
    docs: Iterable[DocumentAccessDescriptor],
    grants: EffectiveGrants,
    user_group_id: Optional[str] = None,
    user_group_name: Optional[str] = None,
) -> List[DocumentAccessDescriptor]:
    """
    Keep only the documents the user may see, preserving order.

    Args:
        docs: Candidate documents
        grants: Caller's effective grants
        user_group_id: Caller's group id
        user_group_name: Caller's group name

    Returns:
        Filtered list of documents
    """
    visible = []
    filtered_count = 0

    for doc in docs:
        if can_subject_access(doc, grants, user_group_id, user_group_name):
            visible.append(doc)
        else:
            filtered_count += 1

    if filtered_count > 0:
        logger.debug(
            f"Filtered {filtered_count} documents not visible to caller "
            f"(user_id={grants.user_id}, roles={list(grants.role_names)})"
        )

    return visible
