"""
Core data types for the authorization engine.

Configuration records (permissions, grants, capabilities, transition rules)
and the operational projections the engine reads (role assignments, document
access descriptors).
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidInputError

_PERMISSION_PATTERN = re.compile(r"^([a-z][a-z0-9_\-]*)\.([a-z][a-z0-9_\-]*)(?:\.([a-z][a-z0-9_\-]*))?$")
_STATUS_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")


# ============================================================================
# Document Status
# ============================================================================

class DocumentStatus(str, Enum):
    """Known document status values."""
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    EXPIRED = "EXPIRED"


INITIAL_STATUS = DocumentStatus.DRAFT

STATUS_DESCRIPTIONS: Dict[str, str] = {
    DocumentStatus.DRAFT.value: "Document is being created or edited. Ready for review submission.",
    DocumentStatus.PENDING_REVIEW.value: "Document is currently being reviewed.",
    DocumentStatus.PENDING_APPROVAL.value: "Document reviewed and awaiting approval.",
    DocumentStatus.APPROVED.value: "Document approved and ready for publication.",
    DocumentStatus.REJECTED.value: "Document rejected and needs revision.",
    DocumentStatus.PUBLISHED.value: "Document is published and accessible to users.",
    DocumentStatus.ARCHIVED.value: "Document archived and no longer active.",
    DocumentStatus.EXPIRED.value: "Published document has reached its expiration date.",
}


def normalize_status(status: Any) -> str:
    """
    Normalize a status value to its canonical upper-case string.

    Statuses are data-driven, so values outside DocumentStatus are accepted
    as long as they are well-formed.

    Raises:
        InvalidInputError: If the value is empty or malformed

    Examples:
        >>> normalize_status("draft")
        'DRAFT'
        >>> normalize_status(DocumentStatus.APPROVED)
        'APPROVED'
    """
    if isinstance(status, DocumentStatus):
        return status.value
    if not isinstance(status, str):
        raise InvalidInputError(f"status must be a string, got {type(status).__name__}")

    value = status.strip().upper()
    if not _STATUS_PATTERN.match(value):
        raise InvalidInputError(f"malformed status: {status!r}")
    return value


# ============================================================================
# Permissions and Grants
# ============================================================================

@dataclass(frozen=True)
class Permission:
    """
    Fine-grained permission identified by its name.

    Names are "module.action", optionally scoped as "module.action.resource"
    (e.g. "documents.read.own"). The name is the identity; module and action
    are descriptive and may differ from the name ("users.profile" is an
    update of the user's own profile).
    """
    id: str
    name: str
    module: str
    action: str
    resource: Optional[str] = None

    def __post_init__(self):
        if not is_permission_name(self.name):
            raise InvalidInputError(f"permission name must be 'module.action', got {self.name!r}")
        if not self.module or not self.action:
            raise InvalidInputError(f"permission {self.name!r} needs a module and an action")

    @classmethod
    def from_name(cls, name: str, id: Optional[str] = None, resource: Optional[str] = None) -> "Permission":
        """
        Build a permission from its name.

        Examples:
            >>> Permission.from_name("documents.read").action
            'read'
            >>> Permission.from_name("documents.read.own").resource
            'own'
        """
        normalized = (name or "").strip().lower()
        match = _PERMISSION_PATTERN.match(normalized)
        if not match:
            raise InvalidInputError(f"permission name must be 'module.action', got {name!r}")
        module, action, scope = match.groups()
        return cls(id=id or normalized, name=normalized,
                   module=module, action=action, resource=resource or scope)


def is_permission_name(name: Any) -> bool:
    return isinstance(name, str) and bool(_PERMISSION_PATTERN.match(name))


def permission_name(module: str, action: str) -> str:
    return f"{module}.{action}"


class GrantState(str, Enum):
    """
    Three-valued permission state of one role.

    Only aggregation collapses this to a boolean, so the reason for a denial
    stays reconstructable.
    """
    GRANTED = "granted"
    DENIED = "denied"
    ABSENT = "absent"


@dataclass(frozen=True)
class RoleGrant:
    """Permission record of a role. At most one exists per (role, permission)."""
    role_id: str
    permission_id: str
    is_granted: bool

    @property
    def state(self) -> GrantState:
        return GrantState.GRANTED if self.is_granted else GrantState.DENIED


@dataclass(frozen=True)
class Capability:
    """Coarse, binary role-scoped flag."""
    id: str
    name: str
    description: str = ""
    category: str = "general"


@dataclass(frozen=True)
class CapabilityAssignment:
    """Presence means granted. There is no deny state."""
    role_id: str
    capability_id: str


@dataclass(frozen=True)
class UserRoleAssignment:
    user_id: str
    role_id: str
    is_active: bool = True
    assigned_at: Optional[datetime] = None


# ============================================================================
# Documents
# ============================================================================

@dataclass(frozen=True)
class DocumentAccessDescriptor:
    """
    Access-relevant projection of a document.

    access_groups is an untyped list that may hold group ids, group display
    names or role names interchangeably.
    """
    id: str
    created_by_id: Optional[str]
    is_public: bool = False
    access_groups: Tuple[str, ...] = ()
    status: Optional[str] = None

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "DocumentAccessDescriptor":
        groups = row.get("access_groups") or ()
        return cls(
            id=str(row["id"]),
            created_by_id=row.get("created_by_id"),
            is_public=bool(row.get("is_public", False)),
            access_groups=tuple(str(g) for g in groups),
            status=row.get("status"),
        )


# ============================================================================
# Workflow Transition Rules
# ============================================================================

@dataclass(frozen=True)
class TransitionRule:
    """Configured edge of the document status state machine."""
    from_status: str
    to_status: str
    min_level: int
    required_permission: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0
    description: str = ""
    allowed_by_label: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "from_status", normalize_status(self.from_status))
        object.__setattr__(self, "to_status", normalize_status(self.to_status))

        if not isinstance(self.min_level, int) or isinstance(self.min_level, bool):
            raise InvalidInputError(f"min_level must be an integer, got {self.min_level!r}")
        if not 0 <= self.min_level <= 100:
            raise InvalidInputError(f"min_level must be between 0 and 100, got {self.min_level}")
        if not isinstance(self.sort_order, int) or isinstance(self.sort_order, bool):
            raise InvalidInputError(f"sort_order must be an integer, got {self.sort_order!r}")

        if self.required_permission is not None:
            required = self.required_permission.strip()
            if not required:
                object.__setattr__(self, "required_permission", None)
            elif not _PERMISSION_PATTERN.match(required):
                raise InvalidInputError(
                    f"required_permission must be 'module.action', got {self.required_permission!r}"
                )
            else:
                object.__setattr__(self, "required_permission", required)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.from_status, self.to_status)

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "TransitionRule":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            from_status=row["from_status"],
            to_status=row["to_status"],
            min_level=int(row.get("min_level", 0)),
            required_permission=row.get("required_permission"),
            is_active=bool(row.get("is_active", True)),
            sort_order=int(row.get("sort_order", 0)),
            description=row.get("description") or "",
            allowed_by_label=row.get("allowed_by_label"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RbacSnapshot:
    """Complete authorization configuration held in memory."""
    roles: List[Dict[str, Any]] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)
    permissions: List[Permission] = field(default_factory=list)
    role_grants: List[RoleGrant] = field(default_factory=list)
    capabilities: List[Capability] = field(default_factory=list)
    capability_assignments: List[CapabilityAssignment] = field(default_factory=list)
    user_roles: List[UserRoleAssignment] = field(default_factory=list)
    documents: List[DocumentAccessDescriptor] = field(default_factory=list)
    transition_rules: List[TransitionRule] = field(default_factory=list)
