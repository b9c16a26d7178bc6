"""
Role-Based Access Control (RBAC) module.

Provides role definitions and hierarchy checks, grant aggregation, document
access decisions, the workflow transition gate and its cached rule store.
"""

from .roles import (
    # Role constants
    ROLE_ADMINISTRATOR,
    ROLE_PPD,
    ROLE_KADIV,
    ROLE_GM,
    ROLE_MANAGER,
    ROLE_EDITOR,
    ROLE_DIRUT,
    ROLE_DEWAS,
    ROLE_KOMITE_AUDIT,
    ROLE_MEMBERS,
    ROLE_VIEWER,
    ROLE_GUEST,
    DEFAULT_ROLES,
    ROLE_ALIASES,
    # Classes
    Role,
    RoleCatalog,
    get_catalog,
)

from .capabilities import (
    CAP_ADMIN_ACCESS,
    CAP_DOCUMENT_FULL_ACCESS,
    CAP_ROLE_MANAGE,
    CAP_WORKFLOW_MANAGE,
    ALL_CAPABILITIES,
    has_capability,
    has_any_capability,
    has_all_capabilities,
    has_document_bypass,
)

from .errors import (
    RbacError,
    NotFoundError,
    InvalidInputError,
    StoreUnavailableError,
    RuleTableError,
    ConflictError,
    SystemRoleError,
)

from .types import (
    DocumentStatus,
    DocumentAccessDescriptor,
    Permission,
    RoleGrant,
    TransitionRule,
    normalize_status,
)

from .grants import (
    EffectiveGrants,
    GrantAggregator,
    has_full_module_access,
)

from .access import (
    can_access,
    can_subject_access,
    filter_accessible_documents,
    subject_access_reason,
)

from .transitions import (
    DEFAULT_TRANSITION_RULES,
    TransitionRuleStore,
)

from .workflow import (
    TransitionDecision,
    WorkflowGate,
)

from .engine import (
    AuthorizationEngine,
    configure_engine,
    get_engine,
    reset_engine,
)

__all__ = [
    # Roles
    "ROLE_ADMINISTRATOR",
    "ROLE_PPD",
    "ROLE_KADIV",
    "ROLE_GM",
    "ROLE_MANAGER",
    "ROLE_EDITOR",
    "ROLE_DIRUT",
    "ROLE_DEWAS",
    "ROLE_KOMITE_AUDIT",
    "ROLE_MEMBERS",
    "ROLE_VIEWER",
    "ROLE_GUEST",
    "DEFAULT_ROLES",
    "ROLE_ALIASES",
    "Role",
    "RoleCatalog",
    "get_catalog",
    # Capabilities
    "CAP_ADMIN_ACCESS",
    "CAP_DOCUMENT_FULL_ACCESS",
    "CAP_ROLE_MANAGE",
    "CAP_WORKFLOW_MANAGE",
    "ALL_CAPABILITIES",
    "has_capability",
    "has_any_capability",
    "has_all_capabilities",
    "has_document_bypass",
    # Errors
    "RbacError",
    "NotFoundError",
    "InvalidInputError",
    "StoreUnavailableError",
    "RuleTableError",
    "ConflictError",
    "SystemRoleError",
    # Types
    "DocumentStatus",
    "DocumentAccessDescriptor",
    "Permission",
    "RoleGrant",
    "TransitionRule",
    "normalize_status",
    # Grants
    "EffectiveGrants",
    "GrantAggregator",
    "has_full_module_access",
    # Documents
    "can_access",
    "can_subject_access",
    "filter_accessible_documents",
    "subject_access_reason",
    # Workflow
    "DEFAULT_TRANSITION_RULES",
    "TransitionRuleStore",
    "TransitionDecision",
    "WorkflowGate",
    # Engine
    "AuthorizationEngine",
    "configure_engine",
    "get_engine",
    "reset_engine",
]
