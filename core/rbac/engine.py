"""
Authorization engine facade.

Wires the role catalog, grant aggregation, document access evaluation and
the workflow gate behind one object so request handlers and the CLI ask a
single question per decision.
"""

import logging
from typing import List, Optional, Sequence, Union

from core.metrics import record_access_decision

from .access import subject_access_reason
from .errors import InvalidInputError
from .grants import (
    DOCUMENTS_MODULE,
    DOCUMENT_CORE_ACTIONS,
    EffectiveGrants,
    GrantAggregator,
    PermissionExplanation,
)
from .interfaces import RbacRepository
from .roles import RoleCatalog
from .transitions import TransitionRuleStore
from .types import DocumentAccessDescriptor, TransitionRule
from .workflow import TransitionDecision, WorkflowGate

logger = logging.getLogger(__name__)


class AuthorizationEngine:
    """
    Answers "may this user do X" for documents and workflow transitions.

    Grants are computed once per subject via subject_for() and then passed
    to every decision, so a request never re-aggregates roles.
    """

    def __init__(
        self,
        repository: RbacRepository,
        rule_store: Optional[TransitionRuleStore] = None,
        catalog: Optional[RoleCatalog] = None,
        full_access_module: str = DOCUMENTS_MODULE,
        full_access_actions: Sequence[str] = DOCUMENT_CORE_ACTIONS,
    ):
        """
        Initialize the engine.

        Args:
            repository: Source of roles, grants, capabilities and documents
            rule_store: Transition rule cache (defaults to one over repository)
            catalog: Role catalog (defaults to one built from repository roles)
            full_access_module: Module whose full permission set bypasses checks
            full_access_actions: Actions that make up that full set
        """
        self.repository = repository
        self.full_access_module = full_access_module
        self.full_access_actions = tuple(full_access_actions)
        self.rule_store = rule_store or TransitionRuleStore(source=repository)
        self.gate = WorkflowGate(self.rule_store)
        self._use_catalog(catalog or self._load_catalog())

    def _load_catalog(self) -> RoleCatalog:
        return RoleCatalog.from_records(
            self.repository.fetch_roles(), self.repository.fetch_role_aliases() or None
        )

    def _use_catalog(self, catalog: RoleCatalog) -> None:
        self.catalog = catalog
        self.aggregator = GrantAggregator(
            self.repository,
            catalog=catalog,
            full_access_module=self.full_access_module,
            full_access_actions=self.full_access_actions,
        )

    def reload_roles(self) -> None:
        """Rebuild the role catalog after a role mutation."""
        self._use_catalog(self._load_catalog())
        logger.info(f"Reloaded role catalog ({len(self.catalog.list_roles())} roles)")

    # ------------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------------

    def subject_for(self, user_id: Optional[str]) -> EffectiveGrants:
        return self.aggregator.grants_for_user(user_id)

    def subject_for_role_names(self, user_id: Optional[str], role_names: Sequence[str]) -> EffectiveGrants:
        """
        Build grants from raw role names instead of stored assignments.

        Names are normalized through the catalog; unknown or malformed names
        are dropped.
        """
        role_ids = []
        for name in role_names:
            try:
                role = self.catalog.normalize(name)
            except InvalidInputError as e:
                logger.warning(f"Ignoring role for user {user_id}: {e}")
                continue
            if role is not None:
                role_ids.append(role.id)
        return self.aggregator.grants_for_roles(user_id, role_ids)

    def explain_permission(self, grants: EffectiveGrants, permission: str) -> PermissionExplanation:
        return self.aggregator.explain_permission(grants.role_ids, permission)

    # ------------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------------

    def document_access(
        self,
        grants: EffectiveGrants,
        document: Union[str, DocumentAccessDescriptor],
        user_group_id: Optional[str] = None,
        user_group_name: Optional[str] = None,
    ) -> Optional[str]:
        """
        Name the condition granting access, or None if denied.

        A document id that does not resolve is denied.
        """
        doc = document
        if not isinstance(document, DocumentAccessDescriptor):
            doc = self.repository.fetch_document(document)
            if doc is None:
                logger.info(f"Document {document} not found, denying access")
                record_access_decision(allowed=False)
                return None

        reason = subject_access_reason(doc, grants, user_group_id, user_group_name)
        record_access_decision(allowed=reason is not None, reason=reason)
        return reason

    def can_access_document(
        self,
        grants: EffectiveGrants,
        document: Union[str, DocumentAccessDescriptor],
        user_group_id: Optional[str] = None,
        user_group_name: Optional[str] = None,
    ) -> bool:
        return self.document_access(grants, document, user_group_id, user_group_name) is not None

    # ------------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------------

    def check_transition(self, grants: EffectiveGrants, from_status, to_status) -> TransitionDecision:
        return self.gate.check_for(grants, from_status, to_status)

    def is_transition_allowed(self, grants: EffectiveGrants, from_status, to_status) -> bool:
        return self.check_transition(grants, from_status, to_status).allowed

    def allowed_transitions(self, grants: EffectiveGrants, from_status) -> List[TransitionRule]:
        return self.gate.allowed_for(grants, from_status)

    def invalidate_rules(self) -> None:
        self.rule_store.invalidate()


# ============================================================================
# Global Engine Instance
# ============================================================================

_global_engine: Optional[AuthorizationEngine] = None


def get_engine() -> AuthorizationEngine:
    """
    Get the global authorization engine.

    Raises:
        RuntimeError: If configure_engine() has not been called
    """
    if _global_engine is None:
        raise RuntimeError("Authorization engine not configured")
    return _global_engine


def configure_engine(engine: AuthorizationEngine) -> AuthorizationEngine:
    """Install the global authorization engine."""
    global _global_engine

    if _global_engine is not None and _global_engine is not engine:
        _global_engine.rule_store.close()
    _global_engine = engine

    logger.info("Configured global authorization engine")
    return engine


def reset_engine() -> None:
    """Reset the global engine (useful for testing)."""
    global _global_engine

    if _global_engine is not None:
        _global_engine.rule_store.close()
    _global_engine = None
