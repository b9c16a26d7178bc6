"""
Storage interfaces consumed by the authorization engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from .types import (
    Capability,
    CapabilityAssignment,
    DocumentAccessDescriptor,
    Permission,
    RoleGrant,
    TransitionRule,
    UserRoleAssignment,
)


class TransitionRuleSource(ABC):
    """Backing store for workflow transition rules."""

    @abstractmethod
    def fetch_transition_rules(self) -> List[TransitionRule]:
        """
        Fetch every configured transition rule, active or not.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        pass


class RbacRepository(TransitionRuleSource):
    """Read interface over persisted authorization configuration."""

    @abstractmethod
    def fetch_roles(self) -> List[Dict[str, Any]]:
        """Role rows: id, name, display_name, level, is_system, is_active."""
        pass

    @abstractmethod
    def fetch_role_aliases(self) -> Dict[str, str]:
        pass

    @abstractmethod
    def fetch_active_role_assignments(self, user_id: str) -> List[UserRoleAssignment]:
        pass

    @abstractmethod
    def fetch_permissions(self) -> List[Permission]:
        pass

    @abstractmethod
    def fetch_role_grants(self, role_ids: Iterable[str]) -> List[RoleGrant]:
        pass

    @abstractmethod
    def fetch_capabilities(self) -> List[Capability]:
        pass

    @abstractmethod
    def fetch_capability_assignments(self, role_ids: Iterable[str]) -> List[CapabilityAssignment]:
        pass

    @abstractmethod
    def fetch_document(self, document_id: str) -> Optional[DocumentAccessDescriptor]:
        pass


class RbacAdminRepository(RbacRepository):
    """Administrative mutations over authorization configuration."""

    @abstractmethod
    def create_transition_rule(self, rule: TransitionRule) -> TransitionRule:
        pass

    @abstractmethod
    def update_transition_rule(self, rule_id: str, changes: Dict[str, Any]) -> TransitionRule:
        pass

    @abstractmethod
    def delete_transition_rule(self, rule_id: str) -> None:
        pass

    @abstractmethod
    def update_role(self, role_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_role(self, role_id: str) -> None:
        pass

    @abstractmethod
    def count_role_assignments(self, role_id: str) -> int:
        """Number of active user assignments of a role."""
        pass
