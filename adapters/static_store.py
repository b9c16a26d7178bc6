"""
In-process authorization repository backed by an RbacSnapshot.

Serves configuration loaded from YAML (see core.config_loader) and supports
the admin mutations in memory. Used for the static backend, the CLI and
tests.
"""

import logging
import threading
import uuid
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from core.config_loader import load_rbac_config
from core.rbac.errors import NotFoundError
from core.rbac.interfaces import RbacAdminRepository
from core.rbac.types import (
    Capability,
    CapabilityAssignment,
    DocumentAccessDescriptor,
    Permission,
    RbacSnapshot,
    RoleGrant,
    TransitionRule,
    UserRoleAssignment,
)

logger = logging.getLogger(__name__)


class StaticRbacRepository(RbacAdminRepository):
    """Thread-safe in-memory repository."""

    def __init__(self, snapshot: Optional[RbacSnapshot] = None):
        self._snapshot = snapshot or RbacSnapshot()
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config_path: Optional[str] = None) -> "StaticRbacRepository":
        return cls(load_rbac_config(config_path))

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def fetch_roles(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._snapshot.roles]

    def fetch_role_aliases(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._snapshot.aliases)

    def fetch_active_role_assignments(self, user_id: str) -> List[UserRoleAssignment]:
        with self._lock:
            return [a for a in self._snapshot.user_roles if a.user_id == user_id and a.is_active]

    def fetch_permissions(self) -> List[Permission]:
        with self._lock:
            return list(self._snapshot.permissions)

    def fetch_role_grants(self, role_ids: Iterable[str]) -> List[RoleGrant]:
        wanted = set(role_ids)
        with self._lock:
            return [g for g in self._snapshot.role_grants if g.role_id in wanted]

    def fetch_capabilities(self) -> List[Capability]:
        with self._lock:
            return list(self._snapshot.capabilities)

    def fetch_capability_assignments(self, role_ids: Iterable[str]) -> List[CapabilityAssignment]:
        wanted = set(role_ids)
        with self._lock:
            return [a for a in self._snapshot.capability_assignments if a.role_id in wanted]

    def fetch_document(self, document_id: str) -> Optional[DocumentAccessDescriptor]:
        with self._lock:
            for doc in self._snapshot.documents:
                if doc.id == document_id:
                    return doc
        return None

    def fetch_transition_rules(self) -> List[TransitionRule]:
        with self._lock:
            return list(self._snapshot.transition_rules)

    # ------------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------------

    def create_transition_rule(self, rule: TransitionRule) -> TransitionRule:
        created = replace(rule, id=rule.id or f"rule-{uuid.uuid4().hex[:12]}")
        with self._lock:
            self._snapshot.transition_rules.append(created)
        return created

    def update_transition_rule(self, rule_id: str, changes: Dict[str, Any]) -> TransitionRule:
        with self._lock:
            rules = self._snapshot.transition_rules
            for i, rule in enumerate(rules):
                if rule.id == rule_id:
                    rules[i] = replace(rule, **changes)
                    return rules[i]
        raise NotFoundError(f"Transition rule {rule_id} not found")

    def delete_transition_rule(self, rule_id: str) -> None:
        with self._lock:
            before = len(self._snapshot.transition_rules)
            self._snapshot.transition_rules = [r for r in self._snapshot.transition_rules if r.id != rule_id]
            if len(self._snapshot.transition_rules) == before:
                raise NotFoundError(f"Transition rule {rule_id} not found")

    def update_role(self, role_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            for row in self._snapshot.roles:
                if str(row["id"]) == role_id:
                    row.update(changes)
                    return dict(row)
        raise NotFoundError(f"Role {role_id} not found")

    def delete_role(self, role_id: str) -> None:
        with self._lock:
            before = len(self._snapshot.roles)
            self._snapshot.roles = [r for r in self._snapshot.roles if str(r["id"]) != role_id]
            if len(self._snapshot.roles) == before:
                raise NotFoundError(f"Role {role_id} not found")
            self._snapshot.role_grants = [g for g in self._snapshot.role_grants if g.role_id != role_id]
            self._snapshot.capability_assignments = [
                a for a in self._snapshot.capability_assignments if a.role_id != role_id
            ]

    def count_role_assignments(self, role_id: str) -> int:
        with self._lock:
            return sum(1 for a in self._snapshot.user_roles if a.role_id == role_id and a.is_active)
