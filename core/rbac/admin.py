"""
Administrative mutations of authorization configuration.

Every transition rule mutation invalidates the rule cache synchronously
before returning, so the next decision made anywhere in the process sees
the new rule set.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .errors import ConflictError, InvalidInputError, NotFoundError, SystemRoleError
from .interfaces import RbacAdminRepository
from .roles import MAX_LEVEL, MIN_LEVEL, is_valid_role_name
from .transitions import TransitionRuleStore
from .types import TransitionRule, normalize_status

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "from_status",
    "to_status",
    "min_level",
    "required_permission",
    "is_active",
    "sort_order",
    "description",
    "allowed_by_label",
)

ROLE_MUTABLE_FIELDS = ("name", "display_name", "level", "is_active")


# ============================================================================
# Workflow Rules
# ============================================================================

class WorkflowRuleService:
    """CRUD over transition rules with cache invalidation."""

    def __init__(self, repository: RbacAdminRepository, store: TransitionRuleStore):
        self.repository = repository
        self.store = store

    def list_rules(self, from_status: Optional[str] = None) -> List[TransitionRule]:
        """
        Rules as persisted, including inactive ones, by sort_order.

        Reads the backing store directly rather than the cache.
        """
        rules = self.repository.fetch_transition_rules()
        if from_status is not None:
            source = normalize_status(from_status)
            rules = [r for r in rules if r.from_status == source]
        return sorted(rules, key=lambda r: (r.sort_order, r.from_status, r.to_status))

    def get_rule(self, rule_id: str) -> TransitionRule:
        for rule in self.repository.fetch_transition_rules():
            if rule.id == rule_id:
                return rule
        raise NotFoundError(f"Transition rule {rule_id} not found")

    def create_rule(self, data: Dict[str, Any]) -> TransitionRule:
        """
        Create a transition rule.

        Raises:
            InvalidInputError: If a field is malformed
            ConflictError: If a rule for (from_status, to_status) exists
        """
        rule = TransitionRule(**_pick(data, RULE_FIELDS))
        self._ensure_unique(rule)

        try:
            created = self.repository.create_transition_rule(rule)
        finally:
            self.store.invalidate()

        logger.info(f"Created transition rule {created.from_status} -> {created.to_status} (id={created.id})")
        return created

    def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> TransitionRule:
        """
        Apply a partial update to a transition rule.

        Raises:
            NotFoundError: If the rule does not exist
            InvalidInputError: If the merged rule is malformed
            ConflictError: If the new (from, to) pair collides with another rule
        """
        existing = self.get_rule(rule_id)
        fields = _pick(changes, RULE_FIELDS)
        if not fields:
            return existing

        merged = replace(existing, **fields)
        if merged.key != existing.key:
            self._ensure_unique(merged, ignore_id=rule_id)

        try:
            updated = self.repository.update_transition_rule(rule_id, _rule_changes(merged, fields))
        finally:
            self.store.invalidate()

        logger.info(f"Updated transition rule {rule_id}: {sorted(fields)}")
        return updated

    def delete_rule(self, rule_id: str) -> None:
        """
        Delete a transition rule.

        Raises:
            NotFoundError: If the rule does not exist
        """
        self.get_rule(rule_id)

        try:
            self.repository.delete_transition_rule(rule_id)
        finally:
            self.store.invalidate()

        logger.info(f"Deleted transition rule {rule_id}")

    def _ensure_unique(self, rule: TransitionRule, ignore_id: Optional[str] = None) -> None:
        for other in self.repository.fetch_transition_rules():
            if other.key == rule.key and other.id != ignore_id:
                raise ConflictError(
                    f"Transition rule {rule.from_status} -> {rule.to_status} already exists (id={other.id})"
                )


def _pick(data: Dict[str, Any], allowed) -> Dict[str, Any]:
    unknown = set(data) - set(allowed) - {"id"}
    if unknown:
        raise InvalidInputError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return {k: v for k, v in data.items() if k in allowed}


def _rule_changes(merged: TransitionRule, fields: Dict[str, Any]) -> Dict[str, Any]:
    # Normalized values from the validated rule, limited to the changed keys
    values = merged.to_dict()
    return {k: values[k] for k in fields}


# ============================================================================
# Roles
# ============================================================================

class RoleAdminService:
    """
    Role mutations.

    System roles can be neither updated nor deleted. A role still held by
    a user cannot be deleted.
    """

    def __init__(self, repository: RbacAdminRepository):
        self.repository = repository

    def list_roles(self) -> List[Dict[str, Any]]:
        return sorted(self.repository.fetch_roles(), key=lambda r: (-int(r.get("level", 0)), r["name"]))

    def get_role(self, role_id: str) -> Dict[str, Any]:
        for row in self.repository.fetch_roles():
            if str(row["id"]) == role_id:
                return row
        raise NotFoundError(f"Role {role_id} not found")

    def update_role(self, role_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a role's name, display name, level or active flag.

        Raises:
            NotFoundError: If the role does not exist
            SystemRoleError: If the role is a system role
            InvalidInputError: If a field is malformed
            ConflictError: If the new name is taken
        """
        role = self.get_role(role_id)
        if role.get("is_system"):
            raise SystemRoleError(f"Cannot update system role {role['name']}")

        fields = _pick(changes, ROLE_MUTABLE_FIELDS)

        if "level" in fields:
            level = fields["level"]
            if not isinstance(level, int) or isinstance(level, bool) or not MIN_LEVEL <= level <= MAX_LEVEL:
                raise InvalidInputError(f"role level must be between {MIN_LEVEL} and {MAX_LEVEL}, got {level!r}")

        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not is_valid_role_name(name):
                raise InvalidInputError(f"malformed role name: {fields['name']!r}")
            fields["name"] = name
            if name.lower() != role["name"].lower():
                for other in self.repository.fetch_roles():
                    if other["name"].lower() == name.lower():
                        raise ConflictError(f"Role name {name} already exists")

        if not fields:
            return role

        updated = self.repository.update_role(role_id, fields)
        logger.info(f"Updated role {role['name']}: {sorted(fields)}")
        if "name" in fields:
            self._warn_dangling_aliases(role["name"], fields["name"])
        return updated

    def _warn_dangling_aliases(self, old_name: str, new_name: str) -> None:
        if old_name.lower() == new_name.lower():
            return
        dangling = sorted(
            alias for alias, target in self.repository.fetch_role_aliases().items()
            if target.lower() == old_name.lower()
        )
        if dangling:
            logger.warning(
                f"Role {old_name} renamed to {new_name}; aliases {dangling} still point to "
                f"{old_name} and will no longer resolve"
            )

    def delete_role(self, role_id: str) -> None:
        """
        Delete a role.

        Raises:
            NotFoundError: If the role does not exist
            SystemRoleError: If the role is a system role
            ConflictError: If users still hold the role
        """
        role = self.get_role(role_id)
        if role.get("is_system"):
            raise SystemRoleError(f"Cannot delete system role {role['name']}")

        holders = self.repository.count_role_assignments(role_id)
        if holders > 0:
            raise ConflictError(f"Cannot delete role {role['name']}: assigned to {holders} users")

        self.repository.delete_role(role_id)
        logger.info(f"Deleted role {role['name']}")
