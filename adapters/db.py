# adapters/db.py — Supabase-backed authorization repository

import logging
from typing import List, Dict, Any, Iterable, Optional

from core.rbac.errors import NotFoundError, StoreUnavailableError
from core.rbac.interfaces import RbacAdminRepository
from core.rbac.roles import ROLE_ALIASES
from core.rbac.types import (
    Capability,
    CapabilityAssignment,
    DocumentAccessDescriptor,
    Permission,
    RoleGrant,
    TransitionRule,
    UserRoleAssignment,
)

logger = logging.getLogger(__name__)

ROLES_TABLE = "roles"
PERMISSIONS_TABLE = "permissions"
ROLE_PERMISSIONS_TABLE = "role_permissions"
CAPABILITIES_TABLE = "role_capabilities"
CAPABILITY_ASSIGNMENTS_TABLE = "role_capability_assignments"
USER_ROLES_TABLE = "user_roles"
DOCUMENTS_TABLE = "documents"
TRANSITIONS_TABLE = "workflow_transitions"

ROLE_COLUMNS = "id,name,display_name,level,is_system,is_active"
DOCUMENT_COLUMNS = "id,created_by_id,is_public,access_groups,status"


class SupabaseRbacRepository(RbacAdminRepository):
    """
    Authorization configuration stored in Supabase (PostgREST).

    Every failure to reach the store surfaces as StoreUnavailableError so
    callers can fall back or fail closed.
    """

    def __init__(self, client=None):
        if client is None:
            from vendors.supabase_client import get_client
            client = get_client()
        self.client = client

    def _execute(self, description: str, query):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Supabase {description} failed: {e}")
            raise StoreUnavailableError(f"{description} failed: {e}") from e

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def fetch_roles(self) -> List[Dict[str, Any]]:
        result = self._execute("fetch roles", self.client.table(ROLES_TABLE).select(ROLE_COLUMNS))
        return list(result.data or [])

    def fetch_role_aliases(self) -> Dict[str, str]:
        # Legacy names are a code-level mapping, not stored
        return dict(ROLE_ALIASES)

    def fetch_active_role_assignments(self, user_id: str) -> List[UserRoleAssignment]:
        result = self._execute(
            "fetch role assignments",
            self.client.table(USER_ROLES_TABLE)
            .select("user_id,role_id,is_active,assigned_at")
            .eq("user_id", user_id)
            .eq("is_active", True),
        )
        return [
            UserRoleAssignment(
                user_id=row["user_id"],
                role_id=str(row["role_id"]),
                is_active=bool(row.get("is_active", True)),
                assigned_at=row.get("assigned_at"),
            )
            for row in result.data or []
        ]

    def fetch_permissions(self) -> List[Permission]:
        result = self._execute(
            "fetch permissions",
            self.client.table(PERMISSIONS_TABLE).select("id,name,module,action,resource"),
        )
        permissions = []
        for row in result.data or []:
            try:
                permissions.append(Permission(
                    id=str(row["id"]),
                    name=row["name"],
                    module=row.get("module") or row["name"].split(".")[0],
                    action=row.get("action") or row["name"].split(".")[-1],
                    resource=row.get("resource"),
                ))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping malformed permission row {row.get('id')}: {e}")
        return permissions

    def fetch_role_grants(self, role_ids: Iterable[str]) -> List[RoleGrant]:
        role_ids = list(role_ids)
        if not role_ids:
            return []
        result = self._execute(
            "fetch role grants",
            self.client.table(ROLE_PERMISSIONS_TABLE)
            .select("role_id,permission_id,is_granted")
            .in_("role_id", role_ids),
        )
        return [
            RoleGrant(
                role_id=str(row["role_id"]),
                permission_id=str(row["permission_id"]),
                is_granted=bool(row.get("is_granted")),
            )
            for row in result.data or []
        ]

    def fetch_capabilities(self) -> List[Capability]:
        result = self._execute(
            "fetch capabilities",
            self.client.table(CAPABILITIES_TABLE).select("id,name,description,category"),
        )
        return [
            Capability(
                id=str(row["id"]),
                name=row["name"],
                description=row.get("description") or "",
                category=row.get("category") or "general",
            )
            for row in result.data or []
        ]

    def fetch_capability_assignments(self, role_ids: Iterable[str]) -> List[CapabilityAssignment]:
        role_ids = list(role_ids)
        if not role_ids:
            return []
        result = self._execute(
            "fetch capability assignments",
            self.client.table(CAPABILITY_ASSIGNMENTS_TABLE)
            .select("role_id,capability_id")
            .in_("role_id", role_ids),
        )
        return [
            CapabilityAssignment(role_id=str(row["role_id"]), capability_id=str(row["capability_id"]))
            for row in result.data or []
        ]

    def fetch_document(self, document_id: str) -> Optional[DocumentAccessDescriptor]:
        result = self._execute(
            "fetch document",
            self.client.table(DOCUMENTS_TABLE).select(DOCUMENT_COLUMNS).eq("id", document_id).limit(1),
        )
        rows = result.data or []
        return DocumentAccessDescriptor.from_record(rows[0]) if rows else None

    def fetch_transition_rules(self) -> List[TransitionRule]:
        result = self._execute(
            "fetch transition rules",
            self.client.table(TRANSITIONS_TABLE).select("*").order("sort_order"),
        )
        rules = []
        for row in result.data or []:
            try:
                rules.append(TransitionRule.from_record(row))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed transition rule {row.get('id')}: {e}")
        return rules

    # ------------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------------

    def create_transition_rule(self, rule: TransitionRule) -> TransitionRule:
        row = rule.to_dict()
        if row.get("id") is None:
            row.pop("id")
        result = self._execute("create transition rule", self.client.table(TRANSITIONS_TABLE).insert(row))
        return TransitionRule.from_record(result.data[0]) if result.data else rule

    def update_transition_rule(self, rule_id: str, changes: Dict[str, Any]) -> TransitionRule:
        result = self._execute(
            "update transition rule",
            self.client.table(TRANSITIONS_TABLE).update(changes).eq("id", rule_id),
        )
        if not result.data:
            raise NotFoundError(f"Transition rule {rule_id} not found")
        return TransitionRule.from_record(result.data[0])

    def delete_transition_rule(self, rule_id: str) -> None:
        result = self._execute(
            "delete transition rule",
            self.client.table(TRANSITIONS_TABLE).delete().eq("id", rule_id),
        )
        if not result.data:
            raise NotFoundError(f"Transition rule {rule_id} not found")

    def update_role(self, role_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        result = self._execute(
            "update role",
            self.client.table(ROLES_TABLE).update(changes).eq("id", role_id),
        )
        if not result.data:
            raise NotFoundError(f"Role {role_id} not found")
        return result.data[0]

    def delete_role(self, role_id: str) -> None:
        """Delete a role together with its permission grants and capability assignments."""
        self._execute(
            "delete role grants",
            self.client.table(ROLE_PERMISSIONS_TABLE).delete().eq("role_id", role_id),
        )
        self._execute(
            "delete role capability assignments",
            self.client.table(CAPABILITY_ASSIGNMENTS_TABLE).delete().eq("role_id", role_id),
        )
        result = self._execute(
            "delete role",
            self.client.table(ROLES_TABLE).delete().eq("id", role_id),
        )
        if not result.data:
            raise NotFoundError(f"Role {role_id} not found")

    def count_role_assignments(self, role_id: str) -> int:
        result = self._execute(
            "count role assignments",
            self.client.table(USER_ROLES_TABLE)
            .select("id", count="exact")
            .eq("role_id", role_id)
            .eq("is_active", True),
        )
        return result.count or 0
