"""
Configuration loader for file-based authorization configuration.

Loads and validates a YAML file describing roles, aliases, permissions,
grants, capabilities, user role assignments, documents and workflow
transition rules, with safe defaults and error handling. Invalid entries
are skipped with a warning; skipping always removes access, never adds it.

Example file::

    roles:
      - {id: role-editor, name: editor, display_name: Editor, level: 50}
    grants:
      role-editor:
        granted: [documents.read, documents.update]
        denied: [documents.delete]
    role_capabilities:
      role-editor: [DOCUMENT_EDIT]
    user_roles:
      - {user_id: u-1, role: editor}
    transition_rules:
      - {from_status: DRAFT, to_status: PENDING_REVIEW, min_level: 50,
         required_permission: documents.update}
"""

import yaml
import logging
from pathlib import Path
from typing import List, Dict, Any, Optional

from core.rbac.capabilities import ALL_CAPABILITIES, CAPABILITY_DESCRIPTIONS
from core.rbac.errors import InvalidInputError
from core.rbac.roles import DEFAULT_ROLES, ROLE_ALIASES, Role
from core.rbac.transitions import DEFAULT_TRANSITION_RULES
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

DEFAULT_CONFIG_PATH = Path("config") / "rbac.yaml"


# ============================================================================
# Default Configuration
# ============================================================================

def default_capabilities() -> List[Capability]:
    return [
        Capability(
            id=name,
            name=name,
            description=CAPABILITY_DESCRIPTIONS.get(name, ("", "general"))[0],
            category=CAPABILITY_DESCRIPTIONS.get(name, ("", "general"))[1],
        )
        for name in sorted(ALL_CAPABILITIES)
    ]


def default_snapshot() -> RbacSnapshot:
    """
    Configuration used when no file is available.

    Built-in roles, aliases, capabilities and the seeded workflow. No role
    holds any grant, so nobody is allowed anything beyond public documents.
    """
    return RbacSnapshot(
        roles=[role.to_dict() for role in DEFAULT_ROLES],
        aliases=dict(ROLE_ALIASES),
        capabilities=default_capabilities(),
        transition_rules=list(DEFAULT_TRANSITION_RULES),
    )


# ============================================================================
# Parsing
# ============================================================================

class _SnapshotBuilder:
    """Parses one configuration mapping into an RbacSnapshot."""

    def __init__(self, data: Dict[str, Any]):
        self.data = data
        self.snapshot = RbacSnapshot()
        self._role_ids: Dict[str, str] = {}
        self._permissions: Dict[str, Permission] = {}
        self._capabilities: Dict[str, Capability] = {}

    def build(self) -> RbacSnapshot:
        self._parse_roles()
        self._parse_aliases()
        self._parse_permissions()
        self._parse_grants()
        self._parse_capabilities()
        self._parse_role_capabilities()
        self._parse_user_roles()
        self._parse_documents()
        self._parse_transition_rules()

        self.snapshot.permissions = list(self._permissions.values())
        self.snapshot.capabilities = list(self._capabilities.values())
        return self.snapshot

    def _section(self, key: str, expected: type, default):
        value = self.data.get(key, default)
        if value is None:
            return default
        if not isinstance(value, expected):
            logger.warning(f"Section '{key}' must be a {expected.__name__}, got {type(value).__name__}. Ignoring.")
            return default
        return value

    def _role_id(self, ref: Any) -> Optional[str]:
        """Resolve a role reference given by id or by name."""
        if not isinstance(ref, str) or not ref.strip():
            return None
        ref = ref.strip()
        if ref in self._role_ids.values():
            return ref
        return self._role_ids.get(ref.lower())

    def _parse_roles(self) -> None:
        rows = self._section("roles", list, None)
        if rows is None:
            rows = [role.to_dict() for role in DEFAULT_ROLES]

        for i, item in enumerate(rows):
            try:
                if not isinstance(item, dict) or "name" not in item:
                    raise InvalidInputError("role entry needs a name")
                role = Role(
                    id=str(item.get("id") or f"role-{item['name']}"),
                    name=str(item["name"]),
                    display_name=str(item.get("display_name") or item["name"]),
                    level=item.get("level", 0),
                    is_system=bool(item.get("is_system", False)),
                    is_active=bool(item.get("is_active", True)),
                )
            except (ValueError, TypeError) as e:
                logger.warning(f"Invalid role entry {i}: {e}. Skipping.")
                continue

            if role.name.lower() in self._role_ids:
                logger.warning(f"Duplicate role name {role.name}. Skipping.")
                continue
            self._role_ids[role.name.lower()] = role.id
            self.snapshot.roles.append(role.to_dict())

    def _parse_aliases(self) -> None:
        aliases = self._section("aliases", dict, None)
        if aliases is None:
            aliases = ROLE_ALIASES
        self.snapshot.aliases = {
            str(alias).strip().lower(): str(target).strip().lower()
            for alias, target in aliases.items()
        }

    def _permission(self, name: Any) -> Optional[Permission]:
        if not isinstance(name, str):
            return None
        key = name.strip().lower()
        if key not in self._permissions:
            try:
                self._permissions[key] = Permission.from_name(key)
            except InvalidInputError as e:
                logger.warning(f"Invalid permission {name!r}: {e}. Skipping.")
                return None
            logger.debug(f"Implicitly declared permission {key}")
        return self._permissions[key]

    def _parse_permissions(self) -> None:
        for i, item in enumerate(self._section("permissions", list, [])):
            try:
                if isinstance(item, str):
                    permission = Permission.from_name(item)
                elif isinstance(item, dict) and "name" in item:
                    permission = Permission.from_name(
                        item["name"], id=item.get("id"), resource=item.get("resource")
                    )
                else:
                    raise InvalidInputError("permission entry needs a name")
            except (ValueError, TypeError) as e:
                logger.warning(f"Invalid permission entry {i}: {e}. Skipping.")
                continue
            self._permissions[permission.name] = permission

    def _parse_grants(self) -> None:
        for role_ref, entry in self._section("grants", dict, {}).items():
            role_id = self._role_id(role_ref)
            if role_id is None:
                logger.warning(f"Grants reference unknown role {role_ref!r}. Skipping.")
                continue
            if isinstance(entry, list):
                entry = {"granted": entry}
            if not isinstance(entry, dict):
                logger.warning(f"Grants for {role_ref!r} must be a mapping or a list. Skipping.")
                continue

            records: Dict[str, bool] = {}
            for name in entry.get("granted") or []:
                permission = self._permission(name)
                if permission:
                    records[permission.id] = True
            for name in entry.get("denied") or []:
                permission = self._permission(name)
                if permission:
                    if records.get(permission.id):
                        logger.warning(
                            f"Role {role_ref!r} both grants and denies {permission.name}; keeping the deny"
                        )
                    records[permission.id] = False

            self.snapshot.role_grants.extend(
                RoleGrant(role_id=role_id, permission_id=pid, is_granted=granted)
                for pid, granted in records.items()
            )

    def _capability(self, name: Any) -> Optional[Capability]:
        if not isinstance(name, str) or not name.strip():
            return None
        key = name.strip().upper()
        if key not in self._capabilities:
            description, category = CAPABILITY_DESCRIPTIONS.get(key, ("", "general"))
            self._capabilities[key] = Capability(id=key, name=key, description=description, category=category)
        return self._capabilities[key]

    def _parse_capabilities(self) -> None:
        items = self._section("capabilities", list, None)
        if items is None:
            for capability in default_capabilities():
                self._capabilities[capability.name] = capability
            return

        for i, item in enumerate(items):
            if isinstance(item, str):
                self._capability(item)
            elif isinstance(item, dict) and item.get("name"):
                key = str(item["name"]).strip().upper()
                self._capabilities[key] = Capability(
                    id=key,
                    name=key,
                    description=item.get("description") or "",
                    category=item.get("category") or "general",
                )
            else:
                logger.warning(f"Invalid capability entry {i}. Skipping.")

    def _parse_role_capabilities(self) -> None:
        for role_ref, names in self._section("role_capabilities", dict, {}).items():
            role_id = self._role_id(role_ref)
            if role_id is None:
                logger.warning(f"Capabilities reference unknown role {role_ref!r}. Skipping.")
                continue
            seen = set()
            for name in names or []:
                capability = self._capability(name)
                if capability and capability.id not in seen:
                    seen.add(capability.id)
                    self.snapshot.capability_assignments.append(
                        CapabilityAssignment(role_id=role_id, capability_id=capability.id)
                    )

    def _parse_user_roles(self) -> None:
        for i, item in enumerate(self._section("user_roles", list, [])):
            if not isinstance(item, dict) or not item.get("user_id"):
                logger.warning(f"Invalid user role entry {i}. Skipping.")
                continue
            role_id = self._role_id(item.get("role") or item.get("role_id"))
            if role_id is None:
                logger.warning(f"User role entry {i} references unknown role. Skipping.")
                continue
            self.snapshot.user_roles.append(
                UserRoleAssignment(
                    user_id=str(item["user_id"]),
                    role_id=role_id,
                    is_active=bool(item.get("is_active", True)),
                )
            )

    def _parse_documents(self) -> None:
        for i, item in enumerate(self._section("documents", list, [])):
            try:
                self.snapshot.documents.append(DocumentAccessDescriptor.from_record(item))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Invalid document entry {i}: {e}. Skipping.")

    def _parse_transition_rules(self) -> None:
        rows = self._section("transition_rules", list, None)
        if rows is None:
            self.snapshot.transition_rules = list(DEFAULT_TRANSITION_RULES)
            return

        seen = set()
        for i, item in enumerate(rows):
            try:
                if not isinstance(item, dict):
                    raise InvalidInputError("transition rule entry must be a mapping")
                rule = TransitionRule.from_record({"id": f"rule-{i + 1}", "sort_order": i + 1, **item})
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Invalid transition rule entry {i}: {e}. Skipping.")
                continue
            if rule.key in seen:
                logger.warning(f"Duplicate transition rule {rule.from_status} -> {rule.to_status}. Skipping.")
                continue
            seen.add(rule.key)
            self.snapshot.transition_rules.append(rule)


def parse_rbac_config(data: Dict[str, Any]) -> RbacSnapshot:
    """
    Parse a configuration mapping.

    Args:
        data: Parsed YAML mapping

    Returns:
        Validated RbacSnapshot
    """
    return _SnapshotBuilder(data).build()


# ============================================================================
# Configuration Loader
# ============================================================================

class RbacConfigLoader:
    """
    Loads and validates authorization configuration from YAML.

    Provides safe defaults and error handling for missing or invalid configs.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to the YAML file (defaults to config/rbac.yaml)
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._snapshot: Optional[RbacSnapshot] = None
        self._load()

    def _load(self) -> None:
        """Load and validate the configuration file."""
        try:
            if not self.config_path.exists():
                logger.warning(
                    f"RBAC config not found at {self.config_path}. "
                    f"Using default configuration."
                )
                self._snapshot = default_snapshot()
                return

            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)

            if not isinstance(data, dict):
                logger.error(
                    f"RBAC config must be a YAML mapping, got {type(data).__name__}. "
                    f"Using default configuration."
                )
                self._snapshot = default_snapshot()
                return

            self._snapshot = parse_rbac_config(data)
            logger.info(
                f"Loaded RBAC config from {self.config_path}: "
                f"{len(self._snapshot.roles)} roles, {len(self._snapshot.role_grants)} grants, "
                f"{len(self._snapshot.transition_rules)} transition rules"
            )

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse RBAC config YAML at {self.config_path}: {e}. Using defaults.")
            self._snapshot = default_snapshot()
        except OSError as e:
            logger.error(f"Failed to read RBAC config at {self.config_path}: {e}. Using defaults.")
            self._snapshot = default_snapshot()

    def get_snapshot(self) -> RbacSnapshot:
        return self._snapshot

    def reload(self) -> None:
        """Reload configuration from disk."""
        logger.info("Reloading RBAC configuration")
        self._load()


def load_rbac_config(config_path: Optional[str] = None) -> RbacSnapshot:
    """Load a configuration file into a snapshot."""
    return RbacConfigLoader(config_path).get_snapshot()


def load_api_keys(path: Optional[str]) -> Dict[str, Dict[str, Any]]:
    """
    Load the API key -> identity mapping.

    The file is a YAML mapping of key to {user_id, email, group_id,
    group_name, roles}. A missing or invalid file yields no API keys.
    """
    if not path:
        return {}

    api_keys_path = Path(path)
    try:
        if not api_keys_path.exists():
            logger.warning(f"API keys file not found at {api_keys_path}. No API keys configured.")
            return {}

        with open(api_keys_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        logger.error(f"Failed to load API keys from {api_keys_path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"API keys file must be a YAML mapping, got {type(data).__name__}")
        return {}

    keys = {str(k): v for k, v in data.items() if isinstance(v, dict) and v.get("user_id")}
    skipped = len(data) - len(keys)
    if skipped:
        logger.warning(f"Skipped {skipped} API key entries without a user_id")
    logger.info(f"Loaded {len(keys)} API keys from {api_keys_path}")
    return keys


# ============================================================================
# Global Loader Instance
# ============================================================================

_loader: Optional[RbacConfigLoader] = None


def get_loader(config_path: Optional[str] = None, force_reload: bool = False) -> RbacConfigLoader:
    """
    Get global RbacConfigLoader instance (singleton pattern).

    Args:
        config_path: Path to the YAML file (only used on first call)
        force_reload: Force recreation of loader

    Returns:
        RbacConfigLoader instance
    """
    global _loader

    if _loader is None or force_reload:
        _loader = RbacConfigLoader(config_path=config_path)

    return _loader


def reset_loader() -> None:
    """Reset global loader instance (useful for testing)."""
    global _loader
    _loader = None
