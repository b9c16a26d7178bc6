"""
Role definitions, legacy aliases and hierarchy checks.

Every role has a numeric level (0-100). A higher level always carries the
authority of a lower one for level-gated operations. Legacy flat role names
are mapped onto the namespaced canonical roles through one alias table.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .errors import InvalidInputError

logger = logging.getLogger(__name__)


# ============================================================================
# Role Constants
# ============================================================================

ROLE_ADMINISTRATOR = "org_administrator"
"""Full system access and administration privileges."""

ROLE_PPD = "org_ppd"
"""Document owner of record (Penanggung Jawab Dokumen)."""

ROLE_KADIV = "org_kadiv"
"""Division head with approval authority."""

ROLE_GM = "org_gm"
"""General manager."""

ROLE_MANAGER = "org_manager"
"""Management level access."""

ROLE_EDITOR = "editor"
"""Document author and editor."""

ROLE_DIRUT = "org_dirut"
"""Director with executive read/approve access."""

ROLE_DEWAS = "org_dewas"
"""Board of supervisors."""

ROLE_KOMITE_AUDIT = "org_komite_audit"
"""Audit committee with review access."""

ROLE_MEMBERS = "org_members"
"""Regular members with basic access."""

ROLE_VIEWER = "viewer"
"""Read-only access to documents."""

ROLE_GUEST = "org_guest"
"""Unprivileged guest."""

MIN_LEVEL = 0
MAX_LEVEL = 100

_ROLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\- ]+$")


def is_valid_role_name(name: Any) -> bool:
    return isinstance(name, str) and bool(name.strip()) and bool(_ROLE_NAME_PATTERN.match(name.strip()))


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Role:
    """A canonical role with its hierarchy level."""
    id: str
    name: str
    display_name: str
    level: int
    is_system: bool = False
    is_active: bool = True

    def __post_init__(self):
        if not self.name:
            raise InvalidInputError("role name cannot be empty")
        if not isinstance(self.level, int) or isinstance(self.level, bool):
            raise InvalidInputError(f"role level must be an integer, got {self.level!r}")
        if not MIN_LEVEL <= self.level <= MAX_LEVEL:
            raise InvalidInputError(
                f"role level must be between {MIN_LEVEL} and {MAX_LEVEL}, got {self.level}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "level": self.level,
            "is_system": self.is_system,
            "is_active": self.is_active,
        }


DEFAULT_ROLES = (
    Role("role-administrator", ROLE_ADMINISTRATOR, "Administrator", 100, is_system=True),
    Role("role-ppd", ROLE_PPD, "Penanggung Jawab Dokumen", 90, is_system=True),
    Role("role-kadiv", ROLE_KADIV, "Kepala Divisi", 80),
    Role("role-gm", ROLE_GM, "General Manager", 70),
    Role("role-manager", ROLE_MANAGER, "Manager", 60),
    Role("role-editor", ROLE_EDITOR, "Editor", 50),
    Role("role-dirut", ROLE_DIRUT, "Direktur Utama", 50),
    Role("role-dewas", ROLE_DEWAS, "Dewan Pengawas", 40),
    Role("role-komite-audit", ROLE_KOMITE_AUDIT, "Komite Audit", 30),
    Role("role-members", ROLE_MEMBERS, "Members", 20),
    Role("role-viewer", ROLE_VIEWER, "Viewer", 10, is_system=True),
    Role("role-guest", ROLE_GUEST, "Guest", 0),
)

# Legacy flat names -> canonical namespaced names. Keys are lowercase.
ROLE_ALIASES: Dict[str, str] = {
    "admin": ROLE_ADMINISTRATOR,
    "administrator": ROLE_ADMINISTRATOR,
    "ppd": ROLE_PPD,
    "kadiv": ROLE_KADIV,
    "gm": ROLE_GM,
    "manager": ROLE_MANAGER,
    "dirut": ROLE_DIRUT,
    "dewas": ROLE_DEWAS,
    "komite_audit": ROLE_KOMITE_AUDIT,
    "members": ROLE_MEMBERS,
    "user": ROLE_MEMBERS,
    "guest": ROLE_GUEST,
}


# ============================================================================
# Role Catalog
# ============================================================================

class RoleCatalog:
    """
    Canonical role registry.

    Resolves raw role identifiers (any case, legacy aliases) to a single
    canonical Role and answers hierarchy questions. Unknown or inactive
    roles resolve to None, which callers must treat as no access.
    """

    def __init__(
        self,
        roles: Optional[Iterable[Role]] = None,
        aliases: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the catalog.

        Args:
            roles: Canonical roles (defaults to DEFAULT_ROLES)
            aliases: Legacy name -> canonical name mapping (defaults to ROLE_ALIASES)
        """
        self._roles: Dict[str, Role] = {}
        for role in roles if roles is not None else DEFAULT_ROLES:
            key = role.name.lower()
            if key in self._roles:
                raise InvalidInputError(f"duplicate role name: {role.name}")
            self._roles[key] = role

        self._aliases: Dict[str, str] = {}
        for alias, target in (aliases if aliases is not None else ROLE_ALIASES).items():
            self._aliases[alias.strip().lower()] = target.lower()

    @classmethod
    def from_records(
        cls,
        rows: Iterable[Dict[str, Any]],
        aliases: Optional[Dict[str, str]] = None,
    ) -> "RoleCatalog":
        """Build a catalog from persisted role rows."""
        roles = [
            Role(
                id=str(row["id"]),
                name=row["name"],
                display_name=row.get("display_name") or row["name"],
                level=int(row.get("level", 0)),
                is_system=bool(row.get("is_system", False)),
                is_active=bool(row.get("is_active", True)),
            )
            for row in rows
        ]
        return cls(roles=roles, aliases=aliases)

    def normalize(self, raw_role_name: Any) -> Optional[Role]:
        """
        Resolve a raw role name to its canonical role.

        Args:
            raw_role_name: Role name in any case, possibly a legacy alias

        Returns:
            Canonical Role, or None if unknown or inactive (fail closed)

        Raises:
            InvalidInputError: If the identifier is not a string or contains
                characters that can never appear in a role name

        Examples:
            >>> RoleCatalog().normalize("ADMIN").name
            'org_administrator'
            >>> RoleCatalog().normalize("nobody") is None
            True
        """
        if raw_role_name is None:
            return None
        if not isinstance(raw_role_name, str):
            raise InvalidInputError(
                f"role name must be a string, got {type(raw_role_name).__name__}"
            )

        key = raw_role_name.strip().lower()
        if not key:
            return None
        if not _ROLE_NAME_PATTERN.match(key):
            raise InvalidInputError(f"malformed role name: {raw_role_name!r}")

        key = self._aliases.get(key, key)
        role = self._roles.get(key)

        if role is None:
            logger.warning(f"Unknown role: {raw_role_name}")
            return None
        if not role.is_active:
            logger.debug(f"Role {role.name} is inactive, treating as unknown")
            return None

        return role

    def has_hierarchy_access(self, user_role: Any, required_roles: Iterable[Any]) -> bool:
        """
        Check whether a user's role satisfies a list of required roles.

        True if the user's level is at least the lowest level among the
        required roles, or if the user's canonical role is named in the list.

        Args:
            user_role: The user's role (name or Role)
            required_roles: Roles that grant access (names or Role objects)

        Returns:
            True if access is granted by hierarchy

        Examples:
            >>> catalog = RoleCatalog()
            >>> catalog.has_hierarchy_access("org_ppd", ["editor"])
            True
            >>> catalog.has_hierarchy_access("viewer", ["editor"])
            False
        """
        user = self._resolve(user_role)
        if user is None:
            return False

        required = [r for r in (self._resolve(role) for role in required_roles) if r is not None]
        if not required:
            return False

        if any(role.name == user.name for role in required):
            return True

        return user.level >= min(role.level for role in required)

    def _resolve(self, role: Any) -> Optional[Role]:
        if isinstance(role, Role):
            return self.normalize(role.name)
        return self.normalize(role)

    # ------------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------------

    def get(self, name: str) -> Optional[Role]:
        """Get a role by canonical name, including inactive roles."""
        if not name:
            return None
        return self._roles.get(name.strip().lower())

    def get_by_id(self, role_id: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.id == role_id:
                return role
        return None

    def level_of(self, role_name: Any) -> int:
        """Level of a role, or MIN_LEVEL if it does not resolve."""
        role = self.normalize(role_name)
        return role.level if role else MIN_LEVEL

    def max_level(self, role_names: Iterable[Any]) -> int:
        """
        Highest level across several roles.

        Examples:
            >>> RoleCatalog().max_level(["viewer", "editor"])
            50
            >>> RoleCatalog().max_level([])
            0
        """
        levels = [self.level_of(name) for name in role_names]
        return max(levels) if levels else MIN_LEVEL

    def roles_with_min_level(self, min_level: int) -> List[Role]:
        return sorted(
            (r for r in self._roles.values() if r.is_active and r.level >= min_level),
            key=lambda r: (-r.level, r.name),
        )

    def list_roles(self) -> List[Role]:
        """All roles sorted by descending level."""
        return sorted(self._roles.values(), key=lambda r: (-r.level, r.name))

    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    def describe(self) -> Dict[str, Dict[str, Any]]:
        """
        List all roles with their metadata.

        Returns:
            Dictionary mapping canonical role names to level and display data
        """
        return {
            role.name: {
                "display_name": role.display_name,
                "level": role.level,
                "is_system": role.is_system,
                "is_active": role.is_active,
                "aliases": sorted(a for a, t in self._aliases.items() if t == role.name),
            }
            for role in self.list_roles()
        }


# Default catalog instance
_default_catalog: Optional[RoleCatalog] = None


def get_catalog() -> RoleCatalog:
    """Get the process-wide default catalog built from DEFAULT_ROLES."""
    global _default_catalog

    if _default_catalog is None:
        _default_catalog = RoleCatalog()

    return _default_catalog
