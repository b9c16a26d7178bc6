"""
Tests for YAML authorization configuration loading.
"""

from pathlib import Path

import pytest
import yaml

from adapters.static_store import StaticRbacRepository
from core.config_loader import (
    RbacConfigLoader,
    default_snapshot,
    get_loader,
    load_api_keys,
    load_rbac_config,
    parse_rbac_config,
    reset_loader,
)
from core.rbac.engine import AuthorizationEngine
from core.rbac.roles import DEFAULT_ROLES
from core.rbac.transitions import DEFAULT_TRANSITION_RULES, TransitionRuleStore

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "rbac.yaml"


@pytest.fixture(autouse=True)
def reset_global_loader():
    reset_loader()
    yield
    reset_loader()


def _write(tmp_path, data, name="rbac.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)
    return path


# ============================================================================
# File Handling
# ============================================================================

class TestLoader:
    """Test RbacConfigLoader file handling."""

    def test_missing_file_uses_defaults(self, tmp_path):
        snapshot = load_rbac_config(str(tmp_path / "absent.yaml"))

        assert len(snapshot.roles) == len(DEFAULT_ROLES)
        assert snapshot.transition_rules == list(DEFAULT_TRANSITION_RULES)
        assert snapshot.role_grants == []
        assert snapshot.user_roles == []

    def test_non_mapping_uses_defaults(self, tmp_path):
        path = _write(tmp_path, ["roles", "grants"])
        assert load_rbac_config(str(path)).role_grants == []

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = _write(tmp_path, "grants: [unclosed\n  - :")
        snapshot = load_rbac_config(str(path))

        assert len(snapshot.roles) == len(DEFAULT_ROLES)

    def test_reload_picks_up_changes(self, tmp_path):
        path = _write(tmp_path, {"user_roles": [{"user_id": "u1", "role": "editor"}]})
        loader = RbacConfigLoader(str(path))
        assert len(loader.get_snapshot().user_roles) == 1

        _write(tmp_path, {"user_roles": []})
        loader.reload()

        assert loader.get_snapshot().user_roles == []

    def test_global_loader_is_cached(self, tmp_path):
        path = str(tmp_path / "absent.yaml")
        assert get_loader(path) is get_loader()
        assert get_loader(path, force_reload=True) is not None

    def test_default_snapshot_grants_nothing(self):
        snapshot = default_snapshot()

        assert snapshot.role_grants == []
        assert snapshot.capability_assignments == []
        assert "admin" in snapshot.aliases


# ============================================================================
# Parsing
# ============================================================================

class TestParseRoles:
    """Test the roles and aliases sections."""

    def test_custom_roles(self):
        snapshot = parse_rbac_config({
            "roles": [
                {"id": "r-lead", "name": "lead", "level": 75},
                {"name": "intern", "level": 5},
            ],
            "aliases": {"Boss": "LEAD"},
        })

        assert [r["id"] for r in snapshot.roles] == ["r-lead", "role-intern"]
        assert snapshot.aliases == {"boss": "lead"}

    def test_invalid_roles_skipped(self):
        snapshot = parse_rbac_config({
            "roles": [
                {"name": "ok", "level": 10},
                {"name": "too-high", "level": 500},
                {"level": 10},
                "plain-string",
                {"name": "OK", "level": 20},
            ],
        })

        assert [r["name"] for r in snapshot.roles] == ["ok"]

    def test_wrong_section_type_ignored(self):
        snapshot = parse_rbac_config({"grants": ["documents.read"], "user_roles": {"u1": "editor"}})

        assert snapshot.role_grants == []
        assert snapshot.user_roles == []


class TestParseGrants:
    """Test the permissions and grants sections."""

    def test_grants_by_name_or_id(self):
        snapshot = parse_rbac_config({
            "grants": {
                "editor": ["documents.read"],
                "role-viewer": {"granted": ["documents.read"], "denied": ["documents.update"]},
            },
        })

        records = {(g.role_id, g.permission_id, g.is_granted) for g in snapshot.role_grants}
        assert records == {
            ("role-editor", "documents.read", True),
            ("role-viewer", "documents.read", True),
            ("role-viewer", "documents.update", False),
        }

    def test_deny_wins_within_one_role(self):
        snapshot = parse_rbac_config({
            "grants": {"editor": {"granted": ["documents.delete"], "denied": ["documents.delete"]}},
        })

        assert [(g.permission_id, g.is_granted) for g in snapshot.role_grants] == [("documents.delete", False)]

    def test_unknown_role_and_bad_permission_skipped(self):
        snapshot = parse_rbac_config({
            "grants": {
                "wizard": ["documents.read"],
                "editor": ["documents.read", "NotAPermission", 42],
            },
        })

        assert [(g.role_id, g.permission_id) for g in snapshot.role_grants] == [("role-editor", "documents.read")]

    def test_permissions_declared_explicitly_and_implicitly(self):
        snapshot = parse_rbac_config({
            "permissions": ["documents.read", {"name": "users.profile", "resource": "own"}, "broken"],
            "grants": {"editor": ["documents.read.own"]},
        })

        by_name = {p.name: p for p in snapshot.permissions}
        assert set(by_name) == {"documents.read", "users.profile", "documents.read.own"}
        assert by_name["users.profile"].resource == "own"
        assert by_name["documents.read.own"].resource == "own"


class TestParseCapabilities:
    """Test the capabilities and role_capabilities sections."""

    def test_defaults_when_omitted(self):
        snapshot = parse_rbac_config({"role_capabilities": {"org_administrator": ["admin_access"]}})

        assert "WORKFLOW_MANAGE" in {c.name for c in snapshot.capabilities}
        assert [(a.role_id, a.capability_id) for a in snapshot.capability_assignments] == [
            ("role-administrator", "ADMIN_ACCESS"),
        ]

    def test_custom_capabilities(self):
        snapshot = parse_rbac_config({
            "capabilities": ["ADMIN_ACCESS", {"name": "report_export", "category": "reports"}],
            "role_capabilities": {"editor": ["DOCUMENT_EDIT", "DOCUMENT_EDIT"]},
        })

        capabilities = {c.name: c for c in snapshot.capabilities}
        assert set(capabilities) == {"ADMIN_ACCESS", "REPORT_EXPORT", "DOCUMENT_EDIT"}
        assert capabilities["REPORT_EXPORT"].category == "reports"
        assert len(snapshot.capability_assignments) == 1


class TestParseOperationalData:
    """Test user_roles and documents."""

    def test_user_roles(self):
        snapshot = parse_rbac_config({
            "user_roles": [
                {"user_id": "u1", "role": "editor"},
                {"user_id": "u1", "role_id": "role-viewer", "is_active": False},
                {"user_id": "u2", "role": "wizard"},
                {"role": "editor"},
            ],
        })

        assert [(a.user_id, a.role_id, a.is_active) for a in snapshot.user_roles] == [
            ("u1", "role-editor", True),
            ("u1", "role-viewer", False),
        ]

    def test_documents(self):
        snapshot = parse_rbac_config({
            "documents": [
                {"id": "d1", "created_by_id": "u1", "access_groups": ["g1", 7]},
                {"created_by_id": "u1"},
                "not-a-document",
            ],
        })

        assert len(snapshot.documents) == 1
        assert snapshot.documents[0].access_groups == ("g1", "7")
        assert snapshot.documents[0].is_public is False


class TestParseTransitionRules:
    """Test the transition_rules section."""

    def test_defaults_when_omitted(self):
        assert parse_rbac_config({}).transition_rules == list(DEFAULT_TRANSITION_RULES)

    def test_empty_list_means_no_rules(self):
        assert parse_rbac_config({"transition_rules": []}).transition_rules == []

    def test_ids_and_sort_order_default_to_position(self):
        snapshot = parse_rbac_config({
            "transition_rules": [
                {"from_status": "draft", "to_status": "pending_review", "min_level": 50},
                {"from_status": "DRAFT", "to_status": "ARCHIVED", "min_level": 100, "id": "archive", "sort_order": 9},
            ],
        })

        first, second = snapshot.transition_rules
        assert (first.id, first.sort_order, first.from_status) == ("rule-1", 1, "DRAFT")
        assert (second.id, second.sort_order) == ("archive", 9)

    def test_invalid_and_duplicate_rules_skipped(self):
        snapshot = parse_rbac_config({
            "transition_rules": [
                {"from_status": "DRAFT", "to_status": "PENDING_REVIEW", "min_level": 50},
                {"from_status": "DRAFT", "to_status": "PENDING_REVIEW", "min_level": 10},
                {"from_status": "DRAFT"},
                {"from_status": "DRAFT", "to_status": "ARCHIVED", "min_level": "high"},
                {"from_status": "DRAFT", "to_status": "ARCHIVED", "min_level": 100,
                 "required_permission": "not a permission"},
                ["DRAFT", "ARCHIVED"],
            ],
        })

        assert [(r.key, r.min_level) for r in snapshot.transition_rules] == [(("DRAFT", "PENDING_REVIEW"), 50)]


# ============================================================================
# Shipped Configuration
# ============================================================================

class TestShippedConfig:
    """The example config in config/rbac.yaml loads cleanly."""

    @pytest.fixture
    def engine(self):
        repository = StaticRbacRepository.from_config(str(REPO_CONFIG))
        store = TransitionRuleStore(source=repository, fetch_timeout_seconds=None)
        yield AuthorizationEngine(repository, rule_store=store)
        store.close()

    def test_loads(self):
        snapshot = load_rbac_config(str(REPO_CONFIG))

        assert len(snapshot.roles) == 12
        assert len(snapshot.transition_rules) == 16
        assert snapshot.role_grants

    def test_administrator_has_full_document_access(self, engine):
        grants = engine.subject_for("u-admin")

        assert grants.full_document_access is True
        assert grants.has_capability("ROLE_MANAGE")

    def test_combined_roles(self, engine):
        grants = engine.subject_for("u-editor-manager")

        assert grants.role_level == 60
        assert grants.has_permission("documents.approve")
        assert not grants.has_permission("documents.delete")

    def test_document_visibility(self, engine):
        viewer = engine.subject_for("u-viewer")

        assert engine.can_access_document(viewer, "doc-handbook") is True
        assert engine.can_access_document(viewer, "doc-legal-sop", user_group_name="Legal") is True
        assert engine.can_access_document(viewer, "doc-draft-memo") is False

    def test_workflow(self, engine):
        editor = engine.subject_for("u-editor")
        assert [r.to_status for r in engine.allowed_transitions(editor, "DRAFT")] == ["PENDING_REVIEW"]


# ============================================================================
# API Keys
# ============================================================================

class TestLoadApiKeys:
    """Test load_api_keys."""

    def test_no_path(self):
        assert load_api_keys(None) == {}

    def test_missing_file(self, tmp_path):
        assert load_api_keys(str(tmp_path / "keys.yaml")) == {}

    def test_entries_without_user_id_skipped(self, tmp_path):
        path = _write(tmp_path, {
            "key-1": {"user_id": "svc-1", "roles": ["manager"]},
            "key-2": {"email": "nobody@example.com"},
            "key-3": "svc-3",
        }, name="keys.yaml")

        assert load_api_keys(str(path)) == {"key-1": {"user_id": "svc-1", "roles": ["manager"]}}

    def test_non_mapping(self, tmp_path):
        path = _write(tmp_path, ["key-1"], name="keys.yaml")
        assert load_api_keys(str(path)) == {}
