"""
Tests for the authorization engine facade and its global instance.
"""

import pytest

from core.rbac import (
    ROLE_EDITOR,
    ROLE_MANAGER,
    AuthorizationEngine,
    configure_engine,
    get_engine,
    reset_engine,
)
from core.rbac.admin import RoleAdminService


class TestSubjects:
    """Test subject_for and subject_for_role_names."""

    def test_subject_for_user(self, engine):
        grants = engine.subject_for("u-manager")

        assert grants.role_names == (ROLE_MANAGER,)
        assert grants.role_level == 60

    def test_role_names_are_normalized(self, engine):
        grants = engine.subject_for_role_names("svc-1", ["Manager", "EDITOR"])

        assert grants.role_names == (ROLE_MANAGER, ROLE_EDITOR)
        assert grants.role_level == 60

    def test_unknown_and_malformed_names_dropped(self, engine):
        grants = engine.subject_for_role_names("svc-1", ["wizard", "bad;name", "", "viewer"])
        assert grants.role_names == ("viewer",)

    def test_no_usable_roles(self, engine):
        grants = engine.subject_for_role_names("svc-1", ["wizard"])

        assert grants.role_ids == ()
        assert grants.permissions == frozenset()

    def test_explain_permission(self, engine):
        explanation = engine.explain_permission(engine.subject_for("u-multi"), "documents.update")

        assert explanation.granted is True


class TestReloadRoles:
    """Role mutations become visible after reload_roles()."""

    def test_level_change(self, engine, repository):
        RoleAdminService(repository).update_role("role-manager", {"level": 75})
        assert engine.subject_for("u-manager").role_level == 60

        engine.reload_roles()

        assert engine.subject_for("u-manager").role_level == 75

    def test_deactivated_role_grants_nothing(self, engine, repository):
        RoleAdminService(repository).update_role("role-manager", {"is_active": False})
        engine.reload_roles()

        grants = engine.subject_for("u-manager")

        assert grants.role_names == ()
        assert engine.is_transition_allowed(grants, "DRAFT", "PENDING_REVIEW") is False


class TestDefaults:
    """Test default wiring."""

    def test_default_rule_store_reads_repository(self, repository):
        engine = AuthorizationEngine(repository)
        try:
            assert len(engine.rule_store.all_rules()) == 16
            assert engine.rule_store.is_fallback is False
        finally:
            engine.rule_store.close()

    def test_invalidate_rules(self, engine, rule_store):
        rule_store.all_rules()
        engine.invalidate_rules()
        assert rule_store.stats()["invalidations"] == 1


class TestGlobalEngine:
    """Test the global engine instance."""

    def test_unconfigured_raises(self):
        with pytest.raises(RuntimeError):
            get_engine()

    def test_configure_and_reset(self, engine):
        assert configure_engine(engine) is engine
        assert get_engine() is engine

        reset_engine()

        with pytest.raises(RuntimeError):
            get_engine()
