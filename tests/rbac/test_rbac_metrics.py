"""
Tests for authorization metrics and denial auditing.
"""

from unittest.mock import patch

from core.metrics import (
    audit_rbac_denial,
    get_counter,
    get_histogram_stats,
    get_rbac_metrics,
    observe_histogram,
    record_access_decision,
    record_rbac_check,
    record_rbac_resolution,
    record_rule_cache_event,
    record_transition_decision,
)


class TestCounters:
    """Test the record_* helpers."""

    def test_resolution(self):
        record_rbac_resolution(success=True, auth_method="jwt")
        record_rbac_resolution(success=False, auth_method="jwt")

        assert get_counter("rbac.resolutions", {"success": "true"}) == 1
        assert get_counter("rbac.resolutions", {"success": "false"}) == 1
        assert get_counter("rbac.resolutions.by_method", {"method": "jwt"}) == 2

    def test_guard_checks(self):
        record_rbac_check(True, "ADMIN_ACCESS")
        record_rbac_check(False, "ADMIN_ACCESS", route="/admin/roles")
        record_rbac_check(False, "ROLE_MANAGE")

        assert get_counter("rbac.allowed") == 1
        assert get_counter("rbac.denied") == 2
        assert get_counter("rbac.denied.by_capability", {"capability": "ADMIN_ACCESS"}) == 1
        assert get_counter("rbac.denied.by_route", {"route": "/admin/roles"}) == 1

    def test_access_reason_only_counted_when_allowed(self):
        record_access_decision(True, "owner")
        record_access_decision(False, "owner")

        assert get_counter("rbac.document_access", {"allowed": "true"}) == 1
        assert get_counter("rbac.document_access", {"allowed": "false"}) == 1
        assert get_counter("rbac.document_access.by_reason", {"reason": "owner"}) == 1

    def test_transition_and_cache_events(self):
        record_transition_decision(False, "insufficient_level")
        record_rule_cache_event("miss")

        assert get_counter("rbac.transitions.by_reason", {"reason": "insufficient_level"}) == 1
        assert get_counter("rbac.rules.cache", {"event": "miss"}) == 1

    def test_grouped_by_category(self):
        record_rbac_check(True, "ADMIN_ACCESS")
        record_rule_cache_event("hit")

        metrics = get_rbac_metrics()

        assert "rbac.allowed" in metrics["allowed"]
        assert "rbac.rules.cache" in metrics["rules"]

    def test_fetch_latency_histogram(self):
        observe_histogram("rbac.rules.fetch_ms", 3.0)
        observe_histogram("rbac.rules.fetch_ms", 2000.0)

        stats = get_histogram_stats("rbac.rules.fetch_ms")

        assert stats["count"] == 2
        assert stats["buckets"][5.0] == 1
        assert stats["buckets"][1000.0] == 1


class TestAuditDenial:
    """Test audit_rbac_denial."""

    def test_structured_entry(self):
        with patch("core.metrics.audit_logger") as audit_logger:
            audit_rbac_denial(
                capability="ROLE_MANAGE",
                user_id="u-editor",
                roles=["editor"],
                route="/admin/roles",
                method="PATCH",
                metadata={"role_id": "role-gm"},
            )

        message = audit_logger.warning.call_args[0][0]
        entry = audit_logger.warning.call_args[1]["extra"]["audit"]

        assert "RBAC_DENIAL" in message
        assert entry["user_id"] == "u-editor"
        assert entry["metadata"] == {"role_id": "role-gm"}
        assert get_counter("rbac.audit.denials") == 1

    def test_anonymous(self):
        with patch("core.metrics.audit_logger") as audit_logger:
            audit_rbac_denial("ADMIN_ACCESS", None, [], "/admin/workflows/rules")

        entry = audit_logger.warning.call_args[1]["extra"]["audit"]
        assert entry["user_id"] == "anonymous"
        assert "metadata" not in entry
