"""
Tests for the workflow transition rule admin endpoints.
"""

import pytest

from core.metrics import get_counter

ADMIN = {"X-API-KEY": "admin-key"}
MANAGER = {"X-API-KEY": "manager-key"}

NEW_RULE = {
    "from_status": "EXPIRED",
    "to_status": "DRAFT",
    "min_level": 90,
    "required_permission": "documents.update",
    "description": "Revive expired document",
    "allowed_by_label": "PPD, Administrator",
    "sort_order": 20,
}


def rule_id(client, from_status, to_status):
    rules = client.get("/admin/workflows", params={"from_status": from_status}, headers=ADMIN).json()
    return next(r["id"] for r in rules if r["to_status"] == to_status)


class TestGuards:
    """Only WORKFLOW_MANAGE or ADMIN_ACCESS holders may manage rules."""

    @pytest.mark.parametrize("method,path", [
        ("GET", "/admin/workflows"),
        ("POST", "/admin/workflows"),
        ("PUT", "/admin/workflows/fallback-1"),
        ("DELETE", "/admin/workflows/fallback-1"),
    ])
    def test_manager_forbidden(self, api_client, method, path):
        response = api_client.request(method, path, json=NEW_RULE, headers=MANAGER)

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["error"] == "forbidden"
        assert detail["capabilities"] == ["WORKFLOW_MANAGE", "ADMIN_ACCESS"]

    def test_anonymous_forbidden(self, api_client):
        assert api_client.get("/admin/workflows").status_code == 403
        assert get_counter("rbac.audit.denials") == 1


class TestListRules:
    def test_all_rules(self, api_client):
        response = api_client.get("/admin/workflows", headers=ADMIN)

        assert response.status_code == 200
        assert len(response.json()) == 16

    def test_filter_by_from_status(self, api_client):
        rules = api_client.get("/admin/workflows", params={"from_status": "draft"}, headers=ADMIN).json()
        assert [r["to_status"] for r in rules] == ["PENDING_REVIEW", "ARCHIVED"]


class TestCreateRule:
    def test_create_is_visible_to_decisions(self, api_client):
        check = {"from_status": "EXPIRED", "to_status": "DRAFT"}
        before = api_client.post("/authz/transitions/check", json=check, headers=ADMIN).json()
        assert before["reason"] == "no_rule"

        response = api_client.post("/admin/workflows", json=NEW_RULE, headers=ADMIN)

        assert response.status_code == 201
        created = response.json()
        assert created["id"]
        assert created["min_level"] == 90
        after = api_client.post("/authz/transitions/check", json=check, headers=ADMIN).json()
        assert after["allowed"] is True

    def test_duplicate_pair_conflicts(self, api_client):
        body = dict(NEW_RULE, from_status="DRAFT", to_status="PENDING_REVIEW")

        response = api_client.post("/admin/workflows", json=body, headers=ADMIN)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "conflict"

    @pytest.mark.parametrize("changes", [
        {"min_level": 101},
        {"min_level": -1},
        {"required_permission": "update"},
        {"from_status": ""},
    ])
    def test_request_validation(self, api_client, changes):
        response = api_client.post("/admin/workflows", json=dict(NEW_RULE, **changes), headers=ADMIN)
        assert response.status_code == 422

    def test_malformed_status(self, api_client):
        body = dict(NEW_RULE, from_status="EXPIRED!")

        response = api_client.post("/admin/workflows", json=body, headers=ADMIN)

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_input"


class TestUpdateRule:
    def test_raise_min_level(self, api_client):
        target = rule_id(api_client, "DRAFT", "PENDING_REVIEW")

        response = api_client.put(f"/admin/workflows/{target}", json={"min_level": 60},
                                  headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["min_level"] == 60
        editor_check = api_client.post(
            "/authz/transitions/check",
            json={"from_status": "DRAFT", "to_status": "PENDING_REVIEW"},
            headers={"X-API-KEY": "editor-key"},
        ).json()
        assert editor_check["reason"] == "insufficient_level"

    def test_clear_required_permission(self, api_client):
        target = rule_id(api_client, "DRAFT", "PENDING_REVIEW")

        body = api_client.put(f"/admin/workflows/{target}", json={"required_permission": None},
                              headers=ADMIN).json()

        assert body["required_permission"] is None

    def test_deactivate(self, api_client):
        target = rule_id(api_client, "DRAFT", "PENDING_REVIEW")

        api_client.put(f"/admin/workflows/{target}", json={"is_active": False}, headers=ADMIN)

        listed = api_client.get("/admin/workflows", params={"from_status": "DRAFT"}, headers=ADMIN).json()
        assert listed[0]["is_active"] is False
        allowed = api_client.get("/authz/transitions", params={"from_status": "DRAFT"}, headers=ADMIN).json()
        assert [t["to_status"] for t in allowed["transitions"]] == ["ARCHIVED"]

    def test_unknown_rule(self, api_client):
        response = api_client.put("/admin/workflows/rule-missing", json={"min_level": 10}, headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"


class TestDeleteRule:
    def test_delete(self, api_client):
        target = rule_id(api_client, "DRAFT", "ARCHIVED")

        response = api_client.delete(f"/admin/workflows/{target}", headers=ADMIN)

        assert response.status_code == 204
        check = api_client.post(
            "/authz/transitions/check",
            json={"from_status": "DRAFT", "to_status": "ARCHIVED"},
            headers=ADMIN,
        ).json()
        assert check["reason"] == "no_rule"

    def test_delete_unknown(self, api_client):
        assert api_client.delete("/admin/workflows/rule-missing", headers=ADMIN).status_code == 404
