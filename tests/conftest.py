"""
Shared fixtures for authorization tests.

Builds a small in-memory configuration through the YAML parser so every
test exercises the same roles, grants and documents.
"""

import copy

import pytest
import yaml
from fastapi.testclient import TestClient

from adapters.static_store import StaticRbacRepository
from app.settings import Settings
from core.config_loader import parse_rbac_config
from core.metrics import reset_metrics
from core.rbac.engine import AuthorizationEngine, reset_engine
from core.rbac.resolve import reset_resolver
from core.rbac.transitions import TransitionRuleStore
from main import create_app


CORE_DOCUMENT_PERMISSIONS = [
    "documents.read",
    "documents.create",
    "documents.update",
    "documents.approve",
    "documents.delete",
]

BASE_CONFIG = {
    # roles and transition_rules are omitted: built-in defaults apply
    "grants": {
        "org_administrator": CORE_DOCUMENT_PERMISSIONS + ["documents.publish"],
        "org_ppd": ["documents.read", "documents.update", "documents.approve"],
        "org_manager": ["documents.read", "documents.create", "documents.update", "documents.approve"],
        "editor": {
            "granted": ["documents.read", "documents.create", "documents.update"],
            "denied": ["documents.delete"],
        },
        "viewer": {
            "granted": ["documents.read"],
            "denied": ["documents.update"],
        },
    },
    "role_capabilities": {
        "org_administrator": ["ADMIN_ACCESS", "ROLE_MANAGE", "WORKFLOW_MANAGE"],
        "org_manager": ["DOCUMENT_VIEW", "DOCUMENT_APPROVE"],
        "editor": ["DOCUMENT_EDIT"],
        "viewer": ["DOCUMENT_VIEW"],
    },
    "user_roles": [
        {"user_id": "u-admin", "role": "org_administrator"},
        {"user_id": "u-ppd", "role": "org_ppd"},
        {"user_id": "u-manager", "role": "org_manager"},
        {"user_id": "u-editor", "role": "editor"},
        {"user_id": "u-viewer", "role": "viewer"},
        {"user_id": "u-multi", "role": "editor"},
        {"user_id": "u-multi", "role": "viewer"},
        {"user_id": "u-former", "role": "editor", "is_active": False},
    ],
    "documents": [
        {"id": "doc-public", "created_by_id": "u-ppd", "is_public": True},
        {"id": "doc-private", "created_by_id": "u-editor"},
        {"id": "doc-legal-id", "created_by_id": "u-ppd", "access_groups": ["g-legal"]},
        {"id": "doc-legal-name", "created_by_id": "u-ppd", "access_groups": ["Legal"]},
        {"id": "doc-editors", "created_by_id": "u-ppd", "access_groups": ["editor"]},
    ],
}


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset metrics and global singletons around each test."""
    reset_metrics()
    reset_engine()
    reset_resolver()
    yield
    reset_engine()
    reset_resolver()
    reset_metrics()


@pytest.fixture
def rbac_config():
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def snapshot(rbac_config):
    return parse_rbac_config(rbac_config)


@pytest.fixture
def repository(snapshot):
    return StaticRbacRepository(snapshot)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def rule_store(repository, fake_clock):
    store = TransitionRuleStore(source=repository, fetch_timeout_seconds=None, clock=fake_clock)
    yield store
    store.close()


@pytest.fixture
def engine(repository, rule_store):
    return AuthorizationEngine(repository, rule_store=rule_store)


# ============================================================================
# API
# ============================================================================

JWT_SECRET = "test-jwt-secret"

API_KEYS = {
    "admin-key": {"user_id": "u-admin", "email": "admin@example.com"},
    "manager-key": {"user_id": "u-manager"},
    "editor-key": {"user_id": "u-editor", "group_id": "g-legal", "group_name": "Legal"},
    "viewer-key": {"user_id": "u-viewer"},
    "bot-key": {"user_id": "svc-bot", "roles": ["manager"]},
}


@pytest.fixture
def api_keys_path(tmp_path):
    path = tmp_path / "api_keys.yaml"
    path.write_text(yaml.safe_dump(API_KEYS))
    return str(path)


@pytest.fixture
def settings(api_keys_path):
    return Settings(JWT_SECRET=JWT_SECRET, API_KEYS_PATH=api_keys_path, RBAC_BACKEND="static")


@pytest.fixture
def api_client(settings, engine):
    """TestClient over the full app, backed by the shared engine."""
    return TestClient(create_app(settings, engine=engine))
