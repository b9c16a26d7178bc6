# main.py — builds the authorization service, mounts routers, exposes health

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.admin import roles as admin_roles
from api.admin import workflows as admin_workflows
from api import authz
from api.middleware import RoleResolutionMiddleware
from app.settings import Settings, get_settings
from core.config_loader import load_api_keys
from core.metrics import get_rbac_metrics
from core.rbac.engine import AuthorizationEngine, configure_engine, get_engine
from core.rbac.interfaces import RbacAdminRepository
from core.rbac.resolve import configure_resolver
from core.rbac.transitions import TransitionRuleStore

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> RbacAdminRepository:
    """Repository for the configured backend."""
    if settings.RBAC_BACKEND == "supabase":
        from adapters.db import SupabaseRbacRepository
        return SupabaseRbacRepository()

    from adapters.static_store import StaticRbacRepository
    return StaticRbacRepository.from_config(settings.RBAC_CONFIG_PATH)


def build_engine(settings: Settings, repository: Optional[RbacAdminRepository] = None) -> AuthorizationEngine:
    repository = repository or build_repository(settings)
    store = TransitionRuleStore(
        source=repository,
        ttl_seconds=settings.RULE_CACHE_TTL_SECONDS,
        fetch_timeout_seconds=settings.RULE_FETCH_TIMEOUT_MS / 1000.0,
        fallback_retry_seconds=settings.RULE_FALLBACK_RETRY_SECONDS,
    )
    return AuthorizationEngine(
        repository,
        rule_store=store,
        full_access_module=settings.FULL_ACCESS_MODULE,
        full_access_actions=settings.full_access_actions,
    )


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AuthorizationEngine] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings (defaults to environment settings)
        engine: Prebuilt engine (defaults to one built from settings)
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    configure_engine(engine or build_engine(settings))
    configure_resolver(
        jwt_secret=settings.JWT_SECRET,
        jwt_algorithm=settings.JWT_ALGO,
        api_key_to_user_map=load_api_keys(settings.API_KEYS_PATH),
    )

    app = FastAPI(
        title="Document Authorization Service",
        version="0.1.0",
        description="Role, document access and workflow transition decisions.",
    )

    # CORS: permissive for now, lock down per deployment.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RoleResolutionMiddleware)

    app.include_router(authz.router)
    app.include_router(admin_workflows.router)
    app.include_router(admin_roles.router)

    @app.get("/healthz")
    def healthz():
        """Liveness probe. Degraded while serving the fallback rule table."""
        rule_store = get_engine().rule_store.stats()
        return {
            "status": "degraded" if rule_store["is_fallback"] else "ok",
            "backend": settings.RBAC_BACKEND,
            "rule_store": rule_store,
        }

    @app.get("/debug/metrics")
    def debug_metrics():
        return get_rbac_metrics()

    logger.info(f"Authorization service ready (backend={settings.RBAC_BACKEND})")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)
