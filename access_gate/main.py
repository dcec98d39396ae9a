from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from access_gate.authz.cache import PermissionCache
from access_gate.authz.gate import AuthorizationGate, GateConfig
from access_gate.authz.loader import ProfileLoader, SqlProfileLoader
from access_gate.authz.rules import load_access_rules
from access_gate.authz.service import PermissionService
from access_gate.logging_config import configure_app_logging
from access_gate.routers import permissions
from access_gate.security.dependencies import enforce_access
from access_gate.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, loader: ProfileLoader | None = None) -> FastAPI:
    """
    Build the application.

    ``loader`` defaults to the SQL loader over ``SessionLocal``; tests pass an
    in-memory loader instead and never touch the database.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        cfg = settings or get_settings()
        configure_app_logging(cfg.log_level)
        logger.info("App startup beginning")

        rules = load_access_rules(cfg.resolved_rules_path())
        logger.info("Loaded access rules: %s", cfg.resolved_rules_path())

        profile_loader = loader
        if profile_loader is None:
            from access_gate.db.init_db import init_db
            from access_gate.db.session import SessionLocal

            init_db()
            logger.info("Database initialized (tables ensured)")
            profile_loader = SqlProfileLoader(SessionLocal)

        cache = PermissionCache(
            ttl_seconds=cfg.cache_ttl_seconds,
            max_size=cfg.max_cache_size,
            enabled=cfg.enable_cache,
        )
        service = PermissionService(
            profile_loader,
            cache,
            timeout_seconds=cfg.check_timeout_seconds,
            max_workers=cfg.loader_workers,
        )

        app.state.settings = cfg
        app.state.permission_service = service
        app.state.gate = AuthorizationGate(rules, service, GateConfig.from_settings(cfg))

        yield
        # Shutdown
        service.close()
        logger.info("App shutdown complete")

    # Global dependency: every route goes through the authorization gate.
    app = FastAPI(dependencies=[Depends(enforce_access)], lifespan=lifespan)

    app.include_router(permissions.router)

    return app


app = create_app()
