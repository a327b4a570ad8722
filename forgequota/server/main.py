"""FastAPI server main entry point."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forgequota import __version__
from forgequota.common.constants import TOTAL_COUNT_HEADER
from forgequota.common.models import ErrorResponse
from forgequota.server.admin import create_admin_router
from forgequota.server.background import _get_config_mtime, config_watch_loop
from forgequota.server.config import ServerSettings, load_server_settings
from forgequota.server.middleware.auth import TokenAuthMiddleware
from forgequota.server.middleware.quota import QuotaEnforcementMiddleware
from forgequota.server.quota.db import QuotaDB, build_database_url
from forgequota.server.quota.errors import QuotaError
from forgequota.server.quota.service import QuotaConfig, QuotaService
from forgequota.server.routes.admin_quota import create_admin_quota_router
from forgequota.server.routes.enforce import create_enforce_router
from forgequota.server.routes.info import create_info_router
from forgequota.server.routes.user_quota import create_user_quota_router

logger = logging.getLogger("forgequota.server")


# ── Helpers ──────────────────────────────────────────────────


def _create_quota_db(settings: ServerSettings) -> QuotaDB:
    """Create QuotaDB with the appropriate SQLAlchemy async URL."""
    url = build_database_url(
        backend=settings.db_backend,
        sqlite_path=settings.db_path,
        host=settings.db_host,
        port=settings.db_port,
        user=settings.db_user,
        password=settings.db_password,
        database=settings.db_name,
    )
    return QuotaDB(url)


def _propagate_hot_changes(
    app: FastAPI,
    settings: ServerSettings,
    changes: dict[str, tuple],
) -> None:
    """Push hot-reloaded settings into live runtime objects.

    Tokens are read from ``app.state.settings`` on every request and need
    no propagation.
    """
    if "quota_enabled" in changes or "quota_default_groups" in changes:
        service: QuotaService = app.state.quota_service
        service.update_config(QuotaConfig.from_settings(settings))


async def _quota_error_handler(request: Request, exc: QuotaError) -> JSONResponse:
    body = ErrorResponse(error=exc.error, message=str(exc), details=exc.details() or None)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# ── Lazy proxies ─────────────────────────────────────────────
# Routers are registered when the app is built; the database is only
# opened during the startup event.


class _QuotaDBProxy:
    def __init__(self) -> None:
        self._db: Optional[QuotaDB] = None

    def bind(self, db: Optional[QuotaDB]) -> None:
        self._db = db

    def __getattr__(self, name: str) -> Any:
        if self._db is None:
            raise RuntimeError("QuotaDB not initialized")
        return getattr(self._db, name)


# ── Application factory ─────────────────────────────────────


def create_app(settings: Optional[ServerSettings] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Server settings (None = load from env/config via auto-discovery)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = load_server_settings()

    # ── Configure logging level ──────────────────────────────
    log_level = getattr(settings, "log_level", "INFO").upper()
    numeric_level = getattr(logging, log_level, logging.INFO)
    logging.getLogger("forgequota").setLevel(numeric_level)
    # Also set root handler if none configured
    if not logging.getLogger().handlers:
        logging.basicConfig(level=numeric_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    app = FastAPI(
        title="ForgeQuota",
        description="Per-principal storage quotas for a self-hosted code forge",
        version=__version__,
    )
    app.state.settings = settings
    app.state.config_mtime = _get_config_mtime(settings)

    db_proxy = _QuotaDBProxy()
    service = QuotaService(db_proxy, QuotaConfig.from_settings(settings))  # type: ignore[arg-type]
    app.state.quota_service = service

    app.add_exception_handler(QuotaError, _quota_error_handler)  # type: ignore[arg-type]

    # ── Middleware (last added runs first) ───────────────────
    app.add_middleware(QuotaEnforcementMiddleware, service=service)

    if settings.auth_enabled:
        app.add_middleware(
            TokenAuthMiddleware,
            valid_tokens=settings.auth_tokens,
            admin_tokens=settings.admin_tokens,
            exclude_paths=[
                "/docs",
                "/redoc",
                "/openapi.json",
                "/api/health",
                "/api/info",
            ],
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[TOTAL_COUNT_HEADER],
    )

    # ── Lifecycle events ─────────────────────────────────────

    @app.on_event("startup")
    async def startup_event() -> None:
        """Open the quota database."""
        db = _create_quota_db(settings)
        await db.connect()
        db_proxy.bind(db)
        app.state.quota_db = db

        if settings.config_watch:
            app.state.config_watch_task = asyncio.create_task(config_watch_loop(app, _propagate_hot_changes))

        logger.info("Started on port %d", settings.port)
        if service.enabled:
            logger.info("Quota enforcement enabled (default groups: %s)", list(service.default_groups) or "none")
        else:
            logger.info("Quota enforcement disabled")
        if settings.workers > 1 and settings.db_backend == "sqlite":
            logger.warning(
                "SQLite + %d workers; WAL mode enabled. For heavy write loads, consider MySQL or PostgreSQL.",
                settings.workers,
            )
        if settings.config_watch:
            logger.info("Config watch enabled (interval: %ds)", settings.config_watch_interval)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Cleanup on shutdown."""
        task = getattr(app.state, "config_watch_task", None)
        if task is not None:
            task.cancel()
        db = getattr(app.state, "quota_db", None)
        if db is not None:
            await db.disconnect()
            db_proxy.bind(None)
        logger.info("Shutdown complete")

    # ── Register routes ──────────────────────────────────────
    app.include_router(create_info_router(service))
    app.include_router(create_admin_quota_router(service))
    app.include_router(create_user_quota_router(service))
    app.include_router(create_enforce_router(service))
    app.include_router(create_admin_router(_propagate_hot_changes))

    return app


# ── Server runner ────────────────────────────────────────────


def run_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    workers: Optional[int] = None,
    config_path: Optional[Path] = None,
) -> None:
    """Run the server.

    Config file values are used as defaults. CLI flags (non-None) override them.
    """
    settings = load_server_settings(config_path)

    if host is not None:
        settings.host = host
    if port is not None:
        settings.port = port
    if workers is not None:
        settings.workers = workers

    if settings.workers > 1:
        # Multi-worker mode: uvicorn needs an import string to fork workers.
        # Pass CLI overrides via env vars so each worker's create_app() picks
        # them up through load_server_settings() / pydantic env_prefix.
        import os

        if config_path is not None:
            os.environ["FORGEQUOTA_CONFIG"] = str(Path(config_path).resolve())
        if host is not None:
            os.environ["FORGEQUOTA_HOST"] = host
        if port is not None:
            os.environ["FORGEQUOTA_PORT"] = str(port)

        uvicorn.run(
            "forgequota.server.main:app",
            host=settings.host,
            port=settings.port,
            workers=settings.workers,
        )
    else:
        app = create_app(settings)

        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
        )


# For uvicorn command line: uvicorn forgequota.server.main:app
app = create_app()


if __name__ == "__main__":
    run_server()
