"""Admin API routes for config management."""

import logging
from typing import Any

from fastapi import APIRouter, Request

from forgequota.server.background import _get_config_mtime
from forgequota.server.config import HOT_RELOADABLE_FIELDS, ServerSettings, reload_hot_settings
from forgequota.server.middleware.auth import require_admin_access

logger = logging.getLogger("forgequota.server")

_SECRET_FIELDS = frozenset({"auth_tokens", "admin_tokens"})


def _safe_repr(field: str, value: Any) -> str:
    """Produce a safe string repr for change diffs (tokens masked, long values truncated)."""
    if field in _SECRET_FIELDS:
        return f"<{len(value)} token(s)>"
    s = repr(value)
    return s[:200] + "..." if len(s) > 200 else s


def create_admin_router(propagate_fn: Any) -> APIRouter:
    """Create admin router for config management.

    Args:
        propagate_fn: Callable ``(app, settings, changes) -> None`` to apply hot-reloaded changes.

    Returns:
        FastAPI router with admin endpoints.
    """
    router = APIRouter(prefix="/api/admin", tags=["Admin"])

    @router.post("/reload-config")
    async def reload_config(request: Request) -> dict[str, Any]:
        """Reload hot-reloadable config fields from the config file.

        Requires an admin token. Returns a diff of changed fields and lists
        which fields are hot-reloadable vs require a restart.
        """
        require_admin_access(request)

        settings: ServerSettings = request.app.state.settings
        changes = reload_hot_settings(settings)
        if changes:
            propagate_fn(request.app, settings, changes)
            request.app.state.config_mtime = _get_config_mtime(settings)
            change_summary = {
                k: {"old": _safe_repr(k, old), "new": _safe_repr(k, new)} for k, (old, new) in changes.items()
            }
            logger.info(
                "Hot-reloaded %d field(s): %s",
                len(changes),
                ", ".join(changes.keys()),
            )
        else:
            change_summary = {}

        return {
            "reloaded": bool(changes),
            "changes": change_summary,
            "hot_reloadable": sorted(HOT_RELOADABLE_FIELDS),
            "requires_restart": ["host", "port", "workers", "db_*", "auth_enabled", "cors_origins"],
        }

    @router.get("/config-status")
    async def config_status(request: Request) -> dict[str, Any]:
        """Show which config file is loaded and watch status."""
        require_admin_access(request)

        settings: ServerSettings = request.app.state.settings
        config_path = getattr(settings, "_config_path", None)
        return {
            "config_file": str(config_path.resolve()) if config_path else None,
            "config_watch": settings.config_watch,
            "config_watch_interval": settings.config_watch_interval,
            "quota_enabled": settings.quota_enabled,
            "quota_default_groups": settings.quota_default_groups,
        }

    return router
