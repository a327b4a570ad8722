"""Background tasks for the ForgeQuota server.

The quota core needs no workers; the only background job is the optional
config file watcher that feeds hot-reloadable quota and token settings.
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import FastAPI

from forgequota.server.config import ServerSettings, reload_hot_settings

logger = logging.getLogger("forgequota.server")


def _get_config_mtime(settings: ServerSettings) -> Optional[float]:
    config_path = getattr(settings, "_config_path", None)
    if config_path and config_path.exists():
        return config_path.stat().st_mtime  # type: ignore[no-any-return]
    return None


def poll_config_file(app: FastAPI, propagate_fn: Any) -> dict[str, tuple]:
    """Reload the config file once if its mtime moved since the last look.

    Returns the applied ``{field: (old, new)}`` changes (empty when the file
    is untouched or nothing hot-reloadable changed).
    """
    settings: ServerSettings = app.state.settings
    new_mtime = _get_config_mtime(settings)
    old_mtime = getattr(app.state, "config_mtime", None)
    if not new_mtime or new_mtime == old_mtime:
        return {}

    app.state.config_mtime = new_mtime
    if old_mtime is None:
        # First sighting of the file; it is what we started with.
        return {}

    logger.info("Config file change detected, hot-reloading...")
    changes = reload_hot_settings(settings)
    if changes:
        propagate_fn(app, settings, changes)
        logger.info("Auto-reloaded %d field(s): %s", len(changes), ", ".join(changes.keys()))
    return changes


async def config_watch_loop(app: FastAPI, propagate_fn: Any) -> None:
    """Poll the config file every ``config_watch_interval`` seconds.

    Args:
        app: FastAPI application (settings stored in ``app.state.settings``).
        propagate_fn: Callable ``(app, settings, changes) -> None`` to apply changes.
    """
    interval = app.state.settings.config_watch_interval

    while True:
        try:
            await asyncio.sleep(interval)
            poll_config_file(app, propagate_fn)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Config watch error: %s", e)
