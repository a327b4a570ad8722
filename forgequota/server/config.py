"""Server configuration."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from forgequota.common.constants import CONFIG_DIR_NAME, CONFIG_ENV_VAR, DEFAULT_SERVER_PORT

logger = logging.getLogger("forgequota.server.config")

# Fields that can be hot-reloaded without a server restart.
HOT_RELOADABLE_FIELDS = frozenset(
    {
        "quota_enabled",
        "quota_default_groups",
        "auth_tokens",
        "admin_tokens",
    }
)


class ServerSettings(BaseSettings):
    """Server settings loaded from environment or config file."""

    # Server
    host: str = Field("0.0.0.0", description="Server bind host")  # nosec B104
    port: int = Field(DEFAULT_SERVER_PORT, description="Server port")
    workers: int = Field(1, description="Number of uvicorn workers")
    log_level: str = Field("INFO", description="Log level for the forgequota loggers")

    # Database
    db_backend: Literal["sqlite", "mysql", "postgresql"] = Field(
        "sqlite",
        description="Database backend: sqlite (default), mysql or postgresql. Env: FORGEQUOTA_DB_BACKEND",
    )
    db_path: str = Field(
        "./data/quota.db",
        description="Path to the SQLite database (when backend=sqlite). Env: FORGEQUOTA_DB_PATH",
    )
    db_host: str = Field("127.0.0.1", description="Database host. Env: FORGEQUOTA_DB_HOST")
    db_port: int = Field(3306, description="Database port. Env: FORGEQUOTA_DB_PORT")
    db_user: str = Field("root", description="Database user. Env: FORGEQUOTA_DB_USER")
    db_password: str = Field("", description="Database password. Env: FORGEQUOTA_DB_PASSWORD")
    db_name: str = Field("forgequota", description="Database name. Env: FORGEQUOTA_DB_NAME")

    # Auth
    auth_enabled: bool = Field(True, description="Enable token authentication")
    auth_tokens: list[str] = Field(
        default_factory=list,
        description="Service tokens presented by the forge front-end",
    )
    admin_tokens: list[str] = Field(
        default_factory=list,
        description="Tokens that additionally grant administrator rights",
    )

    # Quota
    quota_enabled: bool = Field(
        False,
        description="Enforce storage quotas on mutating requests. Env: FORGEQUOTA_QUOTA_ENABLED",
    )
    quota_default_groups: list[str] = Field(
        default_factory=list,
        description="Ordered group names used for principals without any group mapping. "
        "Env: FORGEQUOTA_QUOTA_DEFAULT_GROUPS as JSON array or comma-separated list.",
    )

    # CORS
    cors_origins: list[str] = Field(["*"], description="CORS allowed origins")

    # Config file watching (hot-reload)
    config_watch: bool = Field(
        False,
        description="Watch config file for changes and auto-reload hot settings. Env: FORGEQUOTA_CONFIG_WATCH",
    )
    config_watch_interval: int = Field(
        30,
        description="Config file watch interval in seconds. Env: FORGEQUOTA_CONFIG_WATCH_INTERVAL",
    )

    class Config:
        env_prefix = "FORGEQUOTA_"
        env_nested_delimiter = "__"


def parse_list_value(value: str) -> list[str]:
    """Parse a list from a JSON array or a comma-separated string."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(parsed, list):
        return [str(v) for v in parsed]
    return [str(parsed)]


def _parse_yaml_to_settings_dict(config: dict) -> dict:
    """Convert a parsed YAML config dict into a flat settings dict.

    This is the single source of truth for YAML -> settings field mapping.
    Used by both initial load and hot-reload.
    """
    d: dict = {}

    if "server" in config:
        d.update(config["server"])
    if "logging" in config:
        if "level" in config["logging"]:
            d["log_level"] = config["logging"]["level"]
    if "database" in config:
        db = config["database"]
        if "backend" in db:
            d["db_backend"] = db["backend"]
        for key in ("path", "host", "port", "user", "password", "name"):
            if key in db:
                d[f"db_{key}"] = db[key]
    if "auth" in config:
        if "enabled" in config["auth"]:
            d["auth_enabled"] = config["auth"]["enabled"]
        if "tokens" in config["auth"]:
            d["auth_tokens"] = config["auth"]["tokens"] or []
        if "admin_tokens" in config["auth"]:
            d["admin_tokens"] = config["auth"]["admin_tokens"] or []
    if "quota" in config:
        q = config["quota"]
        if "enabled" in q:
            d["quota_enabled"] = q["enabled"]
        if "default_groups" in q:
            d["quota_default_groups"] = list(q["default_groups"] or [])
    if "cors" in config:
        if "origins" in config["cors"]:
            d["cors_origins"] = config["cors"]["origins"]

    return d


def _apply_env_overrides(settings_dict: dict) -> None:
    """Apply environment variable overrides to a settings dict (in-place)."""
    env_groups = os.environ.get("FORGEQUOTA_QUOTA_DEFAULT_GROUPS", "")
    if env_groups:
        settings_dict["quota_default_groups"] = parse_list_value(env_groups)

    env_enabled = os.environ.get("FORGEQUOTA_QUOTA_ENABLED", "")
    if env_enabled:
        settings_dict["quota_enabled"] = env_enabled.strip().lower() in ("1", "true", "yes", "on")


# ── Config file auto-discovery ────────────────────────────────

# Paths searched in order when no explicit config is given.
_CONFIG_SEARCH_PATHS = [
    Path("./config.yaml"),
    Path("./config/config.yaml"),
    Path.home() / CONFIG_DIR_NAME / "server.yaml",
]


def discover_config_path() -> Optional[Path]:
    """Find a config file using auto-discovery.

    Search order:
      1. ``$FORGEQUOTA_CONFIG`` environment variable
      2. ``./config.yaml``
      3. ``./config/config.yaml``
      4. ``~/.forgequota/server.yaml``

    Returns:
        Path to the discovered config file, or None.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR, "")
    if env_path:
        p = Path(env_path)
        if p.exists():
            return p
        logger.warning("$%s=%s does not exist", CONFIG_ENV_VAR, env_path)

    for candidate in _CONFIG_SEARCH_PATHS:
        if candidate.exists():
            return candidate
    return None


def _read_yaml(path: Path) -> dict[str, Any]:
    import yaml

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_server_settings(config_path: Optional[Path] = None) -> ServerSettings:
    """Load server settings from config file + environment variables.

    Args:
        config_path: Explicit path to config file.  When ``None``,
            auto-discovery is used (see :func:`discover_config_path`).

    The resolved path is stashed on the settings so hot-reload can re-read it.
    """
    resolved_path = config_path
    if resolved_path is None:
        resolved_path = discover_config_path()

    settings_dict: dict = {}

    if resolved_path and resolved_path.exists():
        settings_dict = _parse_yaml_to_settings_dict(_read_yaml(resolved_path))
        logger.info("Loaded config from %s", resolved_path.resolve())
    else:
        logger.info("No config file found, using defaults + environment variables")

    _apply_env_overrides(settings_dict)

    settings = ServerSettings(**settings_dict)
    settings._config_path = resolved_path  # type: ignore[attr-defined]
    return settings


def reload_hot_settings(settings: ServerSettings) -> dict[str, tuple]:
    """Re-read the config file and update hot-reloadable fields in place.

    Only fields listed in ``HOT_RELOADABLE_FIELDS`` are updated.
    Static fields (host, port, database, etc.) are ignored.

    Returns:
        A dict of ``{field: (old_value, new_value)}`` for every field
        that actually changed.
    """
    config_path: Optional[Path] = getattr(settings, "_config_path", None)
    if not config_path or not config_path.exists():
        return {}

    fresh_dict = _parse_yaml_to_settings_dict(_read_yaml(config_path))
    _apply_env_overrides(fresh_dict)

    changes: dict[str, tuple] = {}
    for field in HOT_RELOADABLE_FIELDS:
        if field not in fresh_dict:
            continue
        old = getattr(settings, field)
        new = fresh_dict[field]
        if old != new:
            changes[field] = (old, new)
            object.__setattr__(settings, field, new)

    return changes
