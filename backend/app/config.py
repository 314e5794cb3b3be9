"""Chat backend configuration.

Loads settings from a single YAML file:
  * chat.settings.yaml  - non-secret configuration

The path can be overridden with the ``CHAT_SETTINGS_PATH`` environment
variable. A missing file is not an error; every section has defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chat.settings.yaml")
SETTINGS_ENV_VAR = "CHAT_SETTINGS_PATH"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class StorageSettings(BaseModel):
    """Where the DuckDB document store lives (``:memory:`` for tests)."""
    db_path: str = "chat.duckdb"


class PresenceSettings(BaseModel):
    """Presence lifecycle tuning."""
    activity_window_seconds: int  = 300
    sweep_interval_seconds:  int  = 60
    sweep_enabled:           bool = True

    @field_validator("activity_window_seconds", "sweep_interval_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number of seconds")
        return value


class ChatSettings(BaseModel):
    max_message_length:    int = 4000
    history_page_size:     int = 50
    max_history_page_size: int = 100


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_db_path(db_path: str, settings_path: Path) -> str:
    """Resolve a relative database path against the settings file directory."""
    if db_path == ":memory:" or Path(db_path).is_absolute():
        return db_path
    return str(settings_path.resolve().parent / db_path)


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *AppConfig* from YAML, falling back to defaults."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)
    data = _load_yaml(settings_path)

    config = AppConfig(**data)
    if "storage" in data:
        config.storage.db_path = _resolve_db_path(config.storage.db_path, settings_path)

    logger.info(
        "Settings loaded (server=%s:%s, db=%s, sweep_interval=%ss)",
        config.server.host,
        config.server.port,
        config.storage.db_path,
        config.presence.sweep_interval_seconds,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
