"""roomcast application configuration.

Loads settings from a single YAML file:
  * roomcast.settings.yaml  (path overridable with ROOMCAST_SETTINGS)

There are no secrets: the service has no authentication layer and keeps
all state in memory.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_ENV_VAR = "ROOMCAST_SETTINGS"
SETTINGS_FILE = Path("roomcast.settings.yaml")

_LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _settings_path() -> Path:
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else SETTINGS_FILE


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class ChatSettings(BaseModel):
    """Behaviour of the room/session engine."""
    default_room:            str   = "global"
    default_page_size:       int   = Field(default=50, ge=1)
    max_page_size:           int   = Field(default=100, ge=1)
    # 0 = keep every message for the lifetime of the process
    max_room_history:        int   = Field(default=5000, ge=0)
    max_display_name_length: int   = Field(default=50, ge=1)
    max_message_length:      int   = Field(default=5000, ge=1)
    typing_scope:            Literal["room", "global"] = "room"
    # 0 = typing flags only clear on toggle-off or disconnect
    typing_timeout_seconds:  float = Field(default=0, ge=0)
    reaction_policy:         Literal["allow_multiple", "unique"] = "allow_multiple"
    send_timeout_seconds:    float = Field(default=5.0, gt=0)

    @field_validator("default_room")
    @classmethod
    def _room_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("default_room must not be blank")
        return value

    @model_validator(mode="after")
    def _page_sizes_consistent(self) -> "ChatSettings":
        if self.default_page_size > self.max_page_size:
            raise ValueError(
                f"default_page_size ({self.default_page_size}) exceeds "
                f"max_page_size ({self.max_page_size})"
            )
        return self


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.lower() not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {value}")
        return value.lower()


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load *AppSettings* from YAML, falling back to defaults for missing keys."""
    settings_path = path or _settings_path()
    app_settings = AppSettings(**_load_yaml(settings_path))
    logger.info(
        "Settings loaded from %s (server=%s:%s, default_room=%s, typing_scope=%s)",
        settings_path,
        app_settings.server.host,
        app_settings.server.port,
        app_settings.chat.default_room,
        app_settings.chat.typing_scope,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace (or clear, with None) the process-wide settings."""
    global _config
    _config = config
