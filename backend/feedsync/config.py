"""feedsync application configuration.

Loads settings from one YAML file:
  * feedsync.settings.yaml  (path overridable with FEEDSYNC_SETTINGS)

A missing file is not an error; every section has defaults.
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

SETTINGS_FILE = Path("feedsync.settings.yaml")
SETTINGS_ENV_VAR = "FEEDSYNC_SETTINGS"


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


class FeedSettings(BaseModel):
    """Window and page sizes for live tails and history paging."""
    live_window_size:  int = Field(default=10, ge=1)
    history_page_size: int = Field(default=20, ge=1)
    max_page_size:     int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _sizes_within_max(self) -> "FeedSettings":
        for name in ("live_window_size", "history_page_size"):
            if getattr(self, name) > self.max_page_size:
                raise ValueError(
                    f"{name}={getattr(self, name)} exceeds max_page_size={self.max_page_size}"
                )
        return self


class ClientSettings(BaseModel):
    """Settings for RemoteFeedStore."""
    base_url:                str   = "http://localhost:8000"
    request_timeout_seconds: float = Field(default=10.0, gt=0)


class LoggingSettings(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    feed:    FeedSettings    = Field(default_factory=FeedSettings)
    client:  ClientSettings  = Field(default_factory=ClientSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into a single *AppConfig* object."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_data = _load_yaml(Path(settings_path))

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, live_window=%d, history_page=%d)",
        config.server.host,
        config.server.port,
        config.feed.live_window_size,
        config.feed.history_page_size,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config (tests use this between cases)."""
    global _config
    _config = None
