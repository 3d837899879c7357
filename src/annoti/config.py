"""Centralised application configuration using pydantic-settings.

All environment variables are read through the Settings class.
Consumers call ``get_settings()`` to obtain a cached, validated instance.
Tests construct ``Settings(_env_file=None, ...)`` directly for isolation.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from annoti.models import (
    DEFAULT_HIGHLIGHT_COLOR,
    DEFAULT_HIGHLIGHT_TYPE,
    DEFAULT_NOTE_HEIGHT,
    DEFAULT_NOTE_WIDTH,
    HighlightType,
)

logger = logging.getLogger(__name__)

# src/annoti/config.py  ->  parent x3  ->  project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


# ---------------------------------------------------------------------------
# Sub-models (one per configuration domain)
# ---------------------------------------------------------------------------
class StoreConfig(BaseModel):
    """Annotation store persistence behaviour."""

    backend: Literal["sidecar", "sql"] = "sidecar"
    debounce_seconds: float = Field(default=0.5, ge=0)
    sidecar_suffix: str = ".ann"


class DatabaseConfig(BaseModel):
    """SQL storage backend connection."""

    url: str = "sqlite+aiosqlite:///annoti.db"
    echo: bool = False


class HighlightConfig(BaseModel):
    """Defaults applied to newly created highlights."""

    default_color: str = DEFAULT_HIGHLIGHT_COLOR
    default_type: HighlightType = DEFAULT_HIGHLIGHT_TYPE


class NotesConfig(BaseModel):
    """Sticky note geometry."""

    click_offset_x: float = 10.0
    click_offset_y: float = 10.0
    viewport_fraction: float = Field(default=0.9, gt=0, le=1)
    min_width: float = 160.0
    min_height: float = 100.0
    max_fraction: float = Field(default=0.9, gt=0, le=1)
    default_width: float = DEFAULT_NOTE_WIDTH
    default_height: float = DEFAULT_NOTE_HEIGHT

    @model_validator(mode="after")
    def defaults_respect_floor(self) -> NotesConfig:
        too_narrow = self.default_width < self.min_width
        if too_narrow or self.default_height < self.min_height:
            msg = "NOTES__DEFAULT_WIDTH/HEIGHT must not be below the NOTES__MIN_* floor"
            raise ValueError(msg)
        return self


class RenderConfig(BaseModel):
    """Renderer adapter settings (fixed-width text and Markdown)."""

    line_width: float = Field(default=33.0, gt=0)
    cjk_char_width: float = 1.0
    non_cjk_char_width: float = 0.5
    tab_size: int = 4
    pandoc_path: str = ""


class AuthorConfig(BaseModel):
    """Identity stamped on new annotations."""

    id: str = "local"
    name: str = "Reader"


class AppConfig(BaseModel):
    """Application runtime configuration."""

    log_dir: Path = Path("logs")


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Application settings with automatic .env loading and type validation.

    Environment variables use double-underscore delimiter for nesting:
    ``STORE__DEBOUNCE_SECONDS``, ``DATABASE__URL``, ``NOTES__MIN_WIDTH``, etc.
    """

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    store: StoreConfig = StoreConfig()
    database: DatabaseConfig = DatabaseConfig()
    highlight: HighlightConfig = HighlightConfig()
    notes: NotesConfig = NotesConfig()
    render: RenderConfig = RenderConfig()
    author: AuthorConfig = AuthorConfig()
    app: AppConfig = AppConfig()


# ---------------------------------------------------------------------------
# Singleton access
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    settings = Settings()

    env_file = settings.model_config.get("env_file")
    if env_file is not None and Path(str(env_file)).is_file():
        logger.info("Settings loaded .env from: %s", env_file)
    else:
        logger.info("Settings: no .env file found, using env vars and defaults")

    return settings
