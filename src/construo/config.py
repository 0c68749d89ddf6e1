"""Configuration loading.

Later sources only fill what earlier ones leave unset:
  - keyword arguments to ``Settings(...)``
  - CONSTRUO__* environment variables, e.g. CONSTRUO__SYNC__COOLDOWN_SECONDS=60
  - construo.yaml from the working directory or ~/.config/construo/
  - field defaults

The config file is optional. Every field has a default that matches the
production site.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("construo")
_DEFAULT_DB_PATH = os.path.join(_DEFAULT_DATA_DIR, "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first construo.yaml found, or None."""
    candidates = [
        Path("construo.yaml"),
        Path.home() / ".config" / "construo" / "construo.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class GatewaySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = "https://cknbkgeurnwdqexgqezz.supabase.co"
    anon_key: str = ""
    # Bounded wait for the client handle at startup; expiry means "no service".
    ready_timeout_seconds: float = 15.0
    request_timeout_seconds: float = 10.0
    site_config_key: str = "main"


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = _DEFAULT_DB_PATH
    # Bumping the version orphans every entry written under the old prefix.
    version: str = "1.4"
    # SQLite page quota; None means unbounded.
    max_page_count: int | None = Field(default=None, ge=1)


class SyncSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cooldown_seconds: float = Field(default=180.0, ge=0)
    revalidate_delay_seconds: float = Field(default=0.5, ge=0)


class CertificateSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # A4 landscape at 96 DPI.
    page_width: int = 1123
    page_height: int = 794
    multiplier: float = Field(default=1.5, gt=0)
    page_padding: float = 2.0
    jpeg_quality: int = Field(default=98, ge=1, le=100)
    default_event_label: str = "CONSTRUO 2026"
    background: str = "#ffffff"
    output_dir: str = "certificates"


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CONSTRUO__CACHE__VERSION=1.5
        env_prefix="CONSTRUO__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
        extra="forbid",
    )

    gateway: GatewaySettings = GatewaySettings()
    cache: CacheSettings = CacheSettings()
    sync: SyncSettings = SyncSettings()
    certificates: CertificateSettings = CertificateSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls),
            # No .env or secrets-dir lookup.
        )
