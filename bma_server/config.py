"""
Server configuration.

Settings come from ``BMA_*`` environment variables (see ``Settings.from_env``);
command-line flags override them. Nothing is written back to disk.
"""

import os
from pathlib import Path
from typing import Optional, Mapping

from pydantic import BaseModel, Field, field_validator


_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")

# env var -> Settings field
_ENV_FIELDS = {
    "BMA_HOST": "host",
    "BMA_PORT": "port",
    "BMA_MUSIC_FOLDER": "music_folder",
    "BMA_TOKEN_TTL_MINUTES": "token_ttl_minutes",
    "BMA_PUBLIC_URL": "public_url",
    "BMA_LOG_LEVEL": "log_level",
    "BMA_DEVICE_REAP_SECONDS": "device_reap_seconds",
    "BMA_DEVICE_INACTIVITY_MINUTES": "device_inactivity_minutes",
}


class Settings(BaseModel):
    """Runtime settings for the music server."""

    host: str = Field("0.0.0.0", description="Interface to bind")
    port: int = Field(8008, ge=1, le=65535, description="HTTP port")
    music_folder: Optional[Path] = Field(None, description="Root folder to scan at startup")
    token_ttl_minutes: int = Field(60, ge=1, description="Lifetime of a pairing token")
    public_url: Optional[str] = Field(
        None, description="Base URL advertised to clients (default: http://<lan-ip>:<port>)"
    )
    log_level: str = Field("INFO")
    device_reap_seconds: float = Field(60.0, gt=0, description="Interval of the inactive-device sweep")
    device_inactivity_minutes: int = Field(10, ge=1, description="Idle time before a device is dropped")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {list(_LOG_LEVELS)}")
        return level

    @field_validator("music_folder")
    @classmethod
    def _expand_folder(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @field_validator("public_url")
    @classmethod
    def _strip_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``BMA_*`` variables; unset or blank ones keep defaults."""
        env = os.environ if environ is None else environ
        values = {
            field: env[var]
            for var, field in _ENV_FIELDS.items()
            if env.get(var, "").strip()
        }
        return cls(**values)

    def with_overrides(self, **overrides) -> "Settings":
        """Copy with every non-None override applied (and validated)."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return Settings(**data)
