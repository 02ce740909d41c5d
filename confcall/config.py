"""
Named call profiles loaded from ``configs/profiles.yaml``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"

LOG = logging.getLogger(__name__)


class SettingsError(RuntimeError):
    """Raised when a profile is unknown or malformed."""


class CallSettings(BaseModel):
    announce_port: int = Field(default=9999, ge=0, le=65535)
    announce_interval: float = Field(default=2.0, gt=0)
    media_base_port: int = Field(default=10000, ge=1, le=65535)
    orphan_ttl: float = Field(default=30.0, gt=0)
    max_orphans: int = Field(default=64, ge=1)
    rtp_latency_ms: int = Field(default=10, ge=0)
    video_bitrate: int = Field(default=50_000_000, gt=0)
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8080, ge=0, le=65535)
    model_config = ConfigDict(extra="forbid")


def load_settings(profile: str = "default", path: Optional[Union[str, Path]] = None) -> CallSettings:
    """
    Resolve ``profile`` from the profiles file.

    A missing file yields the defaults; an unknown profile raises
    :class:`SettingsError`.
    """

    profiles_path = Path(path) if path is not None else PROFILES_PATH
    try:
        with profiles_path.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.info("No profiles file at %s; using defaults", profiles_path)
        return CallSettings()
    except yaml.YAMLError as exc:
        raise SettingsError(f"Invalid profiles file {profiles_path}: {exc}") from exc

    if not isinstance(profiles, dict) or profile not in profiles:
        raise SettingsError(f"Unknown profile '{profile}' in {profiles_path}")
    try:
        return CallSettings(**(profiles[profile] or {}))
    except (TypeError, ValidationError) as exc:
        raise SettingsError(f"Invalid profile '{profile}': {exc}") from exc


__all__ = ["CallSettings", "SettingsError", "load_settings", "PROFILES_PATH"]
