from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .infrastructure.gps.source import WatchOptions

DEFAULT_CONFIG_PATH = Path("configs/triptrack.yml")


class StorageBackend(str, Enum):
    MEMORY = "memory"
    JSON = "json"
    SQLITE = "sqlite"


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    base_dir: Path = Field(Path("logs"))
    file_name: str | None = Field(None)  # None = console only

    @field_validator("base_dir")
    @classmethod
    def _expand_base_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return level

    @property
    def file_path(self) -> Path | None:
        return self.base_dir / self.file_name if self.file_name else None


class TrackingConfig(BaseModel):
    """Trip pricing and acquisition options."""

    rate_per_km: float = Field(10.0, gt=0)
    high_accuracy: bool = Field(True)
    max_fix_age_ms: int = Field(10_000, ge=0)  # 0 = no age limit
    initial_timeout_ms: int = Field(5_000, ge=100, le=10 * 60 * 1000)

    def watch_options(self) -> WatchOptions:
        return WatchOptions(
            high_accuracy=self.high_accuracy,
            max_fix_age_ms=self.max_fix_age_ms,
            timeout_ms=self.initial_timeout_ms,
        )


class GPSConfig(BaseModel):
    """GPS daemon configuration."""

    host: str = Field("localhost")
    port: int = Field(2947, ge=1, le=65535)
    mock_mode: bool = Field(False)  # Use mock GPS for testing
    mock_lat: float = Field(19.0760, ge=-90, le=90)  # Mumbai default
    mock_lon: float = Field(72.8777, ge=-180, le=180)
    mock_interval: float = Field(1.0, gt=0, le=60.0)


class StorageConfig(BaseModel):
    backend: StorageBackend = Field(StorageBackend.JSON)
    path: Path = Field(Path("data"))
    key: str = Field("salesmanTrip")

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("key")
    @classmethod
    def _validate_key(cls, value: str) -> str:
        if not re.match(r"^[A-Za-z0-9_.-]+$", value) or value.startswith("."):
            raise ValueError(f"invalid storage key: {value!r}")
        return value


class TripTrackConfig(BaseModel):
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    gps: GPSConfig = Field(default_factory=GPSConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Path) -> TripTrackConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    try:
        return TripTrackConfig.model_validate(raw)
    except ValidationError as exc:  # pragma: no cover - formatting
        raise ValueError(str(exc)) from exc


def resolve_config_path(cli_path: Path | None) -> Path:
    """
    Pick the config file: CLI path, then ``$TRIPTRACK_CONFIG``, then
    ``configs/triptrack.yml`` under the working directory.

    When none exists the most specific candidate is returned, so loading it
    reports the path the user asked for.
    """
    explicit = [Path(p).expanduser() for p in (cli_path, os.environ.get("TRIPTRACK_CONFIG")) if p]
    candidates = explicit + [DEFAULT_CONFIG_PATH]
    found = next((p for p in candidates if p.exists()), None)
    if found is not None:
        return found.resolve()
    return candidates[0]
