"""Pydantic models used across the CT Discoverer configuration flow."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class DiscoverySettings(BaseModel):
    """Scheduler and retry policy applied to every group."""

    max_concurrent_items: int = 2
    max_attempts: int = 3
    retry_delay_seconds: float = 5.0

    @model_validator(mode="after")
    def _validate_limits(self) -> "DiscoverySettings":
        if self.max_concurrent_items < 1:
            raise ValueError("max_concurrent_items must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0")
        return self


class ExtractionSettings(BaseModel):
    """Connection details for the generative search/extraction service."""

    model: str = "gemini-2.5-pro"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    api_key_env: str = "API_KEY"
    country: str = "India"
    # 远端调用默认不设超时，唯一的有界等待是重试间隔
    timeout_seconds: float | None = None

    @field_validator("base_url", mode="before")
    @classmethod
    def _strip_slash(cls, value: Any) -> str:
        return str(value).rstrip("/")

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeout_seconds must be positive when set")
        return value


class StorageSettings(BaseModel):
    """Where the collection snapshot lives and how much room it may take."""

    snapshot_path: Path = Field(default=Path("data/state/collection.db"))
    snapshot_key: str = "collection"
    quota_kb: int = 5120

    @field_validator("snapshot_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("quota_kb")
    @classmethod
    def _positive_quota(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("quota_kb must be positive")
        return value

    def resolved_snapshot_path(self, base_dir: Path) -> Path:
        """Return snapshot database path relative to the project root."""

        if not self.snapshot_path.is_absolute():
            return (base_dir / self.snapshot_path).resolve()
        return self.snapshot_path


class GlobalConfig(BaseModel):
    """Global controls shared by every discovery run."""

    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    outputs_dir: Path = Field(default=Path("data/outputs"))
    enable_progress_bar: bool = True

    @field_validator("outputs_dir", mode="before")
    @classmethod
    def _coerce_dirs(cls, value: Any) -> Path:
        return Path(value)


__all__ = [
    "DiscoverySettings",
    "ExtractionSettings",
    "GlobalConfig",
    "StorageSettings",
]
