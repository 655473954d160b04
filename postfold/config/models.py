"""Pydantic models used across the postfold configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes for periodic subscription runs."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """Configuration describing when a subscription should be scraped."""

    type: ScheduleType = Field(default=ScheduleType.ONCE)
    value: Any = Field(
        default=None,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class SourceConfig(BaseModel):
    """A single scrape source (one group/feed)."""

    source_id: str
    name: str = ""
    url: str = ""
    enabled: bool = True

    @field_validator("source_id")
    @classmethod
    def _non_empty_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("source_id cannot be empty")
        return value

    @property
    def label(self) -> str:
        return self.name or self.source_id


class SubscriptionConfig(BaseModel):
    """Named set of sources processed together by one job."""

    subscription_id: str
    name: str = ""
    sources: list[SourceConfig] = Field(default_factory=list)
    schedule: ScheduleConfig | None = None

    @model_validator(mode="after")
    def _unique_sources(self) -> "SubscriptionConfig":
        seen: set[str] = set()
        for source in self.sources:
            if source.source_id in seen:
                raise ValueError(f"Duplicate source_id in subscription: {source.source_id}")
            seen.add(source.source_id)
        return self

    def enabled_sources(self) -> list[SourceConfig]:
        return [source for source in self.sources if source.enabled]


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff for transient scrape failures."""

    max_attempts: int = 3
    backoff_base: float = 2.0
    backoff_max: float = 60.0

    @model_validator(mode="after")
    def _validate_bounds(self) -> "RetryPolicy":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff values must be non-negative")
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed ``attempt`` (1-based)."""

        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)


class SyncConfig(BaseModel):
    """Remote last-write-wins sync endpoint."""

    enabled: bool = False
    base_url: str | None = None
    api_token: str | None = None
    batch_size: int = 1000
    interval_seconds: int = 300
    timeout: float = 15.0

    @field_validator("batch_size")
    @classmethod
    def _cap_batch(cls, value: int) -> int:
        if value < 1 or value > 1000:
            raise ValueError("batch_size must be between 1 and 1000")
        return value


class GlobalConfig(BaseModel):
    """Global controls shared across jobs."""

    database_path: Path = Field(default=Path("data/postfold.db"))
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    inter_source_delay: float = 3.0
    max_completed_jobs: int = 3
    scrape_timeout: float = 45.0
    grouping_min_content_length: int = 0
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("inter_source_delay", "scrape_timeout")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("value must be non-negative")
        return value

    def resolved_database_path(self, base_dir: Path) -> Path:
        """Return database path relative to project root."""

        if not self.database_path.is_absolute():
            return (base_dir / self.database_path).resolve()
        return self.database_path


__all__ = [
    "GlobalConfig",
    "RetryPolicy",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "SubscriptionConfig",
    "SyncConfig",
]
