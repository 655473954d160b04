"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    GlobalConfig,
    RetryPolicy,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
    SubscriptionConfig,
    SyncConfig,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "GlobalConfig",
    "RetryPolicy",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "SubscriptionConfig",
    "SyncConfig",
]
