"""Error taxonomy shared by the orchestrator, scrapers and sync client.

Every error carries a stable ``code`` so callers (CLI, message handlers)
can report failures without parsing messages.
"""

from __future__ import annotations

from typing import Any


class PostfoldError(Exception):
    """Base class for all domain errors."""

    code = "postfold_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ConflictError(PostfoldError):
    """Another job already holds the single active-job slot."""

    code = "conflict"


class InvalidStateError(PostfoldError):
    """Operation is illegal for the job's current status."""

    code = "invalid_state"


class NotFoundError(PostfoldError):
    code = "not_found"


class EmptySubscriptionError(PostfoldError):
    """Subscription has no enabled sources, so there is nothing to do."""

    code = "empty_subscription"


class ConfigError(PostfoldError):
    code = "config_invalid"


class BadRequestError(PostfoldError):
    """Lifecycle message is missing fields or names an unknown operation."""

    code = "bad_request"


class ScrapeError(PostfoldError):
    code = "scrape_failed"


class TransientScrapeError(ScrapeError):
    """Scrape failed in a way that may succeed on retry."""

    code = "transient_scrape"


class FatalScrapeError(ScrapeError):
    """Source is unreachable or unscrapable; retrying will not help."""

    code = "fatal_scrape"


class SyncError(PostfoldError):
    """Remote sync failed; ``partial`` holds what earlier batches achieved."""

    code = "sync_failed"

    def __init__(self, message: str, partial: Any = None) -> None:
        super().__init__(message)
        self.partial = partial


__all__ = [
    "BadRequestError",
    "ConfigError",
    "ConflictError",
    "EmptySubscriptionError",
    "FatalScrapeError",
    "InvalidStateError",
    "NotFoundError",
    "PostfoldError",
    "ScrapeError",
    "SyncError",
    "TransientScrapeError",
]
