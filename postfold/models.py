"""Runtime domain records: jobs, scraped items and raw scrape output."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_timestamp(value: object) -> datetime | None:
    """Lenient timestamp parsing for feed and sync payloads.

    Accepts epoch seconds, epoch milliseconds or ISO-8601 text; anything
    else yields ``None``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
        if numeric > 1_000_000_000_000:  # milliseconds
            numeric /= 1000.0
        return datetime.fromtimestamp(numeric, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = from_iso(value.strip())
        except ValueError:
            return None
        return parsed.astimezone(timezone.utc)
    return None


class JobStatus(str, Enum):
    """Lifecycle states of a scrape job."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class Job:
    """Unit of orchestrated work; ``source_queue`` is the resumption point."""

    id: str
    subscription_id: str
    status: JobStatus
    source_queue: list[str]
    processed_count: int = 0
    total_count: int = 0
    items_ingested: int = 0
    last_error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, subscription_id: str, source_ids: list[str]) -> "Job":
        now = utcnow()
        return cls(
            id=uuid.uuid4().hex,
            subscription_id=subscription_id,
            status=JobStatus.PENDING,
            source_queue=list(source_ids),
            total_count=len(source_ids),
            created_at=now,
            updated_at=now,
        )

    @property
    def head(self) -> str | None:
        return self.source_queue[0] if self.source_queue else None

    def progress(self) -> float:
        if self.total_count == 0:
            return 1.0
        return self.processed_count / self.total_count

    def snapshot(self) -> "Job":
        return replace(self, source_queue=list(self.source_queue))

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "status": self.status.value,
            "source_queue": list(self.source_queue),
            "processed_count": self.processed_count,
            "total_count": self.total_count,
            "items_ingested": self.items_ingested,
            "last_error": self.last_error,
            "created_at": to_iso(self.created_at),
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "updated_at": to_iso(self.updated_at),
        }


@dataclass(slots=True)
class RawItem:
    """Item as yielded by a scraper, before ingestion."""

    id: str
    source_id: str
    author: str = ""
    content: str = ""
    url: str = ""
    timestamp: datetime | None = None

    def to_item(self, scraped_at: datetime | None = None) -> "Item":
        now = scraped_at or utcnow()
        return Item(
            id=self.id,
            source_id=self.source_id,
            author=self.author,
            content=self.content,
            url=self.url,
            timestamp=self.timestamp,
            scraped_at=now,
            updated_at=now,
        )


@dataclass(slots=True)
class Item:
    """A stored scraped content unit."""

    id: str
    source_id: str
    author: str = ""
    content: str = ""
    url: str = ""
    timestamp: datetime | None = None
    scraped_at: datetime = field(default_factory=utcnow)
    seen: bool = False
    starred: bool = False
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "author": self.author,
            "content": self.content,
            "url": self.url,
            "timestamp": to_iso(self.timestamp),
            "scraped_at": to_iso(self.scraped_at),
            "seen": self.seen,
            "starred": self.starred,
            "updated_at": to_iso(self.updated_at),
        }


__all__ = ["Item", "Job", "JobStatus", "RawItem", "from_iso", "parse_timestamp", "to_iso", "utcnow"]
