"""Source scraper capability and a generic JSON feed implementation."""

from __future__ import annotations

from threading import Lock
from typing import Any, Protocol

import httpx
import structlog

from ..config import SourceConfig
from ..errors import FatalScrapeError, TransientScrapeError
from ..models import RawItem, parse_timestamp

_RETRYABLE_STATUS = {408, 425, 429}


class SourceScraper(Protocol):
    """One scrape pass over a source.

    Implementations raise :class:`TransientScrapeError` for failures worth
    retrying and :class:`FatalScrapeError` for permanent ones. Scrapes are
    exclusive: the orchestrator never calls ``scrape`` concurrently.
    """

    def scrape(self, source: SourceConfig) -> list[RawItem]:
        ...


class FeedScraper:
    """Fetch a JSON feed of posts from ``source.url`` with httpx.

    The feed is either a list of post objects or ``{"items": [...]}``; each
    post needs an ``id`` and may carry ``author``, ``content``, ``url`` and
    ``timestamp`` (epoch seconds/milliseconds or ISO8601).
    """

    def __init__(
        self,
        timeout: float = 45.0,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._client = client or httpx.Client(follow_redirects=True, timeout=timeout)
        self._lock = Lock()
        self.logger = logger or structlog.get_logger("postfold.scraper")

    def close(self) -> None:
        self._client.close()

    def scrape(self, source: SourceConfig) -> list[RawItem]:
        if not source.url:
            raise FatalScrapeError(f"Source {source.source_id} has no url")
        with self._lock:
            try:
                response = self._client.get(source.url)
            except httpx.TimeoutException as exc:
                raise TransientScrapeError(f"Timeout fetching {source.url}") from exc
            except httpx.TransportError as exc:
                raise TransientScrapeError(f"Transport error fetching {source.url}: {exc}") from exc
        if response.status_code in _RETRYABLE_STATUS or response.status_code >= 500:
            raise TransientScrapeError(f"Unexpected status {response.status_code} for {source.url}")
        if response.status_code >= 400:
            raise FatalScrapeError(f"Source {source.source_id} returned {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise FatalScrapeError(f"Source {source.source_id} did not return JSON") from exc
        entries = payload.get("items") if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            raise FatalScrapeError(f"Source {source.source_id} returned an unexpected payload")

        items: list[RawItem] = []
        for entry in entries:
            item = self._to_raw_item(entry, source)
            if item is None:
                self.logger.warning("feed_entry_skipped", source=source.source_id)
                continue
            items.append(item)
        return items

    def _to_raw_item(self, entry: Any, source: SourceConfig) -> RawItem | None:
        if not isinstance(entry, dict):
            return None
        item_id = str(entry.get("id") or "").strip()
        if not item_id:
            return None
        return RawItem(
            id=item_id,
            source_id=source.source_id,
            author=str(entry.get("author") or entry.get("authorName") or ""),
            content=str(entry.get("content") or entry.get("contentHtml") or ""),
            url=str(entry.get("url") or ""),
            timestamp=parse_timestamp(entry.get("timestamp")),
        )


__all__ = ["FeedScraper", "SourceScraper"]
