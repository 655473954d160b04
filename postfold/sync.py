"""Client side of the remote last-write-wins sync boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol, Sequence, TypeVar

import httpx
import structlog

from .config import SyncConfig
from .errors import SyncError
from .models import Item, parse_timestamp, utcnow

if TYPE_CHECKING:
    from .engine.item_store import ItemStore

MAX_BATCH_SIZE = 1000
SYNC_POSTS_PATH = "/api/sync/posts"


class Versioned(Protocol):
    id: str
    updated_at: datetime


V = TypeVar("V", bound=Versioned)


@dataclass(slots=True)
class SyncResult:
    synced: int = 0
    conflicts: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def merge(self, payload: Mapping[str, Any]) -> None:
        self.synced += int(payload.get("synced", 0))
        self.conflicts += int(payload.get("conflicts", 0))
        self.errors.extend(payload.get("errors") or [])


def merge_last_write_wins(local: Iterable[V], remote: Iterable[V]) -> tuple[list[V], int]:
    """Merge two record sets keyed by id; the newer ``updated_at`` wins.

    Returns the merged records (local order first, then remote-only ones)
    and the number of ids present on both sides. Ties keep the local copy.
    """

    merged: dict[str, V] = {record.id: record for record in local}
    conflicts = 0
    for record in remote:
        current = merged.get(record.id)
        if current is None:
            merged[record.id] = record
            continue
        conflicts += 1
        if record.updated_at > current.updated_at:
            merged[record.id] = record
    return list(merged.values()), conflicts


def apply_remote(item_store: "ItemStore", remote_items: Sequence[Item]) -> SyncResult:
    """Merge pulled items into the local store.

    Only remote records that win the merge are written; ``synced`` counts
    them and ``conflicts`` counts ids already stored locally.
    """

    local = item_store.get_many(item.id for item in remote_items)
    local_by_id = {item.id: item for item in local}
    merged, conflicts = merge_last_write_wins(local, remote_items)
    winners = [item for item in merged if item is not local_by_id.get(item.id)]
    return SyncResult(synced=item_store.upsert_many(winners), conflicts=conflicts)


class SyncClient:
    """Exchange items with the remote store in bounded batches."""

    def __init__(
        self,
        config: SyncConfig,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if not config.base_url:
            raise SyncError("Sync base_url is not configured")
        self.config = config
        headers = {"Authorization": f"Bearer {config.api_token}"} if config.api_token else None
        self._client = client or httpx.Client(
            base_url=config.base_url, timeout=config.timeout, headers=headers
        )
        self.logger = logger or structlog.get_logger("postfold.sync")

    def close(self) -> None:
        self._client.close()

    @property
    def batch_size(self) -> int:
        return min(self.config.batch_size, MAX_BATCH_SIZE)

    def push_items(self, items: Sequence[Item]) -> SyncResult:
        """Upload ``items``; a failing batch raises with the earlier batches' totals."""

        result = SyncResult()
        for start in range(0, len(items), self.batch_size):
            batch = items[start : start + self.batch_size]
            payload = {"posts": [self._serialise(item) for item in batch]}
            try:
                body = self._request("POST", json=payload)
            except SyncError as exc:
                exc.partial = result
                self.logger.warning(
                    "sync_push_aborted",
                    batch_start=start,
                    synced=result.synced,
                    conflicts=result.conflicts,
                    error=exc.message,
                )
                raise
            result.merge(body)
            self.logger.info(
                "sync_batch_pushed",
                batch_start=start,
                batch_size=len(batch),
                synced=result.synced,
                conflicts=result.conflicts,
            )
        if result.errors:
            self.logger.warning("sync_record_errors", count=len(result.errors))
        return result

    def pull_items(self, since: datetime | None = None) -> list[Item]:
        """Page through the remote items, optionally only those scraped since ``since``."""

        params: dict[str, Any] = {"limit": self.batch_size}
        if since is not None:
            params["since"] = int(since.timestamp() * 1000)
        items: list[Item] = []
        offset = 0
        while True:
            body = self._request("GET", params={**params, "offset": offset})
            page = body.get("posts") or []
            items.extend(self._deserialise(record) for record in page)
            offset += len(page)
            self.logger.info("sync_page_pulled", offset=offset, total=body.get("total"))
            if not page or offset >= int(body.get("total") or 0):
                return items

    def _request(self, method: str, **kwargs: Any) -> Mapping[str, Any]:
        try:
            response = self._client.request(method, SYNC_POSTS_PATH, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise SyncError(f"Sync rejected with status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SyncError(f"Sync request failed: {exc}") from exc
        except ValueError as exc:
            raise SyncError("Sync server returned invalid JSON") from exc
        if not isinstance(body, Mapping):
            raise SyncError("Sync server returned an unexpected payload")
        return body

    @staticmethod
    def _serialise(item: Item) -> dict[str, Any]:
        record = item.to_dict()
        record["createdAt"] = record["scraped_at"]
        return record

    @staticmethod
    def _deserialise(record: Any) -> Item:
        if not isinstance(record, Mapping):
            raise SyncError("Sync server returned a malformed post")

        def pick(*keys: str) -> Any:
            for key in keys:
                if record.get(key) is not None:
                    return record[key]
            return None

        item_id = pick("id")
        source_id = pick("source_id", "groupId")
        if not item_id or not source_id:
            raise SyncError("Sync server returned a post without id or source")
        scraped_at = parse_timestamp(pick("scraped_at", "scrapedAt")) or utcnow()
        return Item(
            id=str(item_id),
            source_id=str(source_id),
            author=str(pick("author", "authorName") or ""),
            content=str(pick("content", "contentHtml") or ""),
            url=str(pick("url") or ""),
            timestamp=parse_timestamp(pick("timestamp")),
            scraped_at=scraped_at,
            seen=bool(pick("seen")),
            starred=bool(pick("starred")),
            updated_at=parse_timestamp(pick("updated_at", "updatedAt")) or scraped_at,
        )


__all__ = [
    "MAX_BATCH_SIZE",
    "SyncClient",
    "SyncResult",
    "apply_remote",
    "merge_last_write_wins",
]
