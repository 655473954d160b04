"""Dedup-on-write item persistence backed by SQLite."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Iterable, Sequence

from ..errors import NotFoundError
from ..infra.storage import SQLiteManager
from ..models import Item, from_iso, to_iso, utcnow

_INSERT_SQL = """
    INSERT OR IGNORE INTO items(
        id, source_id, author, content, url, timestamp, scraped_at, seen, starred, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_UPSERT_SQL = """
    INSERT INTO items(
        id, source_id, author, content, url, timestamp, scraped_at, seen, starred, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        source_id = excluded.source_id,
        author = excluded.author,
        content = excluded.content,
        url = excluded.url,
        timestamp = excluded.timestamp,
        seen = excluded.seen,
        starred = excluded.starred,
        updated_at = excluded.updated_at
"""

# Below SQLite's default bound-parameter limit.
_ID_CHUNK = 500


@dataclass(slots=True)
class InsertResult:
    inserted: bool


class ItemStore:
    """Idempotent item insertion keyed by the source-assigned item id.

    Replaying an insert (e.g. after a crash before the job checkpoint)
    leaves the stored row untouched and reports ``inserted=False``.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self.manager.connect(db_path)

    def insert(self, item: Item) -> InsertResult:
        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute(_INSERT_SQL, self._row(item))
            return InsertResult(inserted=cur.rowcount == 1)

    def insert_many(self, items: Iterable[Item]) -> int:
        """Insert a batch in one transaction; return how many were new."""

        inserted = 0
        with self.manager.transaction(self.db_path) as conn:
            for item in items:
                cur = conn.execute(_INSERT_SQL, self._row(item))
                if cur.rowcount == 1:
                    inserted += 1
        return inserted

    def exists(self, item_id: str) -> bool:
        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute("SELECT 1 FROM items WHERE id = ?", (item_id,))
            return cur.fetchone() is not None

    def get(self, item_id: str) -> Item:
        with self.manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Item {item_id} not found")
        return self._from_row(row)

    def get_many(self, item_ids: Iterable[str]) -> list[Item]:
        """Return the stored items among ``item_ids``; unknown ids are skipped."""

        ids = list(dict.fromkeys(item_ids))
        found: list[Item] = []
        with self.manager.transaction(self.db_path) as conn:
            for start in range(0, len(ids), _ID_CHUNK):
                chunk = ids[start : start + _ID_CHUNK]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT * FROM items WHERE id IN ({placeholders})", tuple(chunk)
                ).fetchall()
                found.extend(self._from_row(row) for row in rows)
        return found

    def upsert_many(self, items: Iterable[Item]) -> int:
        """Write ``items`` over any stored copies, keeping the local ``scraped_at``.

        Used to apply records that won a last-write-wins merge.
        """

        written = 0
        with self.manager.transaction(self.db_path) as conn:
            for item in items:
                conn.execute(_UPSERT_SQL, self._row(item))
                written += 1
        return written

    def list_by_source(self, source_id: str) -> list[Item]:
        return self.list_items([source_id])

    def list_items(self, source_ids: Sequence[str] | None = None) -> list[Item]:
        """Return stored items in ingestion order, optionally limited to sources."""

        query = "SELECT * FROM items"
        params: tuple = ()
        if source_ids is not None:
            if not source_ids:
                return []
            placeholders = ",".join("?" for _ in source_ids)
            query += f" WHERE source_id IN ({placeholders})"
            params = tuple(source_ids)
        query += " ORDER BY scraped_at, rowid"
        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._from_row(row) for row in rows]

    def count(self) -> int:
        with self.manager.transaction(self.db_path) as conn:
            return conn.execute("SELECT count(*) FROM items").fetchone()[0]

    # ------------------------------------------------------------------
    # Flag mutation (bumps updated_at for last-write-wins sync)
    # ------------------------------------------------------------------
    def mark_seen(self, item_id: str, seen: bool = True) -> None:
        self._set_flag(item_id, "seen", seen)

    def set_starred(self, item_id: str, starred: bool = True) -> None:
        self._set_flag(item_id, "starred", starred)

    def _set_flag(self, item_id: str, column: str, value: bool) -> None:
        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute(
                f"UPDATE items SET {column} = ?, updated_at = ? WHERE id = ?",
                (int(value), to_iso(utcnow()), item_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Item {item_id} not found")

    # ------------------------------------------------------------------
    # Bulk deletion
    # ------------------------------------------------------------------
    def delete_by_source(self, source_id: str) -> int:
        with self.manager.transaction(self.db_path) as conn:
            return conn.execute("DELETE FROM items WHERE source_id = ?", (source_id,)).rowcount

    def delete_older_than(self, days: int) -> int:
        cutoff = to_iso(utcnow() - timedelta(days=days))
        with self.manager.transaction(self.db_path) as conn:
            return conn.execute("DELETE FROM items WHERE scraped_at < ?", (cutoff,)).rowcount

    # ------------------------------------------------------------------
    @staticmethod
    def _row(item: Item) -> tuple:
        return (
            item.id,
            item.source_id,
            item.author,
            item.content,
            item.url,
            to_iso(item.timestamp),
            to_iso(item.scraped_at),
            int(item.seen),
            int(item.starred),
            to_iso(item.updated_at),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Item:
        return Item(
            id=row["id"],
            source_id=row["source_id"],
            author=row["author"],
            content=row["content"],
            url=row["url"],
            timestamp=from_iso(row["timestamp"]),
            scraped_at=from_iso(row["scraped_at"]),
            seen=bool(row["seen"]),
            starred=bool(row["starred"]),
            updated_at=from_iso(row["updated_at"]),
        )


__all__ = ["InsertResult", "ItemStore"]
