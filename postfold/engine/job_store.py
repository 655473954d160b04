"""Persistence for job records and their checkpoints."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from ..errors import NotFoundError
from ..infra.storage import SQLiteManager
from ..models import Job, JobStatus, from_iso, to_iso, utcnow


class JobStore:
    """CRUD over the ``jobs`` table.

    :meth:`checkpoint` is the commit point of the processing loop: the
    queue pop and the counter updates land in one row write.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self.manager.connect(db_path)

    def create(self, job: Job) -> Job:
        with self.manager.transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO jobs(
                    id, subscription_id, status, source_queue, processed_count, total_count,
                    items_ingested, last_error, created_at, started_at, completed_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.subscription_id,
                    job.status.value,
                    json.dumps(job.source_queue),
                    job.processed_count,
                    job.total_count,
                    job.items_ingested,
                    job.last_error,
                    to_iso(job.created_at),
                    to_iso(job.started_at),
                    to_iso(job.completed_at),
                    to_iso(job.updated_at),
                ),
            )
        return job

    def get(self, job_id: str) -> Job:
        with self.manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Job {job_id} not found")
        return self._from_row(row)

    def list(self) -> list[Job]:
        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM jobs ORDER BY created_at DESC, rowid DESC").fetchall()
        return [self._from_row(row) for row in rows]

    def find_by_status(self, *statuses: JobStatus) -> list[Job]:
        placeholders = ",".join("?" for _ in statuses)
        with self.manager.transaction(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs WHERE status IN ({placeholders}) ORDER BY created_at, rowid",
                tuple(status.value for status in statuses),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def find_active(self, exclude: str | None = None) -> Job | None:
        """Return the job holding the active slot (running or paused), if any."""

        for job in self.find_by_status(JobStatus.RUNNING, JobStatus.PAUSED):
            if job.id != exclude:
                return job
        return None

    def save(self, job: Job) -> Job:
        """Persist status, counters and queue of ``job`` in one write."""

        job.updated_at = utcnow()
        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE jobs SET status = ?, source_queue = ?, processed_count = ?,
                    total_count = ?, items_ingested = ?, last_error = ?, started_at = ?,
                    completed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    job.status.value,
                    json.dumps(job.source_queue),
                    job.processed_count,
                    job.total_count,
                    job.items_ingested,
                    job.last_error,
                    to_iso(job.started_at),
                    to_iso(job.completed_at),
                    to_iso(job.updated_at),
                    job.id,
                ),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Job {job.id} not found")
        return job

    def checkpoint(self, job: Job, source_id: str, new_items: int) -> Job:
        """Commit progress for ``source_id``, which must be the queue head."""

        if job.head != source_id:
            raise ValueError(f"Checkpoint for {source_id} but queue head is {job.head}")
        updated = job.snapshot()
        updated.source_queue.pop(0)
        updated.processed_count += 1
        updated.items_ingested += new_items
        self.save(updated)
        job.source_queue = updated.source_queue
        job.processed_count = updated.processed_count
        job.items_ingested = updated.items_ingested
        job.updated_at = updated.updated_at
        return job

    def delete(self, job_id: str) -> None:
        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"Job {job_id} not found")

    def cleanup_completed(self, keep: int) -> int:
        """Drop all but the ``keep`` most recently completed jobs."""

        with self.manager.transaction(self.db_path) as conn:
            cur = conn.execute(
                """
                DELETE FROM jobs WHERE status = ? AND id NOT IN (
                    SELECT id FROM jobs WHERE status = ?
                    ORDER BY completed_at DESC, rowid DESC LIMIT ?
                )
                """,
                (JobStatus.COMPLETED.value, JobStatus.COMPLETED.value, max(keep, 0)),
            )
            return cur.rowcount

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            subscription_id=row["subscription_id"],
            status=JobStatus(row["status"]),
            source_queue=list(json.loads(row["source_queue"])),
            processed_count=row["processed_count"],
            total_count=row["total_count"],
            items_ingested=row["items_ingested"],
            last_error=row["last_error"],
            created_at=from_iso(row["created_at"]),
            started_at=from_iso(row["started_at"]),
            completed_at=from_iso(row["completed_at"]),
            updated_at=from_iso(row["updated_at"]),
        )


__all__ = ["JobStore"]
