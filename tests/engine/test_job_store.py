from __future__ import annotations

import pytest

from postfold.engine import JobStore
from postfold.errors import NotFoundError
from postfold.models import Job, JobStatus, utcnow


def test_create_and_get_roundtrip(job_store: JobStore) -> None:
    job = job_store.create(Job.create("daily", ["A", "B"]))

    loaded = job_store.get(job.id)

    assert loaded.status is JobStatus.PENDING
    assert loaded.source_queue == ["A", "B"]
    assert loaded.total_count == 2
    assert loaded.created_at == job.created_at


def test_checkpoint_pops_head_and_counts(job_store: JobStore) -> None:
    job = job_store.create(Job.create("daily", ["A", "B", "C"]))

    job_store.checkpoint(job, "A", new_items=4)

    assert job.source_queue == ["B", "C"]
    stored = job_store.get(job.id)
    assert stored.source_queue == ["B", "C"]
    assert stored.processed_count == 1
    assert stored.items_ingested == 4


def test_checkpoint_requires_queue_head(job_store: JobStore) -> None:
    job = job_store.create(Job.create("daily", ["A", "B"]))

    with pytest.raises(ValueError):
        job_store.checkpoint(job, "B", new_items=0)

    assert job_store.get(job.id).source_queue == ["A", "B"]
    assert job.source_queue == ["A", "B"]


def test_find_active_and_status_queries(job_store: JobStore) -> None:
    done = job_store.create(Job.create("daily", ["A"]))
    done.status = JobStatus.COMPLETED
    job_store.save(done)
    paused = job_store.create(Job.create("daily", ["A"]))
    paused.status = JobStatus.PAUSED
    job_store.save(paused)

    assert job_store.find_active().id == paused.id
    assert job_store.find_active(exclude=paused.id) is None
    assert [j.id for j in job_store.find_by_status(JobStatus.COMPLETED)] == [done.id]
    assert [j.id for j in job_store.list()] == [paused.id, done.id]


def test_delete_and_missing(job_store: JobStore) -> None:
    job = job_store.create(Job.create("daily", ["A"]))
    job_store.delete(job.id)

    with pytest.raises(NotFoundError):
        job_store.get(job.id)
    with pytest.raises(NotFoundError):
        job_store.delete(job.id)
    with pytest.raises(NotFoundError):
        job_store.save(job)


def test_cleanup_completed_keeps_newest(job_store: JobStore) -> None:
    ids = []
    for _ in range(4):
        job = job_store.create(Job.create("daily", ["A"]))
        job.status = JobStatus.COMPLETED
        job.completed_at = utcnow()
        job_store.save(job)
        ids.append(job.id)
    failed = job_store.create(Job.create("daily", ["A"]))
    failed.status = JobStatus.FAILED
    job_store.save(failed)

    assert job_store.cleanup_completed(keep=2) == 2

    remaining = {job.id for job in job_store.list()}
    assert remaining == {ids[2], ids[3], failed.id}
