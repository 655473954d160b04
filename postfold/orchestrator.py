"""Scrape job orchestrator: lifecycle, processing loop and checkpoints."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from threading import Event, RLock
from typing import Any, Callable, Mapping

import structlog

from .config import ConfigRepository, GlobalConfig, SourceConfig
from .engine import ItemStore, JobStore, SourceScraper
from .errors import (
    BadRequestError,
    ConflictError,
    EmptySubscriptionError,
    FatalScrapeError,
    InvalidStateError,
    NotFoundError,
    PostfoldError,
    ScrapeError,
    TransientScrapeError,
)
from .logging_conf import configure_logging, job_logger
from .models import Job, JobStatus, RawItem, utcnow


class JobRegistry:
    """Process-wide record of which job owns the single running slot.

    Callers own the registry and hand it to the orchestrator(s) that must
    share mutual exclusion; tests build a fresh one per case.
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self._running_job_id: str | None = None
        self._cancel_events: dict[str, Event] = {}
        self._futures: dict[str, Future] = {}

    @property
    def running_job_id(self) -> str | None:
        with self.lock:
            return self._running_job_id

    def claim(self, job_id: str) -> Event:
        with self.lock:
            if self._running_job_id is not None and self._running_job_id != job_id:
                raise ConflictError(f"Job {self._running_job_id} is already running")
            self._running_job_id = job_id
            event = Event()
            self._cancel_events[job_id] = event
            return event

    def release(self, job_id: str, token: Event) -> None:
        """Give up the slot claimed with ``token``; a newer claim for the same id is kept."""

        with self.lock:
            if self._cancel_events.get(job_id) is not token:
                return
            del self._cancel_events[job_id]
            if self._running_job_id == job_id:
                self._running_job_id = None

    def owns(self, job_id: str) -> bool:
        with self.lock:
            return self._running_job_id == job_id

    def request_cancel(self, job_id: str) -> bool:
        """Flag ``job_id`` for cancellation; False if no live loop runs it."""

        with self.lock:
            event = self._cancel_events.get(job_id)
            if event is None:
                return False
            event.set()
            return True

    def attach(self, job_id: str, future: Future) -> None:
        with self.lock:
            self._futures[job_id] = future

    def future(self, job_id: str) -> Future | None:
        with self.lock:
            return self._futures.get(job_id)


class Orchestrator:
    """Central coordinator managing the lifecycle of scrape jobs."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        item_store: ItemStore,
        job_store: JobStore,
        scraper: SourceScraper,
        registry: JobRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.item_store = item_store
        self.job_store = job_store
        self.scraper = scraper
        self.registry = registry or JobRegistry()
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="postfold-job")
        self.logger = configure_logging().bind(component="orchestrator")

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------
    def start(self, subscription_id: str) -> str:
        with self.registry.lock:
            self._ensure_slot_free()
            sources = self.config_repository.enabled_sources(subscription_id)
            if not sources:
                raise EmptySubscriptionError(
                    f"Subscription {subscription_id} has no enabled sources"
                )
            job = Job.create(subscription_id, [source.source_id for source in sources])
            self.job_store.create(job)
            self.logger.info(
                "job_created",
                job_id=job.id,
                subscription_id=subscription_id,
                total_sources=job.total_count,
            )
            self._launch(job)
        return job.id

    def cancel(self, job_id: str) -> None:
        with self.registry.lock:
            job = self.job_store.get(job_id)
            if job.status is not JobStatus.RUNNING:
                self.logger.debug("cancel_ignored", job_id=job_id, status=job.status.value)
                return
            if self.registry.request_cancel(job_id):
                self.logger.info("cancel_requested", job_id=job_id)
                return
            # Running on disk but no loop here: its process died.
            job.status = JobStatus.PAUSED
            self.job_store.save(job)
            self.logger.warning("orphaned_job_paused", job_id=job_id)

    def resume(self, job_id: str) -> None:
        with self.registry.lock:
            job = self.job_store.get(job_id)
            if job.status is not JobStatus.PAUSED:
                raise InvalidStateError(f"Cannot resume job with status: {job.status.value}")
            self._ensure_slot_free(exclude=job_id)
            self.logger.info(
                "job_resuming",
                job_id=job_id,
                remaining=len(job.source_queue),
                processed=job.processed_count,
            )
            self._launch(job)

    def retry(self, job_id: str) -> None:
        """Continue a failed job from its failing source."""

        with self.registry.lock:
            job = self.job_store.get(job_id)
            if job.status is not JobStatus.FAILED:
                raise InvalidStateError(f"Cannot retry job with status: {job.status.value}")
            self._ensure_slot_free(exclude=job_id)
            job.last_error = None
            job.completed_at = None
            self.logger.info("job_retrying", job_id=job_id, head=job.head)
            self._launch(job)

    def get(self, job_id: str) -> Job:
        return self.job_store.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self.job_store.list()

    def delete(self, job_id: str) -> None:
        with self.registry.lock:
            job = self.job_store.get(job_id)
            if job.status is JobStatus.RUNNING:
                raise InvalidStateError("Cannot delete a running job; cancel it first")
            self.job_store.delete(job_id)
            self.logger.info("job_deleted", job_id=job_id, status=job.status.value)

    def recover_interrupted(self, auto_resume: bool = False) -> list[str]:
        """Pause jobs left running or pending by a process that no longer exists."""

        recovered: list[str] = []
        with self.registry.lock:
            for job in self.job_store.find_by_status(JobStatus.RUNNING, JobStatus.PENDING):
                if self.registry.owns(job.id):
                    continue
                job.status = JobStatus.PAUSED
                self.job_store.save(job)
                recovered.append(job.id)
                self.logger.warning(
                    "interrupted_job_recovered",
                    job_id=job.id,
                    remaining=len(job.source_queue),
                )
            if auto_resume and recovered:
                self.resume(recovered[0])
        return recovered

    def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Block until the processing loop of ``job_id`` finishes (or timeout)."""

        future = self.registry.future(job_id)
        if future is not None:
            wait_futures([future], timeout=timeout)
        return self.job_store.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Message-style entry point
    # ------------------------------------------------------------------
    def handle(self, operation: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Dispatch a lifecycle request and report errors by stable code."""

        payload = payload or {}
        try:
            if operation == "start":
                subscription_id = payload.get("subscription_id")
                if not subscription_id:
                    raise BadRequestError("start requires subscription_id")
                return {"ok": True, "job_id": self.start(subscription_id)}
            job_id = payload.get("job_id")
            if not job_id:
                raise BadRequestError(f"{operation} requires job_id")
            if operation == "get":
                return {"ok": True, "job": self.get(job_id).to_dict()}
            handlers = {
                "cancel": self.cancel,
                "resume": self.resume,
                "retry": self.retry,
                "delete": self.delete,
            }
            handler = handlers.get(operation)
            if handler is None:
                raise BadRequestError(f"Unknown operation: {operation}")
            handler(job_id)
            return {"ok": True}
        except PostfoldError as exc:
            self.logger.info("request_rejected", operation=operation, code=exc.code, error=exc.message)
            return {"ok": False, "error": exc.to_dict()}

    # ------------------------------------------------------------------
    # Processing loop
    # ------------------------------------------------------------------
    def _ensure_slot_free(self, exclude: str | None = None) -> None:
        running = self.registry.running_job_id
        if running is not None and running != exclude:
            raise ConflictError(f"Job {running} is already running")
        active = self.job_store.find_active(exclude=exclude)
        if active is not None:
            raise ConflictError(f"Job {active.id} is already {active.status.value}")

    def _launch(self, job: Job) -> None:
        cancel_event = self.registry.claim(job.id)
        try:
            job.status = JobStatus.RUNNING
            if job.started_at is None:
                job.started_at = utcnow()
            self.job_store.save(job)
            future = self._executor.submit(self._run, job.id, cancel_event)
        except BaseException:
            self.registry.release(job.id, cancel_event)
            raise
        self.registry.attach(job.id, future)

    def _run(self, job_id: str, cancel_event: Event) -> None:
        log = job_logger(job_id)
        try:
            job = self.job_store.get(job_id)
            self._process(job, cancel_event, log)
        except Exception as exc:  # noqa: BLE001
            log.exception("job_execution_error", error=str(exc))
            self._mark_failed(job_id, str(exc))
        finally:
            self.registry.release(job_id, cancel_event)

    def _process(self, job: Job, cancel_event: Event, log: structlog.BoundLogger) -> None:
        log.info(
            "job_started",
            subscription_id=job.subscription_id,
            remaining=len(job.source_queue),
            processed=job.processed_count,
            total=job.total_count,
        )
        while job.source_queue:
            if cancel_event.is_set():
                job.status = JobStatus.PAUSED
                self.job_store.save(job)
                log.info("job_paused", remaining=list(job.source_queue))
                return

            source_id = job.head
            try:
                raw_items = self._scrape_with_retry(job, source_id, log)
            except ScrapeError as exc:
                job.status = JobStatus.FAILED
                job.last_error = exc.message
                job.completed_at = utcnow()
                self.job_store.save(job)
                log.error("job_failed", source_id=source_id, code=exc.code, error=exc.message)
                return

            job.last_error = None
            scraped_at = utcnow()
            new_items = self.item_store.insert_many(raw.to_item(scraped_at) for raw in raw_items)
            self.job_store.checkpoint(job, source_id, new_items)
            log.info(
                "source_scraped",
                source_id=source_id,
                items_returned=len(raw_items),
                items_new=new_items,
                progress=f"{job.processed_count}/{job.total_count}",
            )

            delay = self.global_config.inter_source_delay
            if job.source_queue and delay > 0:
                cancel_event.wait(delay)

        job.status = JobStatus.COMPLETED
        job.completed_at = utcnow()
        self.job_store.save(job)
        log.info("job_completed", items_ingested=job.items_ingested, processed=job.processed_count)
        pruned = self.job_store.cleanup_completed(self.global_config.max_completed_jobs)
        if pruned:
            log.debug("completed_jobs_pruned", count=pruned)

    def _scrape_with_retry(
        self, job: Job, source_id: str, log: structlog.BoundLogger
    ) -> list[RawItem]:
        source = self._resolve_source(job.subscription_id, source_id)
        policy = self.global_config.retry
        attempt = 0
        while True:
            attempt += 1
            try:
                return list(self.scraper.scrape(source))
            except TransientScrapeError as exc:
                if attempt >= policy.max_attempts:
                    raise TransientScrapeError(
                        f"{source_id}: giving up after {attempt} attempts: {exc.message}"
                    ) from exc
                delay = policy.delay_for(attempt)
                job.last_error = exc.message
                self.job_store.save(job)
                log.warning(
                    "scrape_retry",
                    source_id=source_id,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=exc.message,
                )
                if delay > 0:
                    self._sleep(delay)

    def _resolve_source(self, subscription_id: str, source_id: str) -> SourceConfig:
        try:
            return self.config_repository.load_source(subscription_id, source_id)
        except NotFoundError as exc:
            raise FatalScrapeError(f"Source {source_id} is no longer configured") from exc

    def _mark_failed(self, job_id: str, message: str) -> None:
        try:
            job = self.job_store.get(job_id)
        except NotFoundError:
            return
        job.status = JobStatus.FAILED
        job.last_error = message
        job.completed_at = utcnow()
        self.job_store.save(job)


__all__ = ["JobRegistry", "Orchestrator"]
