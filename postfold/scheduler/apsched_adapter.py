"""APScheduler wrapper starting subscription jobs on a schedule."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType, SubscriptionConfig
from ..errors import ConflictError, EmptySubscriptionError, SyncError
from ..logging_conf import configure_logging

SYNC_JOB_ID = "sync::push"


class APSchedulerAdapter:
    """Manage APScheduler jobs for scheduled subscriptions."""

    def __init__(self, scheduler=None) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_subscription(
        self, subscription: SubscriptionConfig, start_job: Callable[[str], str]
    ) -> bool:
        """Register a periodic ``start_job(subscription_id)``; False if unscheduled."""

        if subscription.schedule is None:
            return False
        trigger = self._build_trigger(subscription.schedule)
        job_id = f"subscription::{subscription.subscription_id}"
        self.scheduler.add_job(
            self._fire,
            trigger=trigger,
            id=job_id,
            args=[subscription.subscription_id, start_job],
            replace_existing=True,
        )
        self.logger.info(
            "job_scheduled",
            subscription_id=subscription.subscription_id,
            schedule=subscription.schedule.model_dump(mode="json"),
        )
        return True

    def schedule_sync(self, interval_seconds: float, push: Callable[[], object]) -> None:
        """Run ``push`` every ``interval_seconds``; sync failures are logged and retried next tick."""

        self.scheduler.add_job(
            self._push,
            trigger=IntervalTrigger(seconds=float(interval_seconds)),
            id=SYNC_JOB_ID,
            args=[push],
            replace_existing=True,
        )
        self.logger.info("sync_scheduled", interval_seconds=interval_seconds)

    def remove_subscription(self, subscription_id: str) -> None:
        job_id = f"subscription::{subscription_id}"
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            self.logger.warning("job_remove_failed", subscription_id=subscription_id)

    def _fire(self, subscription_id: str, start_job: Callable[[str], str]) -> None:
        try:
            job_id = start_job(subscription_id)
        except (ConflictError, EmptySubscriptionError) as exc:
            self.logger.info(
                "scheduled_start_skipped",
                subscription_id=subscription_id,
                code=exc.code,
                error=exc.message,
            )
            return
        self.logger.info("scheduled_start", subscription_id=subscription_id, job_id=job_id)

    def _push(self, push: Callable[[], object]) -> None:
        try:
            result = push()
        except SyncError as exc:
            self.logger.warning("scheduled_sync_failed", code=exc.code, error=exc.message)
            return
        self.logger.info("scheduled_sync", result=repr(result))

    def _build_trigger(self, schedule: ScheduleConfig):
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value))
        if schedule.type is ScheduleType.INTERVAL:
            if isinstance(schedule.value, (int, float)):
                return IntervalTrigger(seconds=float(schedule.value))
            if isinstance(schedule.value, dict):
                return IntervalTrigger(**schedule.value)
            raise ValueError("Interval schedule requires seconds or kwargs dict")
        if schedule.type is ScheduleType.ONCE:
            if schedule.value:
                run_date = datetime.fromisoformat(str(schedule.value))
            else:
                run_date = datetime.now()
            return DateTrigger(run_date=run_date)
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter"]
