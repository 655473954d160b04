from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from postfold.config import ScheduleConfig, ScheduleType, SubscriptionConfig
from postfold.errors import ConflictError, SyncError
from postfold.scheduler import APSchedulerAdapter


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def add_job(self, callback, trigger, id, args, replace_existing):  # noqa: ANN001
        self.calls.append(
            {"id": id, "args": args, "trigger": trigger, "callback": callback, "replace_existing": replace_existing}
        )

    def get_jobs(self):
        return []

    def start(self):
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False):  # noqa: ARG002
        self.calls.append({"event": "shutdown"})

    def remove_job(self, job_id):  # noqa: ANN001
        self.calls.append({"event": "remove", "id": job_id})


def test_build_triggers() -> None:
    adapter = APSchedulerAdapter(scheduler=StubScheduler())

    cron_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="*/5 * * * *"))
    assert isinstance(cron_trigger, CronTrigger)

    interval_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value=30))
    assert isinstance(interval_trigger, IntervalTrigger)
    assert interval_trigger.interval.total_seconds() == 30

    kwargs_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2}))
    assert kwargs_trigger.interval.total_seconds() == 120

    future = (datetime.now() + timedelta(minutes=5)).isoformat()
    once_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.ONCE, value=future))
    assert isinstance(once_trigger, DateTrigger)


def test_schedule_subscription_registers_job() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)
    scheduled = SubscriptionConfig(
        subscription_id="daily",
        schedule=ScheduleConfig(type=ScheduleType.INTERVAL, value=60),
    )
    unscheduled = SubscriptionConfig(subscription_id="manual")

    assert adapter.schedule_subscription(scheduled, lambda s: s) is True
    assert adapter.schedule_subscription(unscheduled, lambda s: s) is False
    adapter.start()
    adapter.remove_subscription("daily")
    adapter.shutdown()

    assert stub.calls[0]["id"] == "subscription::daily"
    assert stub.calls[0]["args"][0] == "daily"
    assert stub.calls[0]["replace_existing"] is True
    assert [c.get("event") for c in stub.calls[1:]] == ["started", "remove", "shutdown"]


def test_fire_skips_conflicts() -> None:
    adapter = APSchedulerAdapter(scheduler=StubScheduler())
    started: list[str] = []

    def busy(subscription_id: str) -> str:
        raise ConflictError("Job x is already running")

    def ok(subscription_id: str) -> str:
        started.append(subscription_id)
        return "job-1"

    adapter._fire("daily", busy)
    adapter._fire("daily", ok)

    assert started == ["daily"]


def test_fire_propagates_unexpected_errors() -> None:
    adapter = APSchedulerAdapter(scheduler=StubScheduler())

    def broken(subscription_id: str) -> str:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        adapter._fire("daily", broken)


def test_schedule_sync_logs_failures() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)
    pushes: list[str] = []

    adapter.schedule_sync(300, lambda: pushes.append("push"))

    assert stub.calls[0]["id"] == "sync::push"
    assert stub.calls[0]["trigger"].interval.total_seconds() == 300
    adapter._push(*stub.calls[0]["args"])
    assert pushes == ["push"]

    def failing() -> None:
        raise SyncError("Sync rejected with status 503")

    adapter._push(failing)
