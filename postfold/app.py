"""Typer CLI entrypoint for postfold."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ConfigRepository, SyncConfig
from .engine import FeedScraper, ItemStore, JobStore
from .errors import BadRequestError, PostfoldError, SyncError
from .grouping import ExactMatchStrategy, FilterSettings, GroupingService, filter_items
from .infra import SQLiteManager
from .logging_conf import available_job_logs, configure_logging, log_dir, tail_log
from .models import Job, JobStatus, parse_timestamp
from .orchestrator import Orchestrator
from .scheduler import APSchedulerAdapter
from .sync import SyncClient, SyncResult, apply_remote

app = typer.Typer(help="postfold command line tool", no_args_is_help=True, rich_markup_mode=None)
job_app = typer.Typer(name="job", help="Scrape job lifecycle", no_args_is_help=True)
subscription_app = typer.Typer(name="subscription", help="Subscriptions", no_args_is_help=True)
items_app = typer.Typer(name="items", help="Stored items and groups", no_args_is_help=True)
sync_app = typer.Typer(name="sync", help="Remote sync", no_args_is_help=True)
schedule_app = typer.Typer(name="schedule", help="Scheduled runs", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log files", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    orchestrator: Orchestrator
    item_store: ItemStore
    storage: SQLiteManager


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    storage = SQLiteManager()
    db_path = repository.database_path()
    item_store = ItemStore(storage, db_path)
    job_store = JobStore(storage, db_path)
    scraper = FeedScraper(timeout=global_config.scrape_timeout)
    orchestrator = Orchestrator(
        config_repository=repository,
        item_store=item_store,
        job_store=job_store,
        scraper=scraper,
    )
    return AppState(
        repository=repository,
        orchestrator=orchestrator,
        item_store=item_store,
        storage=storage,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _fail(exc: PostfoldError) -> None:
    console.print(f"[{exc.code}] {exc.message}", style="red", markup=False)
    raise typer.Exit(code=1)


def _format_ts(value) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _render_job(job: Job) -> Table:
    table = Table(title=f"Job {job.id}", box=box.MINIMAL_DOUBLE_HEAD, show_header=False)
    table.add_column("field", style="dim")
    table.add_column("value", style="cyan", overflow="fold")
    table.add_row("subscription", job.subscription_id)
    table.add_row("status", job.status.value)
    table.add_row("progress", f"{job.processed_count}/{job.total_count} ({job.progress():.0%})")
    table.add_row("remaining", ", ".join(job.source_queue) or "-")
    table.add_row("items ingested", str(job.items_ingested))
    table.add_row("last error", escape(job.last_error or "-"))
    table.add_row("created", _format_ts(job.created_at))
    table.add_row("started", _format_ts(job.started_at))
    table.add_row("completed", _format_ts(job.completed_at))
    return table


def _render_jobs_table(jobs: Sequence[Job]) -> Table:
    table = Table(title=f"Jobs · {len(jobs)}", box=box.SIMPLE_HEAD)
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("subscription")
    table.add_column("status", style="magenta")
    table.add_column("progress", justify="right")
    table.add_column("items", justify="right", style="green")
    table.add_column("created")
    for job in jobs:
        table.add_row(
            job.id,
            job.subscription_id,
            job.status.value,
            f"{job.processed_count}/{job.total_count}",
            str(job.items_ingested),
            _format_ts(job.created_at),
        )
    return table


def _wait_and_report(state: AppState, job_id: str) -> None:
    try:
        job = state.orchestrator.wait(job_id)
    except KeyboardInterrupt:
        console.print("Cancelling after the current source finishes…", style="yellow")
        state.orchestrator.cancel(job_id)
        job = state.orchestrator.wait(job_id)
    console.print(_render_job(job))
    if job.status is JobStatus.FAILED:
        raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True),
) -> None:
    ctx.obj = build_state(verbose)


# ----------------------------------------------------------------------
# job
# ----------------------------------------------------------------------
@job_app.command("start", help="Start a scrape job for a subscription.")
def job_start(
    ctx: typer.Context,
    subscription_id: str = typer.Argument(..., help="Subscription to scrape."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Block until the job stops."),
) -> None:
    state = _get_state(ctx)
    try:
        job_id = state.orchestrator.start(subscription_id)
    except PostfoldError as exc:
        _fail(exc)
    console.print(f"Job {job_id} started.", style="green")
    if wait:
        _wait_and_report(state, job_id)


@job_app.command("status", help="Show a job's persisted state.")
def job_status(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        job = state.orchestrator.get(job_id)
    except PostfoldError as exc:
        _fail(exc)
    console.print(_render_job(job))


@job_app.command("list", help="List known jobs, newest first.")
def job_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    jobs = state.orchestrator.list_jobs()
    if not jobs:
        console.print("No jobs yet.", style="dim")
        raise typer.Exit(code=0)
    console.print(_render_jobs_table(jobs))


@job_app.command("cancel", help="Pause a running job at the next source boundary.")
def job_cancel(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.cancel(job_id)
    except PostfoldError as exc:
        _fail(exc)
    console.print(f"Cancellation requested for {job_id}.", style="green")


@job_app.command("resume", help="Resume a paused job.")
def job_resume(
    ctx: typer.Context,
    job_id: str = typer.Argument(...),
    wait: bool = typer.Option(True, "--wait/--no-wait"),
) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.resume(job_id)
    except PostfoldError as exc:
        _fail(exc)
    console.print(f"Job {job_id} resumed.", style="green")
    if wait:
        _wait_and_report(state, job_id)


@job_app.command("retry", help="Continue a failed job from its failing source.")
def job_retry(
    ctx: typer.Context,
    job_id: str = typer.Argument(...),
    wait: bool = typer.Option(True, "--wait/--no-wait"),
) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.retry(job_id)
    except PostfoldError as exc:
        _fail(exc)
    console.print(f"Job {job_id} retrying.", style="green")
    if wait:
        _wait_and_report(state, job_id)


@job_app.command("delete", help="Delete a job record (items are kept).")
def job_delete(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.delete(job_id)
    except PostfoldError as exc:
        _fail(exc)
    console.print(f"Job {job_id} deleted.", style="green")


@job_app.command("recover", help="Pause jobs left running by a process that exited.")
def job_recover(
    ctx: typer.Context,
    resume: bool = typer.Option(False, "--resume", help="Resume the recovered job.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    try:
        recovered = state.orchestrator.recover_interrupted(auto_resume=resume)
    except PostfoldError as exc:
        _fail(exc)
    if not recovered:
        console.print("Nothing to recover.", style="dim")
        return
    console.print("Recovered: " + ", ".join(recovered), style="green")
    if resume:
        _wait_and_report(state, recovered[0])


# ----------------------------------------------------------------------
# subscription
# ----------------------------------------------------------------------
@subscription_app.command("list", help="List configured subscriptions.")
def subscription_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        subscriptions = state.repository.list_subscriptions()
    except PostfoldError as exc:
        _fail(exc)
    if not subscriptions:
        console.print(
            f"No subscriptions. Add YAML files under {state.repository.locator.subscriptions_dir}.",
            style="yellow",
        )
        raise typer.Exit(code=0)
    table = Table(title=f"Subscriptions · {len(subscriptions)}", box=box.SIMPLE_HEAD)
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("name")
    table.add_column("sources (enabled/total)", justify="right")
    table.add_column("schedule", style="yellow")
    for subscription in subscriptions:
        schedule = subscription.schedule
        table.add_row(
            subscription.subscription_id,
            subscription.name or "-",
            f"{len(subscription.enabled_sources())}/{len(subscription.sources)}",
            f"{schedule.type.value} ({schedule.value})" if schedule else "-",
        )
    console.print(table)


# ----------------------------------------------------------------------
# items
# ----------------------------------------------------------------------
def _shorten(text: str, width: int = 60) -> str:
    flat = " ".join(text.split())
    return escape(flat if len(flat) <= width else flat[: width - 1] + "…")


@items_app.command("list", help="List stored items.")
def items_list(
    ctx: typer.Context,
    source: Optional[str] = typer.Option(None, "--source", help="Only this source."),
    limit: int = typer.Option(50, "--limit"),
) -> None:
    state = _get_state(ctx)
    items = state.item_store.list_by_source(source) if source else state.item_store.list_items()
    table = Table(title=f"Items · {len(items)}", box=box.SIMPLE_HEAD)
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("source")
    table.add_column("author")
    table.add_column("content", overflow="fold")
    table.add_column("seen", justify="center")
    for item in items[-limit:]:
        table.add_row(
            item.id,
            item.source_id,
            escape(item.author or "-"),
            _shorten(item.content),
            "✓" if item.seen else "",
        )
    console.print(table)


@items_app.command("groups", help="Group near-identical stored items.")
def items_groups(
    ctx: typer.Context,
    subscription_id: Optional[str] = typer.Option(None, "--subscription"),
    include: List[str] = typer.Option([], "--include", help="Keep items mentioning any keyword."),
    exclude: List[str] = typer.Option([], "--exclude", help="Drop items mentioning a keyword."),
    duplicates_only: bool = typer.Option(False, "--duplicates-only", is_flag=True),
) -> None:
    state = _get_state(ctx)
    try:
        if subscription_id:
            subscription = state.repository.load_subscription(subscription_id)
            items = state.item_store.list_items([s.source_id for s in subscription.sources])
        else:
            items = state.item_store.list_items()
    except PostfoldError as exc:
        _fail(exc)
    items = filter_items(items, FilterSettings(positive_keywords=include, negative_keywords=exclude))
    min_length = state.repository.load_global_config().grouping_min_content_length
    service = GroupingService(ExactMatchStrategy(min_content_length=min_length))
    result = service.group_items(items)
    stats = service.stats(result)
    table = Table(
        title=(
            f"Groups · {stats.total_groups} from {stats.total_items_grouped} items "
            f"· {stats.reduction_percentage}% reduction"
        ),
        box=box.SIMPLE_HEAD,
    )
    table.add_column("group", style="cyan", no_wrap=True)
    table.add_column("count", justify="right", style="green")
    table.add_column("seen", justify="right")
    table.add_column("content", overflow="fold")
    for entry in service.sorted_by_size(result):
        if duplicates_only and entry.count < 2:
            continue
        table.add_row(entry.id, str(entry.count), str(entry.seen_count), _shorten(entry.signature))
    console.print(table)


# ----------------------------------------------------------------------
# sync
# ----------------------------------------------------------------------
def _push_all(state: AppState, sync_config: SyncConfig) -> SyncResult:
    client = SyncClient(sync_config)
    try:
        return client.push_items(state.item_store.list_items())
    finally:
        client.close()


@sync_app.command("push", help="Upload stored items to the sync server.")
def sync_push(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    sync_config = state.repository.load_global_config().sync
    if not sync_config.enabled:
        console.print("Sync is disabled in global_config.yaml.", style="yellow")
        raise typer.Exit(code=0)
    try:
        result = _push_all(state, sync_config)
    except SyncError as exc:
        if exc.partial is not None:
            console.print(f"Synced {exc.partial.synced} before the failure.", style="yellow")
        _fail(exc)
    except PostfoldError as exc:
        _fail(exc)
    console.print(
        f"Synced {result.synced}, overwritten {result.conflicts}, errors {len(result.errors)}.",
        style="green" if not result.errors else "yellow",
    )


@sync_app.command("pull", help="Merge items from the sync server into the local store.")
def sync_pull(
    ctx: typer.Context,
    since: Optional[str] = typer.Option(
        None, "--since", help="Only items scraped at or after this ISO timestamp"
    ),
) -> None:
    state = _get_state(ctx)
    sync_config = state.repository.load_global_config().sync
    if not sync_config.enabled:
        console.print("Sync is disabled in global_config.yaml.", style="yellow")
        raise typer.Exit(code=0)
    since_at = parse_timestamp(since) if since else None
    if since and since_at is None:
        _fail(BadRequestError(f"Invalid --since timestamp: {since}"))
    client = SyncClient(sync_config)
    try:
        result = apply_remote(state.item_store, client.pull_items(since=since_at))
    except PostfoldError as exc:
        _fail(exc)
    finally:
        client.close()
    console.print(
        f"Pulled {result.synced} newer items, {result.conflicts} already stored.",
        style="green",
    )


# ----------------------------------------------------------------------
# schedule
# ----------------------------------------------------------------------
@schedule_app.command("run", help="Run scheduled subscriptions until interrupted.")
def schedule_run(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    adapter = APSchedulerAdapter()
    scheduled = [
        subscription.subscription_id
        for subscription in state.repository.list_subscriptions()
        if adapter.schedule_subscription(subscription, state.orchestrator.start)
    ]
    sync_config = state.repository.load_global_config().sync
    if sync_config.enabled:
        adapter.schedule_sync(sync_config.interval_seconds, lambda: _push_all(state, sync_config))
    if not scheduled and not sync_config.enabled:
        console.print("No subscription declares a schedule and sync is disabled.", style="yellow")
        raise typer.Exit(code=0)
    adapter.start()
    console.print("Scheduled: " + (", ".join(scheduled) or "sync only"), style="green")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler…", style="yellow")
    finally:
        adapter.shutdown()
        running = state.orchestrator.registry.running_job_id
        if running:
            state.orchestrator.cancel(running)
            state.orchestrator.wait(running)
        state.orchestrator.shutdown()


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
def _log_candidates() -> Iterable[Path]:
    base = log_dir()
    yield base / "postfold.log"
    yield base / "error.log"
    yield from available_job_logs()


@log_app.command("list", help="List available log files.")
def log_list() -> None:
    for path in _log_candidates():
        if path.exists():
            console.print(str(path))


@log_app.command("show", help="Show the tail of a log (app, error or a job id).")
def log_show(
    name: str = typer.Argument("app"),
    lines: int = typer.Option(50, "--lines"),
) -> None:
    base = log_dir()
    if name == "app":
        path = base / "postfold.log"
    elif name == "error":
        path = base / "error.log"
    else:
        path = base / "jobs" / f"{name}.log"
    content = tail_log(path, lines)
    if not content:
        console.print(f"No log entries at {path}.", style="yellow")
        raise typer.Exit(code=0)
    for line in content:
        console.print(line.rstrip("\n"), markup=False, highlight=False)


app.add_typer(job_app, name="job")
app.add_typer(subscription_app, name="subscription")
app.add_typer(items_app, name="items")
app.add_typer(sync_app, name="sync")
app.add_typer(schedule_app, name="schedule")
app.add_typer(log_app, name="log")


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
