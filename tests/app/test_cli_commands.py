from __future__ import annotations

import httpx
import pytest
from typer.testing import CliRunner

from postfold.app import AppState, app
from postfold.config import SyncConfig
from postfold.errors import FatalScrapeError
from postfold.sync import SyncClient


@pytest.fixture
def cli_state(monkeypatch, make_orchestrator, stub_scraper, temp_config_repository, item_store, storage) -> AppState:
    state = AppState(
        repository=temp_config_repository,
        orchestrator=make_orchestrator(stub_scraper),
        item_store=item_store,
        storage=storage,
    )
    monkeypatch.setattr("postfold.app.build_state", lambda verbose: state)
    return state


def test_cli_job_start_waits_for_completion(cli_state: AppState, make_subscription) -> None:
    make_subscription(source_ids=["A", "B"])

    result = CliRunner().invoke(app, ["job", "start", "daily"])

    assert result.exit_code == 0, result.stdout
    assert "completed" in result.stdout
    assert "2/2" in result.stdout
    assert cli_state.item_store.count() == 4


def test_cli_job_failure_exits_non_zero(cli_state: AppState, make_subscription, stub_scraper) -> None:
    make_subscription(source_ids=["A"])
    stub_scraper.outcomes["A"] = [FatalScrapeError("gone")]

    result = CliRunner().invoke(app, ["job", "start", "daily"])

    assert result.exit_code == 1
    assert "failed" in result.stdout
    assert "gone" in result.stdout


def test_cli_reports_error_codes(cli_state: AppState) -> None:
    runner = CliRunner()

    missing = runner.invoke(app, ["job", "status", "nope"])
    assert missing.exit_code == 1
    assert "[not_found]" in missing.stdout

    unknown = runner.invoke(app, ["job", "start", "ghost"])
    assert unknown.exit_code == 1
    assert "[not_found]" in unknown.stdout


def test_cli_job_list_and_delete(cli_state: AppState, make_subscription) -> None:
    runner = CliRunner()
    assert "No jobs yet." in runner.invoke(app, ["job", "list"]).stdout

    make_subscription(source_ids=["A"])
    job_id = cli_state.orchestrator.start("daily")
    cli_state.orchestrator.wait(job_id, timeout=10)

    listed = runner.invoke(app, ["job", "list"])
    assert listed.exit_code == 0, listed.stdout
    assert "daily" in listed.stdout

    deleted = runner.invoke(app, ["job", "delete", job_id])
    assert deleted.exit_code == 0, deleted.stdout
    assert cli_state.orchestrator.list_jobs() == []


def test_cli_resume_rejects_completed_job(cli_state: AppState, make_subscription) -> None:
    make_subscription(source_ids=["A"])
    job_id = cli_state.orchestrator.start("daily")
    cli_state.orchestrator.wait(job_id, timeout=10)

    result = CliRunner().invoke(app, ["job", "resume", job_id])

    assert result.exit_code == 1
    assert "[invalid_state]" in result.stdout


def test_cli_subscription_list(cli_state: AppState, make_subscription) -> None:
    make_subscription(subscription_id="morning", source_ids=["A", "B"], disabled=["B"])

    result = CliRunner().invoke(app, ["subscription", "list"])

    assert result.exit_code == 0, result.stdout
    assert "morning" in result.stdout
    assert "1/2" in result.stdout


def test_cli_items_groups(cli_state: AppState, item_factory) -> None:
    cli_state.item_store.insert_many(
        [
            item_factory("1", "Bike for sale"),
            item_factory("2", "<p>bike FOR sale</p>"),
            item_factory("3", "Flat to rent"),
        ]
    )

    result = CliRunner().invoke(app, ["items", "groups"])
    assert result.exit_code == 0, result.stdout
    assert "33% reduction" in result.stdout
    assert "bike for sale" in result.stdout

    filtered = CliRunner().invoke(app, ["items", "groups", "--exclude", "bike"])
    assert "flat to rent" in filtered.stdout
    assert "bike for sale" not in filtered.stdout


def test_cli_sync_push_disabled(cli_state: AppState) -> None:
    result = CliRunner().invoke(app, ["sync", "push"])

    assert result.exit_code == 0
    assert "disabled" in result.stdout


def test_cli_log_show_missing_job(cli_state: AppState) -> None:
    result = CliRunner().invoke(app, ["log", "show", "does-not-exist"])

    assert result.exit_code == 0
    assert "No log entries" in result.stdout


def test_cli_sync_pull_merges_remote_items(cli_state: AppState, monkeypatch, fast_global_config) -> None:
    sync_config = SyncConfig(enabled=True, base_url="https://sync.example.com")
    cli_state.repository.save_global_config(fast_global_config.model_copy(update={"sync": sync_config}))

    def handler(request: httpx.Request) -> httpx.Response:
        post = {"id": "r-1", "groupId": "A", "contentHtml": "from remote", "scrapedAt": 1700000000000}
        return httpx.Response(200, json={"posts": [post], "total": 1})

    def client_factory(config: SyncConfig) -> SyncClient:
        transport = httpx.MockTransport(handler)
        return SyncClient(config, client=httpx.Client(base_url=config.base_url, transport=transport))

    monkeypatch.setattr("postfold.app.SyncClient", client_factory)

    result = CliRunner().invoke(app, ["sync", "pull"])

    assert result.exit_code == 0, result.stdout
    assert "Pulled 1 newer items" in result.stdout
    assert cli_state.item_store.get("r-1").content == "from remote"


def test_cli_sync_pull_rejects_bad_since(cli_state: AppState, fast_global_config) -> None:
    sync_config = SyncConfig(enabled=True, base_url="https://sync.example.com")
    cli_state.repository.save_global_config(fast_global_config.model_copy(update={"sync": sync_config}))

    result = CliRunner().invoke(app, ["sync", "pull", "--since", "yesterday"])

    assert result.exit_code == 1
    assert "[bad_request]" in result.stdout
