"""Pytest configuration providing isolated storage and scraper fixtures."""

from __future__ import annotations

from pathlib import Path
from threading import Event, Lock
from typing import Any, Callable, Iterable, Sequence

import pytest

from postfold.config import (
    ConfigLocator,
    ConfigRepository,
    GlobalConfig,
    RetryPolicy,
    SourceConfig,
    SubscriptionConfig,
)
from postfold.engine import ItemStore, JobStore
from postfold.infra import SQLiteManager
from postfold.models import Item, RawItem, utcnow
from postfold.orchestrator import JobRegistry, Orchestrator


@pytest.fixture(autouse=True)
def postfold_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("POSTFOLD_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def fast_global_config() -> GlobalConfig:
    return GlobalConfig(
        inter_source_delay=0.0,
        retry=RetryPolicy(max_attempts=3, backoff_base=0.0),
        max_completed_jobs=3,
    )


@pytest.fixture
def temp_config_repository(postfold_home: Path, fast_global_config: GlobalConfig) -> ConfigRepository:
    repository = ConfigRepository(ConfigLocator(project_root=postfold_home))
    repository.save_global_config(fast_global_config)
    return repository


@pytest.fixture
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "postfold.db"


@pytest.fixture
def item_store(storage: SQLiteManager, db_path: Path) -> ItemStore:
    return ItemStore(storage, db_path)


@pytest.fixture
def job_store(storage: SQLiteManager, db_path: Path) -> JobStore:
    return JobStore(storage, db_path)


@pytest.fixture
def make_subscription(temp_config_repository: ConfigRepository) -> Callable[..., SubscriptionConfig]:
    """Persist a subscription whose sources are named by ``source_ids``."""

    def _builder(
        subscription_id: str = "daily",
        source_ids: Sequence[str] = ("A", "B", "C"),
        disabled: Sequence[str] = (),
        **overrides: Any,
    ) -> SubscriptionConfig:
        sources = [
            SourceConfig(
                source_id=source_id,
                name=f"Group {source_id}",
                url=f"https://feeds.example.com/{source_id}",
                enabled=source_id not in disabled,
            )
            for source_id in source_ids
        ]
        subscription = SubscriptionConfig(
            subscription_id=subscription_id, sources=sources, **overrides
        )
        temp_config_repository.save_subscription(subscription)
        return subscription

    return _builder


def raw_items(source_id: str, count: int = 2, prefix: str | None = None) -> list[RawItem]:
    prefix = prefix or source_id
    return [
        RawItem(id=f"{prefix}-{n}", source_id=source_id, author="alice", content=f"post {prefix} {n}")
        for n in range(count)
    ]


def make_item(item_id: str, content: str, source_id: str = "A", **overrides: Any) -> Item:
    base: dict[str, Any] = {
        "id": item_id,
        "source_id": source_id,
        "author": "alice",
        "content": content,
        "scraped_at": utcnow(),
    }
    base.update(overrides)
    return Item(**base)


class StubScraper:
    """Scraper double returning canned items per source.

    ``outcomes[source_id]`` is consumed front to back; each entry is either
    an exception to raise or a list of items to return. Once exhausted the
    source yields ``raw_items(source_id)``. ``hooks[source_id]`` runs before
    every scrape of that source.
    """

    def __init__(self) -> None:
        self.outcomes: dict[str, list[Any]] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.calls: list[str] = []
        self.urls: list[str] = []
        self._lock = Lock()

    def scrape(self, source: SourceConfig) -> list[RawItem]:
        with self._lock:
            self.calls.append(source.source_id)
            self.urls.append(source.url)
        hook = self.hooks.get(source.source_id)
        if hook is not None:
            hook()
        queue = self.outcomes.get(source.source_id)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return list(outcome)
        return raw_items(source.source_id)


class GatedScraper(StubScraper):
    """Blocks the scrape of ``gated_source`` until ``release`` is set."""

    def __init__(self, gated_source: str = "A") -> None:
        super().__init__()
        self.entered = Event()
        self.release = Event()
        self.hooks[gated_source] = self._block

    def _block(self) -> None:
        self.entered.set()
        assert self.release.wait(timeout=10), "gated scrape never released"


@pytest.fixture
def stub_scraper() -> StubScraper:
    return StubScraper()


@pytest.fixture
def make_orchestrator(
    temp_config_repository: ConfigRepository,
    storage: SQLiteManager,
    db_path: Path,
) -> Iterable[Callable[..., Orchestrator]]:
    created: list[Orchestrator] = []

    def _builder(
        scraper: Any,
        job_store: JobStore | None = None,
        registry: JobRegistry | None = None,
    ) -> Orchestrator:
        orchestrator = Orchestrator(
            config_repository=temp_config_repository,
            item_store=ItemStore(storage, db_path),
            job_store=job_store or JobStore(storage, db_path),
            scraper=scraper,
            registry=registry or JobRegistry(),
            sleep=lambda seconds: None,
        )
        created.append(orchestrator)
        return orchestrator

    yield _builder
    for orchestrator in created:
        orchestrator.shutdown(wait=True)


@pytest.fixture
def gated_scraper() -> GatedScraper:
    return GatedScraper("A")


@pytest.fixture
def make_raw_items() -> Callable[..., list[RawItem]]:
    return raw_items


@pytest.fixture
def item_factory() -> Callable[..., Item]:
    return make_item
