from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from postfold.config import (
    RetryPolicy,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
    SubscriptionConfig,
    SyncConfig,
)
from postfold.config.loader import ConfigLocator, ConfigRepository, _slugify
from postfold.config.models import GlobalConfig
from postfold.errors import ConfigError, NotFoundError


def test_config_locator_uses_env_and_creates_directories(tmp_path: Path) -> None:
    locator = ConfigLocator()

    assert locator.project_root == tmp_path.resolve()
    assert locator.subscriptions_dir == (tmp_path / "data" / "subscriptions").resolve()
    assert locator.global_config_path().name == "global_config.yaml"
    for path in (locator.data_dir, locator.subscriptions_dir, locator.logs_dir):
        assert path.exists()


def test_global_config_written_with_defaults(tmp_path: Path) -> None:
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))

    config = repo.load_global_config()

    assert config == GlobalConfig()
    assert repo.locator.global_config_path().exists()
    assert repo.database_path() == (tmp_path / "data" / "postfold.db").resolve()


def test_global_config_roundtrip(tmp_path: Path) -> None:
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))
    config = GlobalConfig(
        inter_source_delay=0.5,
        retry=RetryPolicy(max_attempts=5),
        sync=SyncConfig(enabled=True, base_url="https://sync.example.com", batch_size=200),
    )
    repo.save_global_config(config)

    reloaded = ConfigRepository(ConfigLocator(project_root=tmp_path)).load_global_config()

    assert reloaded == config


def test_invalid_global_config_raises_config_error(tmp_path: Path) -> None:
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))
    repo.locator.global_config_path().write_text("max_completed_jobs: lots\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        repo.load_global_config()


def test_subscription_cycle(temp_config_repository: ConfigRepository, make_subscription) -> None:
    make_subscription(
        subscription_id="Morning Digest",
        source_ids=["A", "B"],
        disabled=["B"],
        schedule=ScheduleConfig(type=ScheduleType.CRON, value="0 7 * * *"),
    )

    loaded = temp_config_repository.load_subscription("Morning Digest")

    assert temp_config_repository.subscription_path("Morning Digest").name == "morning-digest.yaml"
    assert [s.source_id for s in temp_config_repository.enabled_sources("Morning Digest")] == ["A"]
    assert loaded.schedule.type is ScheduleType.CRON
    assert temp_config_repository.load_source("Morning Digest", "B").name == "Group B"

    temp_config_repository.delete_subscription("Morning Digest")
    assert temp_config_repository.list_subscriptions() == []


def test_missing_subscription_and_source(temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(NotFoundError):
        temp_config_repository.load_subscription("missing")
    with pytest.raises(NotFoundError):
        temp_config_repository.load_source("missing", "A")


def test_model_validation() -> None:
    with pytest.raises(ValidationError):
        SubscriptionConfig(
            subscription_id="dup",
            sources=[SourceConfig(source_id="A"), SourceConfig(source_id="A")],
        )
    with pytest.raises(ValidationError):
        SourceConfig(source_id="   ")
    with pytest.raises(ValidationError):
        SyncConfig(batch_size=5000)
    with pytest.raises(ValidationError):
        ScheduleConfig(type=ScheduleType.CRON, value=5)


def test_retry_policy_backoff() -> None:
    policy = RetryPolicy(backoff_base=2.0, backoff_max=5.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Example Source", "example-source"),
        ("Already-Slug", "already-slug"),
        ("C++ Archive", "c---archive"),
    ],
)
def test_slugify_behaviour(raw: str, expected: str) -> None:
    assert _slugify(raw) == expected


def test_load_source_is_scoped_to_its_subscription(
    temp_config_repository: ConfigRepository, make_subscription
) -> None:
    make_subscription(subscription_id="daily", source_ids=["A"])
    make_subscription(subscription_id="weekly", source_ids=["B"])

    assert temp_config_repository.load_source("weekly", "B").url == "https://feeds.example.com/B"
    with pytest.raises(NotFoundError):
        temp_config_repository.load_source("daily", "B")
