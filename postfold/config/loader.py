"""Configuration loading helpers for postfold."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from ..errors import ConfigError, NotFoundError
from .models import GlobalConfig, SourceConfig, SubscriptionConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
SUBSCRIPTION_CONFIG_SUFFIX = ".yaml"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    subscriptions_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("POSTFOLD_HOME")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.subscriptions_dir = (self.data_dir / "subscriptions").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.subscriptions_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            global_cfg = self._validate(GlobalConfig, _read_file(path), path)
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        self._global_cache = global_cfg
        return global_cfg

    def save_global_config(self, config: GlobalConfig) -> None:
        path = self.locator.global_config_path()
        _write_file(path, config.model_dump(mode="json"))
        self._global_cache = config

    def database_path(self) -> Path:
        return self.load_global_config().resolved_database_path(self.locator.project_root)

    # ------------------------------------------------------------------
    # Subscription configuration helpers
    # ------------------------------------------------------------------
    def subscription_path(self, subscription_id: str) -> Path:
        slug = _slugify(subscription_id)
        return self.locator.subscriptions_dir / f"{slug}{SUBSCRIPTION_CONFIG_SUFFIX}"

    def list_subscription_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.subscriptions_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def list_subscriptions(self) -> list[SubscriptionConfig]:
        return [self.load_subscription(path) for path in self.list_subscription_files()]

    def load_subscription(self, identifier: str | Path) -> SubscriptionConfig:
        path = identifier if isinstance(identifier, Path) else self.subscription_path(identifier)
        if not path.exists():
            raise NotFoundError(f"Subscription not found: {identifier}")
        return self._validate(SubscriptionConfig, _read_file(path), path)

    def save_subscription(self, config: SubscriptionConfig) -> Path:
        path = self.subscription_path(config.subscription_id)
        _write_file(path, config.model_dump(mode="json"))
        return path

    def delete_subscription(self, subscription_id: str) -> None:
        path = self.subscription_path(subscription_id)
        if path.exists():
            path.unlink()

    # ------------------------------------------------------------------
    # Source helpers
    # ------------------------------------------------------------------
    def enabled_sources(self, subscription_id: str) -> list[SourceConfig]:
        """Snapshot of the subscription's currently enabled sources, in file order."""

        return self.load_subscription(subscription_id).enabled_sources()

    def load_source(self, subscription_id: str, source_id: str) -> SourceConfig:
        """Resolve ``source_id`` among the sources of ``subscription_id``.

        Source ids are only unique within a subscription.
        """

        for source in self.load_subscription(subscription_id).sources:
            if source.source_id == source_id:
                return source
        raise NotFoundError(f"Source not found in {subscription_id}: {source_id}")

    @staticmethod
    def _validate(model, payload: dict, path: Path):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository"]
