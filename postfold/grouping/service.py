"""Grouping engine collapsing near-identical items into equivalence groups.

Groups are never persisted: every read recomputes them from the stored
items, so a changed strategy or item set needs no invalidation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from ..models import Item
from .normalizer import hash_content
from .strategies import ExactMatchStrategy, SimilarityStrategy


@dataclass(slots=True)
class Group:
    """Equivalence class of items under one strategy."""

    id: str
    signature: str
    item_ids: list[str] = field(default_factory=list)
    seen_count: int = 0
    first_seen_at: datetime | None = None

    @property
    def count(self) -> int:
        return len(self.item_ids)

    @property
    def is_fully_seen(self) -> bool:
        return self.seen_count == self.count

    @property
    def is_partially_seen(self) -> bool:
        return 0 < self.seen_count < self.count

    def _add(self, item: Item) -> None:
        self.item_ids.append(item.id)
        if item.seen:
            self.seen_count += 1
        if self.first_seen_at is None or item.scraped_at < self.first_seen_at:
            self.first_seen_at = item.scraped_at


@dataclass(slots=True)
class GroupingResult:
    groups: list[Group]
    total_groups: int
    total_items_grouped: int
    reduction_percentage: int
    strategy_used: str


@dataclass(slots=True)
class GroupingStats:
    total_groups: int
    total_items_grouped: int
    duplicate_groups: int
    average_group_size: float
    max_group_size: int
    reduction_percentage: int
    strategy_used: str


def reduction_percentage(total_groups: int, total_items: int) -> int:
    """``round(100 * (1 - groups / items))`` rounding half up; 0 for no items."""

    if total_items == 0:
        return 0
    return int(math.floor(100 * (1 - total_groups / total_items) + 0.5))


def group(items: Iterable[Item], strategy: SimilarityStrategy | None = None) -> GroupingResult:
    """Single pass mapping each item's signature to an accumulating group."""

    strategy = strategy or ExactMatchStrategy()
    ordered = sorted(items, key=lambda item: item.scraped_at)
    by_signature: dict[str, Group] = {}
    groups: list[Group] = []
    for item in ordered:
        signature = strategy.key(item)
        if signature is None:
            standalone = Group(id=f"item_{item.id}", signature="")
            standalone._add(item)
            groups.append(standalone)
            continue
        bucket = by_signature.get(signature)
        if bucket is None:
            bucket = Group(id=hash_content(signature), signature=signature)
            by_signature[signature] = bucket
            groups.append(bucket)
        bucket._add(item)

    total_items = len(ordered)
    return GroupingResult(
        groups=groups,
        total_groups=len(groups),
        total_items_grouped=total_items,
        reduction_percentage=reduction_percentage(len(groups), total_items),
        strategy_used=strategy.name,
    )


class GroupingService:
    """Holds the active strategy and exposes read-side helpers."""

    def __init__(self, strategy: SimilarityStrategy | None = None) -> None:
        self._strategy = strategy or ExactMatchStrategy()

    @property
    def strategy(self) -> SimilarityStrategy:
        return self._strategy

    def set_strategy(self, strategy: SimilarityStrategy) -> None:
        self._strategy = strategy

    def group_items(self, items: Iterable[Item]) -> GroupingResult:
        return group(items, self._strategy)

    @staticmethod
    def items_in_group(group_id: str, items: Sequence[Item], result: GroupingResult) -> list[Item]:
        target = next((g for g in result.groups if g.id == group_id), None)
        if target is None:
            return []
        wanted = set(target.item_ids)
        return [item for item in items if item.id in wanted]

    @staticmethod
    def sorted_by_size(result: GroupingResult) -> list[Group]:
        return sorted(result.groups, key=lambda g: g.count, reverse=True)

    @staticmethod
    def stats(result: GroupingResult) -> GroupingStats:
        sizes = [g.count for g in result.groups]
        return GroupingStats(
            total_groups=result.total_groups,
            total_items_grouped=result.total_items_grouped,
            duplicate_groups=sum(1 for size in sizes if size > 1),
            average_group_size=(result.total_items_grouped / len(sizes)) if sizes else 0.0,
            max_group_size=max(sizes) if sizes else 0,
            reduction_percentage=result.reduction_percentage,
            strategy_used=result.strategy_used,
        )


__all__ = [
    "Group",
    "GroupingResult",
    "GroupingService",
    "GroupingStats",
    "group",
    "reduction_percentage",
]
