"""Keyword filtering applied to stored items before grouping."""

from __future__ import annotations

from typing import Iterable, Literal

from pydantic import BaseModel, Field

from ..models import Item

SearchField = Literal["content", "author"]


class FilterSettings(BaseModel):
    positive_keywords: list[str] = Field(default_factory=list)
    negative_keywords: list[str] = Field(default_factory=list)
    case_sensitive: bool = False
    search_fields: list[SearchField] = Field(default_factory=lambda: ["content", "author"])

    @property
    def is_empty(self) -> bool:
        return not self.positive_keywords and not self.negative_keywords


def filter_items(items: Iterable[Item], settings: FilterSettings) -> list[Item]:
    """Negative keywords win; otherwise any positive keyword keeps the item."""

    items = list(items)
    if settings.is_empty:
        return items

    def _prep(text: str) -> str:
        return text if settings.case_sensitive else text.lower()

    positives = [_prep(k) for k in settings.positive_keywords]
    negatives = [_prep(k) for k in settings.negative_keywords]

    kept: list[Item] = []
    for item in items:
        haystack = _prep(" ".join(getattr(item, name) for name in settings.search_fields))
        if any(keyword in haystack for keyword in negatives):
            continue
        if positives and not any(keyword in haystack for keyword in positives):
            continue
        kept.append(item)
    return kept


__all__ = ["FilterSettings", "filter_items"]
