"""Similarity strategies deciding which items belong together."""

from __future__ import annotations

from typing import Callable, Protocol

from ..models import Item
from .normalizer import normalize_content

TextNormalizer = Callable[[str], str]


class SimilarityStrategy(Protocol):
    """Capability the grouping engine is polymorphic over.

    ``key`` returns the item's signature; items with equal signatures are
    grouped. ``None`` means the item cannot be compared and stands alone.
    """

    name: str

    def key(self, item: Item) -> str | None:
        ...


class ExactMatchStrategy:
    """Items are equivalent iff their normalised bodies are identical."""

    name = "exact-match"

    def __init__(
        self,
        normalizer: TextNormalizer | None = None,
        min_content_length: int = 0,
    ) -> None:
        if min_content_length < 0:
            raise ValueError("min_content_length must be >= 0")
        self.normalizer = normalizer or normalize_content
        self.min_content_length = min_content_length

    def key(self, item: Item) -> str | None:
        normalized = self.normalizer(item.content)
        if self.min_content_length and len(normalized) < self.min_content_length:
            return None
        return normalized


__all__ = ["ExactMatchStrategy", "SimilarityStrategy", "TextNormalizer"]
