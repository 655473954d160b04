"""Read-path grouping of near-identical items."""

from .filters import FilterSettings, filter_items
from .normalizer import hash_content, normalize_content
from .service import (
    Group,
    GroupingResult,
    GroupingService,
    GroupingStats,
    group,
    reduction_percentage,
)
from .strategies import ExactMatchStrategy, SimilarityStrategy

__all__ = [
    "ExactMatchStrategy",
    "FilterSettings",
    "Group",
    "GroupingResult",
    "GroupingService",
    "GroupingStats",
    "SimilarityStrategy",
    "filter_items",
    "group",
    "hash_content",
    "normalize_content",
    "reduction_percentage",
]
