"""Engine components: item/job persistence and the scrape capability."""

from .item_store import InsertResult, ItemStore
from .job_store import JobStore
from .scraper import FeedScraper, SourceScraper

__all__ = [
    "FeedScraper",
    "InsertResult",
    "ItemStore",
    "JobStore",
    "SourceScraper",
]
