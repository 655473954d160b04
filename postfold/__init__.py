"""postfold: resumable scrape jobs, deduplicated item storage and read-time grouping."""

__version__ = "0.1.0"
