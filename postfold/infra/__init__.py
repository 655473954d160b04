"""Infra layer utilities (SQLite storage)."""

from .storage import SQLiteManager

__all__ = ["SQLiteManager"]
