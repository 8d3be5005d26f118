"""Persisted store adapters."""

from .sqlite_store import SQLiteStore

__all__ = ["SQLiteStore"]
