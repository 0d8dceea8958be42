"""Infra layer utilities (snapshot storage)."""

from .storage import SnapshotStore, SQLiteManager

__all__ = ["SnapshotStore", "SQLiteManager"]
