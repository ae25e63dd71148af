"""Folder synchronisation."""

from .engine import SyncEngine, newest_first

__all__ = ["SyncEngine", "newest_first"]
