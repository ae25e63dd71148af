"""Offline message cache."""

from .repository import OfflineCache
from .schema import ensure_schema

__all__ = ["OfflineCache", "ensure_schema"]
