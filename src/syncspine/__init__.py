"""
Syncspine - client-side synchronization and cache layer for remote collections.

Keeps a consistent, resilient in-memory mirror of remote entity collections:
bulk loads with bounded retry, write-through mutations, lazy-expiry caching,
deduplicated live-update subscriptions and change fan-out to dependent views.

Entry point for most callers is :class:`syncspine.sync.manager.DatabaseManager`.
"""

__version__ = "0.1.0"

from syncspine.core.entities import EntityType, Record
from syncspine.sync.manager import DatabaseManager

__all__ = [
    "DatabaseManager",
    "EntityType",
    "Record",
    "__version__",
]
