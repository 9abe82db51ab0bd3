"""
Lazy-expiry cache keyed by entity type.

Each entry remembers when it was captured and how long it stays valid. The
store never evicts on its own: validity is computed at read time, and
invalidation after writes is the caller's job (the Local State Reconciler
deletes the entry for every entity type it touches).

Architecture:
    ::

        CacheStore
        └── key → CacheEntry(value, timestamp, ttl)

        API: set(key, value, ttl=None)
             get(key)       → CacheEntry | None   (raw, may be stale)
             fresh(key)     → value | None        (None when invalid)
             is_valid(key)  → now - timestamp < ttl
             delete(key)
             clear()

Examples:
    >>> cache = CacheStore(default_ttl_seconds=300)
    >>> entry = cache.set("projects", [{"id": 1}])
    >>> cache.is_valid("projects")
    True
    >>> cache.delete("projects")
    >>> cache.is_valid("projects")
    False

Guardrails:
    ❌ DON'T: Read ``get(key).value`` without checking ``is_valid(key)``
    ✅ DO: Use ``fresh(key)`` when a stale value must count as absent

Tags:
    cache, ttl, lazy-expiry, syncspine
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_TTL_SECONDS = 300.0


def _key(key: str) -> str:
    # Store plain table names so EntityType and str keys share entries.
    return key.value if isinstance(key, Enum) else key


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload plus its capture time and validity window (seconds)."""

    key: str
    value: Any
    timestamp: float
    ttl: float

    def is_valid_at(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


class CacheStore:
    """Key → CacheEntry mapping with an ``is_valid`` predicate.

    Attributes:
        default_ttl_seconds: TTL used when ``set`` is called without one.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._clock = clock

    @property
    def default_ttl_seconds(self) -> float:
        return self._default_ttl

    def set(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry:
        """Store *value* under *key*, stamped with the current time."""
        key = _key(key)
        entry = CacheEntry(
            key=key,
            value=value,
            timestamp=self._clock(),
            ttl=ttl if ttl is not None else self._default_ttl,
        )
        self._entries[key] = entry
        return entry

    def get(self, key: str) -> CacheEntry | None:
        """Return the stored entry for *key*, valid or not."""
        return self._entries.get(_key(key))

    def fresh(self, key: str) -> Any | None:
        """Return the cached value if the entry is still valid, else ``None``."""
        entry = self._entries.get(_key(key))
        if entry is None or not entry.is_valid_at(self._clock()):
            return None
        return entry.value

    def is_valid(self, key: str) -> bool:
        """True iff an entry exists and ``now - timestamp < ttl``."""
        entry = self._entries.get(_key(key))
        if entry is None:
            return False
        return entry.is_valid_at(self._clock())

    def delete(self, key: str) -> None:
        """Remove one entry. No-op if absent."""
        self._entries.pop(_key(key), None)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and _key(key) in self._entries


__all__ = [
    "CacheEntry",
    "CacheStore",
    "DEFAULT_TTL_SECONDS",
]
