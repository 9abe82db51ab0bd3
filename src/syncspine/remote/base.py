"""
Remote store boundary.

The sync layer consumes a remote store it does not control. This module
fixes the contract:

- **Fetch** ``select(table, ...)`` → ``Result[list[Record]]``
- **Mutate** ``insert`` / ``update`` / ``remove`` → ``Result[...]``
- **Probe** ``probe(table)`` → ``Result[None]``, any cheap read
- **Subscribe** ``open_channel(name, table)`` → :class:`RemoteChannel`

Failures come back as ``Err(RemoteError)`` rather than being raised, so
callers decide per call whether a failure is fatal, retryable, or (for a
missing relation on read) an empty success. Implementations may still raise
for programming errors.

Tags:
    syncspine, protocol, remote-store, realtime
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from syncspine.core.entities import CREATED_AT_FIELD, Record
from syncspine.core.result import Result


class ChangeEventType(str, Enum):
    """Push event kinds emitted by a live-update channel."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(str, Enum):
    """Lifecycle status transitions reported by a channel."""

    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class ChangeEvent:
    """One remote-side change.

    ``new`` is set for INSERT/UPDATE, ``old`` for UPDATE/DELETE (at least the
    identifier).
    """

    event_type: ChangeEventType
    table: str
    new: Record | None = None
    old: Record | None = None


@dataclass(frozen=True)
class SelectOptions:
    """Filtering, ordering and pagination for a fetch.

    Filters are equality matches; ``None`` and ``""`` values are skipped.
    """

    filters: Mapping[str, Any] = field(default_factory=dict)
    order_by: str = CREATED_AT_FIELD
    ascending: bool = False
    limit: int | None = None
    offset: int = 0

    def active_filters(self) -> dict[str, Any]:
        return {k: v for k, v in self.filters.items() if v is not None and v != ""}


ChangeHandler = Callable[[ChangeEvent], None]
StatusHandler = Callable[[ChannelStatus, Exception | None], None]


@runtime_checkable
class RemoteChannel(Protocol):
    """A named live-update channel for one table."""

    name: str
    table: str

    def on_change(self, handler: ChangeHandler) -> None:
        """Register the push-event handler."""
        ...

    def on_status(self, handler: StatusHandler) -> None:
        """Register the lifecycle status handler."""
        ...

    async def subscribe(self) -> None:
        """Start delivery. Status handlers see SUBSCRIBED on success."""
        ...

    async def unsubscribe(self) -> None:
        """Stop delivery and release transport resources. Idempotent."""
        ...


@runtime_checkable
class RemoteStore(Protocol):
    """Remote relational store as seen by the sync layer."""

    async def select(
        self, table: str, options: SelectOptions | None = None
    ) -> Result[list[Record]]:
        ...

    async def insert(self, table: str, payload: Mapping[str, Any]) -> Result[Record]:
        """Insert one record and return the canonical stored row."""
        ...

    async def update(
        self, table: str, record_id: Any, payload: Mapping[str, Any]
    ) -> Result[Record]:
        """Patch one record by id and return the canonical stored row."""
        ...

    async def remove(self, table: str, record_id: Any) -> Result[None]:
        """Delete one record by id."""
        ...

    async def probe(self, table: str) -> Result[None]:
        """Cheap liveness read against *table*."""
        ...

    def open_channel(self, name: str, table: str) -> RemoteChannel:
        """Create (not yet subscribe) a live-update channel."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


__all__ = [
    "ChangeEvent",
    "ChangeEventType",
    "ChangeHandler",
    "ChannelStatus",
    "RemoteChannel",
    "RemoteStore",
    "SelectOptions",
    "StatusHandler",
]
