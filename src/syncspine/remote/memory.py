"""
In-process remote store.

Holds every table in memory with the same observable behaviour as the REST
store: newest-first ordering, server-assigned ``id`` and ``created_at``,
"relation not found" for unknown tables, and live channels that push
INSERT/UPDATE/DELETE events after each mutation. Channel delivery is
synchronous, inside the mutating call, so tests are deterministic.

Fault injection for tests and demos:

- ``store.online = False`` makes every call fail with a transient error
- ``store.fail_next("insert", times=2)`` fails the next two inserts
- ``store.fail_next("select", table="invoices")`` fails only that table
- ``store.fail_channel_open = True`` makes ``channel.subscribe()`` raise
- ``store.drop_table("attendance")`` simulates a missing relation

Example:
    >>> store = InMemoryRemoteStore()
    >>> result = await store.insert("projects", {"name": "Bridge"})  # doctest: +SKIP
    >>> result.unwrap()["id"]                                         # doctest: +SKIP
    1
"""

from __future__ import annotations

import copy
from collections import Counter, defaultdict, deque
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from syncspine.core.entities import CREATED_AT_FIELD, RECORD_ID_FIELD, EntityType, Record
from syncspine.core.errors import (
    RecordNotFoundError,
    RelationNotFoundError,
    RemoteRejectedError,
    TransientRemoteError,
)
from syncspine.core.result import Err, Ok, Result
from syncspine.remote.base import (
    ChangeEvent,
    ChangeEventType,
    ChangeHandler,
    ChannelStatus,
    SelectOptions,
    StatusHandler,
)

_SEQ_FIELD = "__seq"


class InMemoryChannel:
    """Live-update channel bound to one table of an :class:`InMemoryRemoteStore`."""

    def __init__(self, store: InMemoryRemoteStore, name: str, table: str):
        self.store = store
        self.name = name
        self.table = table
        self.subscribed = False
        self.closed = False
        self._change_handlers: list[ChangeHandler] = []
        self._status_handlers: list[StatusHandler] = []

    def on_change(self, handler: ChangeHandler) -> None:
        self._change_handlers.append(handler)

    def on_status(self, handler: StatusHandler) -> None:
        self._status_handlers.append(handler)

    async def subscribe(self) -> None:
        if self.store.fail_channel_open:
            raise ConnectionError(f"channel {self.name} refused by server")
        if not self.store.online:
            raise ConnectionError("network unreachable")
        self.subscribed = True
        self._emit_status(ChannelStatus.SUBSCRIBED)

    async def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.subscribed = False
        self.store._release_channel(self)
        self._emit_status(ChannelStatus.CLOSED)

    def deliver(self, event: ChangeEvent) -> None:
        if not self.subscribed:
            return
        for handler in list(self._change_handlers):
            handler(event)

    def fail(self, error: Exception | None = None) -> None:
        """Simulate a transport failure: report CHANNEL_ERROR and stop delivering."""
        self.subscribed = False
        self.closed = True
        self.store._release_channel(self)
        self._emit_status(ChannelStatus.ERROR, error or ConnectionError("channel dropped"))

    def _emit_status(self, status: ChannelStatus, error: Exception | None = None) -> None:
        for handler in list(self._status_handlers):
            handler(status, error)


class InMemoryRemoteStore:
    """Dictionary-backed remote store with live channels.

    Args:
        tables: Table names to create (default: every :class:`EntityType`)
        seed: Optional initial rows per table; ids and timestamps are filled in
    """

    def __init__(
        self,
        tables: Iterable[str] | None = None,
        seed: Mapping[str, Iterable[Mapping[str, Any]]] | None = None,
    ):
        names = list(tables) if tables is not None else [e.value for e in EntityType]
        self._tables: dict[str, list[Record]] = {name: [] for name in names}
        self._channels: dict[str, InMemoryChannel] = {}
        self._failures: dict[tuple[str, str | None], deque[Exception]] = defaultdict(deque)
        self._next_id = 0
        self._seq = 0

        self.online = True
        self.fail_channel_open = False
        self.calls: Counter[str] = Counter()

        for table, rows in (seed or {}).items():
            for row in rows:
                self._store_row(table, row)

    # ── Fault injection ──────────────────────────────────────────────────

    def fail_next(
        self,
        operation: str,
        error: Exception | None = None,
        *,
        times: int = 1,
        table: str | None = None,
    ) -> None:
        """Make the next *times* calls to *operation* return ``Err(error)``.

        With *table*, only calls against that table fail.
        """
        for _ in range(times):
            self._failures[(operation, table)].append(
                error or TransientRemoteError(f"injected {operation} failure")
            )

    def drop_table(self, table: str) -> None:
        self._tables.pop(table, None)

    def create_table(self, table: str) -> None:
        self._tables.setdefault(table, [])

    def rows(self, table: str) -> list[Record]:
        """Stored rows of *table* in insertion order (copies)."""
        return [_public(row) for row in self._tables.get(table, [])]

    @property
    def channels(self) -> dict[str, InMemoryChannel]:
        return dict(self._channels)

    # ── RemoteStore ──────────────────────────────────────────────────────

    async def select(self, table: str, options: SelectOptions | None = None) -> Result[list[Record]]:
        failure = self._precheck("select", table)
        if failure is not None:
            return failure

        options = options or SelectOptions()
        filters = options.active_filters()
        rows = [
            row for row in self._tables[table]
            if all(row.get(column) == value for column, value in filters.items())
        ]
        rows.sort(
            key=lambda row: (_sort_key(row.get(options.order_by)), row[_SEQ_FIELD]),
            reverse=not options.ascending,
        )
        end = options.offset + options.limit if options.limit is not None else None
        return Ok([_public(row) for row in rows[options.offset:end]])

    async def insert(self, table: str, payload: Mapping[str, Any]) -> Result[Record]:
        failure = self._precheck("insert", table)
        if failure is not None:
            return failure

        rid = payload.get(RECORD_ID_FIELD)
        if rid is not None and self._find(table, rid) is not None:
            return Err(RemoteRejectedError(
                f'duplicate key value violates unique constraint "{table}_pkey"',
                code="23505",
                http_status=409,
            ))

        record = _public(self._store_row(table, payload))
        self._broadcast(table, ChangeEvent(ChangeEventType.INSERT, table, new=record))
        return Ok(record)

    async def update(self, table: str, record_id: Any, payload: Mapping[str, Any]) -> Result[Record]:
        failure = self._precheck("update", table)
        if failure is not None:
            return failure

        row = self._find(table, record_id)
        if row is None:
            return Err(RecordNotFoundError(
                f"No {table} row with id {record_id!r}", code="PGRST116", http_status=406
            ))

        old = _public(row)
        row.update({k: copy.deepcopy(v) for k, v in payload.items() if k != RECORD_ID_FIELD})
        record = _public(row)
        self._broadcast(table, ChangeEvent(ChangeEventType.UPDATE, table, new=record, old=old))
        return Ok(record)

    async def remove(self, table: str, record_id: Any) -> Result[None]:
        failure = self._precheck("remove", table)
        if failure is not None:
            return failure

        row = self._find(table, record_id)
        if row is not None:
            self._tables[table].remove(row)
            self._broadcast(table, ChangeEvent(ChangeEventType.DELETE, table, old=_public(row)))
        return Ok(None)

    async def probe(self, table: str) -> Result[None]:
        failure = self._precheck("probe", table)
        if failure is not None:
            return failure
        return Ok(None)

    def open_channel(self, name: str, table: str) -> InMemoryChannel:
        self.calls["open_channel"] += 1
        if name in self._channels:
            raise ValueError(f"channel name already in use: {name}")
        channel = InMemoryChannel(self, name, table)
        self._channels[name] = channel
        return channel

    async def close(self) -> None:
        for channel in list(self._channels.values()):
            await channel.unsubscribe()

    # ── Internals ────────────────────────────────────────────────────────

    def _precheck(self, operation: str, table: str) -> Err | None:
        self.calls[operation] += 1
        if not self.online:
            return Err(TransientRemoteError("network unreachable"))
        for key in ((operation, table), (operation, None)):
            queued = self._failures.get(key)
            if queued:
                return Err(queued.popleft())
        if table not in self._tables:
            return Err(RelationNotFoundError(
                f'relation "public.{table}" does not exist',
                code="PGRST116",
                http_status=404,
            ))
        return None

    def _store_row(self, table: str, payload: Mapping[str, Any]) -> Record:
        row = copy.deepcopy(dict(payload))
        rid = row.get(RECORD_ID_FIELD)
        if rid is None:
            self._next_id += 1
            row[RECORD_ID_FIELD] = self._next_id
        elif isinstance(rid, int):
            self._next_id = max(self._next_id, rid)
        row.setdefault(CREATED_AT_FIELD, datetime.now(timezone.utc).isoformat())
        self._seq += 1
        row[_SEQ_FIELD] = self._seq
        self._tables.setdefault(table, []).append(row)
        return row

    def _find(self, table: str, record_id: Any) -> Record | None:
        for row in self._tables[table]:
            if row.get(RECORD_ID_FIELD) == record_id:
                return row
        return None

    def _broadcast(self, table: str, event: ChangeEvent) -> None:
        for channel in list(self._channels.values()):
            if channel.table == table:
                channel.deliver(event)

    def _release_channel(self, channel: InMemoryChannel) -> None:
        if self._channels.get(channel.name) is channel:
            del self._channels[channel.name]


def _public(row: Record) -> Record:
    return {k: copy.deepcopy(v) for k, v in row.items() if k != _SEQ_FIELD}


def _sort_key(value: Any) -> tuple[bool, Any]:
    # NULLs sort after every value in ascending order.
    return (value is None, "" if value is None else value)


__all__ = [
    "InMemoryChannel",
    "InMemoryRemoteStore",
]
