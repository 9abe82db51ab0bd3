"""Live-update channel built on periodic snapshots.

For stores without a push transport, :class:`PollingChannel` re-reads the
table every ``interval_seconds`` and turns the difference between two
snapshots into the same INSERT/UPDATE/DELETE events a push channel would
emit. Rows are matched by ``id``.

Transient read failures are tolerated up to ``max_failures`` in a row, then
the channel reports ``CHANNEL_ERROR`` and stops.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Sequence

from syncspine.core.entities import Record, record_id
from syncspine.core.errors import is_retryable
from syncspine.core.logging import get_logger
from syncspine.core.result import Err, Result
from syncspine.core.retry import SleepFn
from syncspine.remote.base import (
    ChangeEvent,
    ChangeEventType,
    ChangeHandler,
    ChannelStatus,
    StatusHandler,
)

logger = get_logger(__name__)

FetchFn = Callable[[], Awaitable[Result[list[Record]]]]


def diff_snapshots(table: str, before: Sequence[Record], after: Sequence[Record]) -> list[ChangeEvent]:
    """Events that turn *before* into *after*.

    Order: deletes, then updates, then inserts oldest-first, so applying the
    inserts as prepends leaves the newest record on top.
    """
    old_by_id = {record_id(r): r for r in before}
    new_by_id = {record_id(r): r for r in after}

    events = [
        ChangeEvent(ChangeEventType.DELETE, table, old=dict(row))
        for rid, row in old_by_id.items()
        if rid not in new_by_id
    ]
    events.extend(
        ChangeEvent(ChangeEventType.UPDATE, table, new=dict(row), old=dict(old_by_id[rid]))
        for rid, row in new_by_id.items()
        if rid in old_by_id and old_by_id[rid] != row
    )
    events.extend(
        ChangeEvent(ChangeEventType.INSERT, table, new=dict(row))
        for row in reversed(after)
        if record_id(row) not in old_by_id
    )
    return events


class PollingChannel:
    """:class:`~syncspine.remote.base.RemoteChannel` backed by a polling task."""

    def __init__(
        self,
        name: str,
        table: str,
        fetch: FetchFn,
        *,
        interval_seconds: float = 5.0,
        max_failures: int = 3,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.name = name
        self.table = table
        self.interval_seconds = interval_seconds
        self.max_failures = max_failures
        self._fetch = fetch
        self._sleep = sleep
        self._snapshot: list[Record] = []
        self._failures = 0
        self._task: asyncio.Task | None = None
        self._active = False
        self._closed = False
        self._change_handlers: list[ChangeHandler] = []
        self._status_handlers: list[StatusHandler] = []

    @property
    def active(self) -> bool:
        return self._active

    def on_change(self, handler: ChangeHandler) -> None:
        self._change_handlers.append(handler)

    def on_status(self, handler: StatusHandler) -> None:
        self._status_handlers.append(handler)

    async def subscribe(self) -> None:
        """Take the baseline snapshot and start polling.

        Raises:
            The baseline read's error, if it fails.

        A channel unsubscribed while the baseline read is in flight never
        starts polling.
        """
        self._snapshot = (await self._fetch()).unwrap()
        if self._closed:
            logger.debug("channel_closed_during_subscribe", channel=self.name)
            return
        self._active = True
        self._task = asyncio.create_task(self._run(), name=f"poll:{self.name}")
        self._emit_status(ChannelStatus.SUBSCRIBED)

    async def unsubscribe(self) -> None:
        self._closed = True
        if not self._active:
            return
        self._active = False
        await self._stop_task()
        self._emit_status(ChannelStatus.CLOSED)

    async def poll_once(self) -> list[ChangeEvent]:
        """Read the table once and deliver the resulting events."""
        result = await self._fetch()
        if isinstance(result, Err):
            self._failures += 1
            logger.warning(
                "poll_failed",
                channel=self.name,
                failures=self._failures,
                error=str(result.error),
            )
            if not is_retryable(result.error) or self._failures >= self.max_failures:
                self._fail(result.error)
            return []

        self._failures = 0
        current = result.unwrap()
        events = diff_snapshots(self.table, self._snapshot, current)
        self._snapshot = current
        for event in events:
            for handler in list(self._change_handlers):
                handler(event)
        return events

    async def _run(self) -> None:
        while self._active:
            await self._sleep(self.interval_seconds)
            if not self._active:
                break
            await self.poll_once()

    async def _stop_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _fail(self, error: Exception) -> None:
        self._active = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._emit_status(ChannelStatus.ERROR, error)

    def _emit_status(self, status: ChannelStatus, error: Exception | None = None) -> None:
        for handler in list(self._status_handlers):
            handler(status, error)


__all__ = [
    "PollingChannel",
    "diff_snapshots",
]
