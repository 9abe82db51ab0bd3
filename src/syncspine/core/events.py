"""
Change Notifier -- "this entity type changed" fan-out to dependent views.

Manifesto:
    The reconciler must not know which views exist. Views register a
    callback for the entity types they render (a table view for one type,
    the dashboard for every type that feeds its aggregates) and the
    reconciler calls :meth:`ChangeNotifier.notify` after every delta.

Callbacks run synchronously, in registration order, on the caller's
thread of control. A failing callback is logged and skipped; it never
prevents the others from running and never propagates to the writer.

A callback may be a coroutine function. Its coroutine is scheduled as a task
on the running loop rather than awaited, so the writer never waits on a
view. Failures of such tasks are logged the same way.

Usage::

    notifier = ChangeNotifier()

    def reload_projects_table(entity_type):
        ...

    sub_id = notifier.on_change(EntityType.PROJECTS, reload_projects_table)
    notifier.on_any_change(refresh_dashboard)
    notifier.notify(EntityType.PROJECTS)   # both callbacks run
    notifier.off(sub_id)

Tags:
    syncspine, events, observer, fan-out
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from syncspine.core.entities import EntityType
from syncspine.core.logging import get_logger

logger = get_logger(__name__)

ChangeCallback = Callable[[EntityType], object]


@dataclass
class Subscription:
    """Internal subscription record. ``entity_type=None`` matches every type."""

    id: str
    entity_type: EntityType | None
    callback: ChangeCallback

    def matches(self, entity_type: EntityType) -> bool:
        return self.entity_type is None or self.entity_type is entity_type


class ChangeNotifier:
    """Registry of change callbacks keyed by entity type."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._pending: set[asyncio.Future] = set()

    def on_change(self, entity_type: EntityType | str, callback: ChangeCallback) -> str:
        """Register *callback* for changes to *entity_type*.

        Returns:
            Subscription ID for :meth:`off`
        """
        return self._add(EntityType.parse(entity_type), callback)

    def on_any_change(self, callback: ChangeCallback) -> str:
        """Register *callback* for changes to every entity type."""
        return self._add(None, callback)

    def off(self, subscription_id: str) -> None:
        """Remove a subscription. No-op if unknown."""
        self._subscriptions.pop(subscription_id, None)

    def notify(self, entity_type: EntityType | str) -> int:
        """Invoke every callback registered for *entity_type*.

        Returns:
            Number of callbacks that returned without raising. A coroutine
            callback counts once its task is scheduled.
        """
        entity_type = EntityType.parse(entity_type)
        # Snapshot so callbacks may (un)subscribe while we iterate.
        targets = [s for s in self._subscriptions.values() if s.matches(entity_type)]

        delivered = 0
        for sub in targets:
            try:
                outcome = sub.callback(entity_type)
                if inspect.isawaitable(outcome):
                    self._schedule(sub, entity_type, outcome)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "change_callback_failed",
                    subscription_id=sub.id,
                    entity=entity_type.value,
                    error=str(e),
                    exc_info=True,
                )
        return delivered

    def clear(self) -> None:
        """Drop every subscription."""
        self._subscriptions.clear()

    @property
    def pending_count(self) -> int:
        """Async callbacks scheduled but not yet finished."""
        return len(self._pending)

    @property
    def subscription_count(self) -> int:
        """Number of registered callbacks."""
        return len(self._subscriptions)

    def _schedule(self, sub: Subscription, entity_type: EntityType, awaitable) -> None:
        # Outside a running loop the error reaches notify(), which logs it.
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise
        future = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if fut.cancelled():
                return
            error = fut.exception()
            if error is not None:
                logger.warning(
                    "change_callback_failed",
                    subscription_id=sub.id,
                    entity=entity_type.value,
                    error=str(error),
                    exc_info=error,
                )

        future.add_done_callback(_done)

    def _add(self, entity_type: EntityType | None, callback: ChangeCallback) -> str:
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            entity_type=entity_type,
            callback=callback,
        )
        return sub_id


__all__ = [
    "ChangeCallback",
    "ChangeNotifier",
    "Subscription",
]
