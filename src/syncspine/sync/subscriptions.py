"""
Subscription Registry -- at most one live-update channel per entity type.

Manifesto:
    Eager subscription at startup caused channel churn and instability, so
    subscriptions are strictly opt-in. Every channel that is opened must be
    accounted for, so teardown can close it.

    - **Dedup:** ``subscribe(e)`` is a no-op while a PENDING/ACTIVE handle exists
    - **Unique names:** every open uses a fresh channel name, so a rapid
      resubscribe never collides with a channel still shutting down
    - **Self-cleaning:** CLOSED/ERROR transport status removes the handle, so
      a later ``subscribe`` is not blocked; there is no automatic resubscribe
    - **Teardown:** ``unsubscribe_all()`` closes every channel and empties the
      registry (call on sign-out and manager teardown)

Architecture:
    ::

        subscribe(e)
          ├── handle exists and not closed → return it
          ├── register PENDING handle          (before any await)
          ├── remote.open_channel(unique name, table)
          │     on_change → _route(e, event) → reconciler.reconcile(...)
          │     on_status → SUBSCRIBED: ACTIVE | CLOSED/ERROR: drop handle
          ├── await channel.subscribe()
          └── torn down meanwhile? → unsubscribe channel, raise

        Push routing table (ChangeEventType → Operation, record side):
          INSERT → CREATE, new
          UPDATE → UPDATE, new
          DELETE → DELETE, old

Tags:
    syncspine, realtime, subscriptions, dedup
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from syncspine.core.entities import EntityType
from syncspine.core.errors import SubscriptionError
from syncspine.core.logging import get_logger
from syncspine.remote.base import (
    ChangeEvent,
    ChangeEventType,
    ChannelStatus,
    RemoteChannel,
    RemoteStore,
)
from syncspine.sync.reconciler import LocalStateReconciler, Operation

logger = get_logger(__name__)


class SubscriptionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"
    ERRORED = "errored"


_LIVE_STATES = frozenset({SubscriptionState.PENDING, SubscriptionState.ACTIVE})

_PUSH_ROUTES: dict[ChangeEventType, tuple[Operation, str]] = {
    ChangeEventType.INSERT: (Operation.CREATE, "new"),
    ChangeEventType.UPDATE: (Operation.UPDATE, "new"),
    ChangeEventType.DELETE: (Operation.DELETE, "old"),
}


@dataclass
class SubscriptionHandle:
    """One live-update channel for one entity type."""

    entity_type: EntityType
    channel_name: str
    state: SubscriptionState = SubscriptionState.PENDING
    channel: RemoteChannel | None = field(default=None, repr=False)
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    events_received: int = 0

    @property
    def is_live(self) -> bool:
        return self.state in _LIVE_STATES


class SubscriptionRegistry:
    """Tracks live-update handles keyed by entity type."""

    def __init__(self, remote: RemoteStore, reconciler: LocalStateReconciler):
        self.remote = remote
        self.reconciler = reconciler
        self._handles: dict[EntityType, SubscriptionHandle] = {}

    async def subscribe(self, entity_type: EntityType | str) -> SubscriptionHandle:
        """Open a channel for *entity_type* unless one is already live.

        Raises:
            SubscriptionError: The channel could not be opened, or the
                registry was torn down before it finished opening. No handle
                or open channel is left behind.
        """
        entity_type = EntityType.parse(entity_type)
        existing = self._handles.get(entity_type)
        if existing is not None and existing.is_live:
            logger.debug(
                "subscription_exists",
                entity=entity_type.value,
                channel=existing.channel_name,
            )
            return existing

        name = f"{entity_type.value}-changes-{uuid.uuid4().hex[:12]}"
        handle = SubscriptionHandle(entity_type=entity_type, channel_name=name)
        # Registered before the first await so concurrent callers see it.
        self._handles[entity_type] = handle

        try:
            channel = self.remote.open_channel(name, entity_type.value)
            handle.channel = channel
            channel.on_change(lambda event: self._route(handle, event))
            channel.on_status(lambda status, error: self._on_status(handle, status, error))
            await channel.subscribe()
        except Exception as e:
            handle.state = SubscriptionState.ERRORED
            self._drop(handle)
            logger.error("subscription_open_failed", entity=entity_type.value, error=str(e))
            raise SubscriptionError(
                f"Could not open live channel for {entity_type.value}: {e}",
                cause=e,
            ).with_context(entity_type=entity_type.value, channel=name) from e

        if not handle.is_live or self._handles.get(entity_type) is not handle:
            # Torn down while the channel was opening.
            await self._release(handle)
            self._drop(handle)
            logger.info("subscription_cancelled", entity=entity_type.value, channel=name)
            raise SubscriptionError(
                f"Live channel for {entity_type.value} was closed while opening"
            ).with_context(entity_type=entity_type.value, channel=name)

        if handle.state is SubscriptionState.PENDING:
            handle.state = SubscriptionState.ACTIVE
        logger.info("subscription_opened", entity=entity_type.value, channel=name)
        return handle

    async def unsubscribe(self, entity_type: EntityType | str) -> bool:
        """Close the channel for *entity_type*. False if none was registered."""
        handle = self._handles.pop(EntityType.parse(entity_type), None)
        if handle is None:
            return False
        await self._close(handle)
        return True

    async def unsubscribe_all(self) -> int:
        """Close every registered channel and empty the registry.

        A channel that fails to close is logged; the others still close.

        Returns:
            Number of handles torn down.
        """
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            await self._close(handle)
        if handles:
            logger.info("subscriptions_closed", count=len(handles))
        return len(handles)

    def get(self, entity_type: EntityType | str) -> SubscriptionHandle | None:
        return self._handles.get(EntityType.parse(entity_type))

    def is_subscribed(self, entity_type: EntityType | str) -> bool:
        handle = self.get(entity_type)
        return handle is not None and handle.is_live

    @property
    def handles(self) -> list[SubscriptionHandle]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    # ── Channel callbacks ────────────────────────────────────────────────

    def _route(self, handle: SubscriptionHandle, event: ChangeEvent) -> None:
        if not handle.is_live:
            return
        operation, side = _PUSH_ROUTES[ChangeEventType(event.event_type)]
        record = event.new if side == "new" else event.old
        if record is None:
            logger.warning(
                "push_event_without_record",
                entity=handle.entity_type.value,
                event_type=event.event_type.value,
            )
            return
        handle.events_received += 1
        logger.debug(
            "push_event",
            entity=handle.entity_type.value,
            event_type=event.event_type.value,
            record_id=record.get("id"),
        )
        self.reconciler.reconcile(handle.entity_type, operation, record)

    def _on_status(
        self,
        handle: SubscriptionHandle,
        status: ChannelStatus,
        error: Exception | None,
    ) -> None:
        if status is ChannelStatus.SUBSCRIBED:
            if handle.state is SubscriptionState.PENDING:
                handle.state = SubscriptionState.ACTIVE
            return

        if status is ChannelStatus.CLOSED:
            handle.state = SubscriptionState.CLOSED
            logger.info("subscription_closed", entity=handle.entity_type.value,
                        channel=handle.channel_name)
        else:
            handle.state = SubscriptionState.ERRORED
            logger.error(
                "subscription_transport_error",
                entity=handle.entity_type.value,
                channel=handle.channel_name,
                status=status.value,
                error=str(error) if error else None,
            )
        self._drop(handle)

    # ── Internals ────────────────────────────────────────────────────────

    def _drop(self, handle: SubscriptionHandle) -> None:
        # Only remove the registry slot if it still points at this handle.
        if self._handles.get(handle.entity_type) is handle:
            del self._handles[handle.entity_type]

    async def _close(self, handle: SubscriptionHandle) -> None:
        previous = handle.state
        handle.state = SubscriptionState.CLOSED
        if previous in _LIVE_STATES:
            await self._release(handle)

    async def _release(self, handle: SubscriptionHandle) -> None:
        if handle.channel is None:
            return
        try:
            await handle.channel.unsubscribe()
        except Exception as e:
            logger.warning(
                "subscription_close_failed",
                entity=handle.entity_type.value,
                channel=handle.channel_name,
                error=str(e),
            )


__all__ = [
    "SubscriptionHandle",
    "SubscriptionRegistry",
    "SubscriptionState",
]
