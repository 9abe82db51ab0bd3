"""
DatabaseManager -- the facade the rest of the application talks to.

Manifesto:
    Views and forms should not know that a retry executor, a cache, a
    reconciler and a channel registry exist. They ask for a collection, they
    create/update/delete records, they register a change callback. The
    manager owns one instance of every component and wires them together.

    - **Opt-in live updates:** ``initialize()`` never subscribes;
      ``activate_live_updates()`` is an explicit call
    - **Clean teardown:** sign-out and ``teardown()`` close every channel,
      clear the cache and empty every collection
    - **Injectable time:** ``sleep`` and ``clock`` flow to the retry
      executor and the cache so tests never wait

Architecture:
    ::

        DatabaseManager
          ├── ConnectionMonitor   (probe = remote.probe(settings.probe_entity))
          ├── RetryExecutor       (LinearBackoff from settings)
          ├── CacheStore          (ttl from settings)
          ├── ChangeNotifier
          ├── CollectionStore ◄── LocalStateReconciler (single writer)
          ├── CollectionLoader    → reconciler.replace_all
          ├── MutationGateway     → reconciler.reconcile
          └── SubscriptionRegistry→ reconciler.reconcile (push events)

Usage:
    ::

        async with DatabaseManager.from_settings() as db:
            db.on_change("projects", lambda e: print(db.get_collection(e)))
            await db.create("projects", {"name": "Bridge"})
            await db.activate_live_updates()

Tags:
    syncspine, facade, database-manager, lifecycle
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from syncspine.core.cache import CacheStore
from syncspine.core.connection import ConnectionIndicator, ConnectionMonitor
from syncspine.core.entities import EntityType, Record
from syncspine.core.errors import ConnectivityError, SubscriptionError
from syncspine.core.events import ChangeCallback, ChangeNotifier
from syncspine.core.logging import get_logger
from syncspine.core.result import Result
from syncspine.core.retry import LinearBackoff, RetryExecutor, SleepFn
from syncspine.core.settings import SyncSettings, get_settings
from syncspine.remote.base import RemoteStore
from syncspine.sync.gateway import MutationGateway, Query
from syncspine.sync.loader import CollectionLoader
from syncspine.sync.reconciler import LocalStateReconciler
from syncspine.sync.state import CollectionStatus, CollectionStore
from syncspine.sync.subscriptions import SubscriptionHandle, SubscriptionRegistry

logger = get_logger(__name__)


class DatabaseManager:
    """Client-side sync and cache layer over one remote store.

    Args:
        remote: Remote store implementation
        settings: Configuration (defaults to :func:`get_settings`)
        sleep: Backoff sleep function (default ``asyncio.sleep``)
        clock: Monotonic clock for cache timestamps (default ``time.monotonic``)
        initially_online: Connection state before the first probe
    """

    def __init__(
        self,
        remote: RemoteStore,
        settings: SyncSettings | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        initially_online: bool = True,
    ):
        self.settings = settings or get_settings()
        self.remote = remote

        self.notifier = ChangeNotifier()
        self.cache = CacheStore(default_ttl_seconds=self.settings.cache_ttl_seconds, clock=clock)
        self.collections = CollectionStore()
        self.retry = RetryExecutor(
            LinearBackoff(
                attempts=self.settings.retry_attempts,
                base_delay=self.settings.retry_base_delay_seconds,
            ),
            sleep=sleep,
        )
        self.monitor = ConnectionMonitor(
            lambda: self.remote.probe(self.settings.probe_entity.value),
            initially_online=initially_online,
            indicator=ConnectionIndicator(autohide_seconds=self.settings.status_autohide_seconds),
        )
        self.reconciler = LocalStateReconciler(self.collections, self.cache, self.notifier)
        self.loader = CollectionLoader(
            self.remote, self.retry, self.reconciler, self.cache, self.monitor
        )
        self.gateway = MutationGateway(self.remote, self.retry, self.monitor, self.reconciler)
        self.subscriptions = SubscriptionRegistry(self.remote, self.reconciler)

        self._initialized = False

    @classmethod
    def from_settings(cls, settings: SyncSettings | None = None, **kwargs: Any) -> DatabaseManager:
        """Build a manager with the remote store selected by ``settings.remote_url``."""
        from syncspine.remote import create_remote_store

        settings = settings or get_settings()
        return cls(create_remote_store(settings), settings, **kwargs)

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> dict[EntityType, Result[int]]:
        """Probe the connection, then load every collection.

        A failed probe is logged; loading proceeds and fails fast per
        collection. Live updates are not started here.
        """
        logger.info("manager_initializing", remote=type(self.remote).__name__)
        try:
            await self.monitor.check_connection()
        except ConnectivityError as e:
            logger.warning("initial_connection_check_failed", error=str(e))

        report = await self.loader.load_all()
        self._initialized = True
        logger.info("manager_initialized", online=self.monitor.is_online)
        return report

    async def teardown(self) -> None:
        """Close every channel, clear the cache and empty every collection."""
        closed = await self.subscriptions.unsubscribe_all()
        self.cache.clear()
        self.reconciler.clear()
        self.monitor.close()
        self._initialized = False
        logger.info("manager_torn_down", channels_closed=closed)

    async def close(self) -> None:
        """Tear down and release the remote store's connections."""
        await self.teardown()
        await self.remote.close()

    async def handle_session(self, signed_in: bool) -> None:
        """React to an authentication change: load on sign-in, tear down on sign-out."""
        if signed_in:
            await self.initialize()
        else:
            await self.teardown()

    async def __aenter__(self) -> DatabaseManager:
        await self.initialize()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # ── Connectivity ─────────────────────────────────────────────────────

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    @property
    def indicator(self) -> ConnectionIndicator:
        return self.monitor.indicator

    async def check_connection(self) -> None:
        await self.monitor.check_connection()

    async def handle_online(self) -> bool:
        return await self.monitor.handle_online()

    def handle_offline(self) -> None:
        self.monitor.handle_offline()

    # ── Reads ────────────────────────────────────────────────────────────

    def get_collection(self, entity_type: EntityType | str) -> list[Record]:
        """Current newest-first snapshot of *entity_type* (a copy)."""
        return self.collections.snapshot(entity_type)

    def collection_status(self, entity_type: EntityType | str) -> CollectionStatus:
        return self.collections.status(entity_type)

    def find(self, entity_type: EntityType | str, record_id: Any) -> Record | None:
        return self.collections.find(entity_type, record_id)

    async def load(self, entity_type: EntityType | str) -> Result[int]:
        return await self.loader.load(entity_type)

    async def ensure_loaded(self, entity_type: EntityType | str) -> Result[int]:
        return await self.loader.ensure_loaded(entity_type)

    async def load_all(self) -> dict[EntityType, Result[int]]:
        return await self.loader.load_all()

    async def query(self, entity_type: EntityType | str, query: Query | None = None) -> list[Record]:
        return await self.gateway.query(entity_type, query)

    # ── Writes ───────────────────────────────────────────────────────────

    async def create(self, entity_type: EntityType | str, payload: Mapping[str, Any]) -> Record:
        return await self.gateway.create(entity_type, payload)

    async def update(
        self,
        entity_type: EntityType | str,
        record_id: Any,
        payload: Mapping[str, Any],
    ) -> Record:
        return await self.gateway.update(entity_type, record_id, payload)

    async def delete(self, entity_type: EntityType | str, record_id: Any) -> Any:
        return await self.gateway.delete(entity_type, record_id)

    # ── Change notification ──────────────────────────────────────────────

    def on_change(self, entity_type: EntityType | str, callback: ChangeCallback) -> str:
        return self.notifier.on_change(entity_type, callback)

    def on_any_change(self, callback: ChangeCallback) -> str:
        return self.notifier.on_any_change(callback)

    def off(self, subscription_id: str) -> None:
        self.notifier.off(subscription_id)

    # ── Live updates ─────────────────────────────────────────────────────

    async def subscribe(self, entity_type: EntityType | str) -> SubscriptionHandle:
        return await self.subscriptions.subscribe(entity_type)

    async def unsubscribe(self, entity_type: EntityType | str) -> bool:
        return await self.subscriptions.unsubscribe(entity_type)

    async def unsubscribe_all(self) -> int:
        return await self.subscriptions.unsubscribe_all()

    async def activate_live_updates(
        self,
        entity_types: Iterable[EntityType | str] | None = None,
    ) -> list[SubscriptionHandle]:
        """Subscribe the configured live entity types.

        Does nothing when ``realtime_enabled`` is off. A type whose channel
        fails to open is logged and skipped.
        """
        if not self.settings.realtime_enabled:
            logger.info("live_updates_disabled")
            return []

        targets = entity_types if entity_types is not None else self.settings.live_entity_types
        handles: list[SubscriptionHandle] = []
        for entity in targets:
            try:
                handles.append(await self.subscriptions.subscribe(entity))
            except SubscriptionError as e:
                logger.warning("live_update_activation_failed", entity=str(entity), error=str(e))
        logger.info("live_updates_active", count=len(handles))
        return handles


__all__ = ["DatabaseManager"]
