"""
Collection Loader -- bulk fetch of every tracked entity type.

Manifesto:
    A read failure must never take the application down with it, and must
    never leave stale data on screen looking current.

    - **Full replace:** a successful load replaces the collection, never merges
    - **Fail-open to empty:** after exhausting retries the collection becomes
      empty and is flagged FAILED, the error is logged, nothing is raised
    - **Isolation:** one entity type failing never aborts the others
    - **Missing relation = empty success:** not retried, not an error
    - **Session-scoped:** a load that finishes after teardown writes nothing

Architecture:
    ::

        load_all()
          └── asyncio.gather(load(e) for e in EntityType)   # never raises
                └── load(e)
                      ├── offline?  → FAILED, empty          (no I/O)
                      ├── RetryExecutor.run(fetch)
                      │     └── store.select(table, newest first)
                      │           Err(RelationNotFound) → []
                      ├── ok   → reconciler.replace_all(rows); cache.set(e, rows)
                      └── fail → reconciler.replace_all([], failed=True)
                      (cleared meanwhile? → Err(SessionClearedError), no write)

Tags:
    syncspine, loader, bulk-load, fail-open
"""

from __future__ import annotations

import asyncio

from syncspine.core.cache import CacheStore
from syncspine.core.connection import ConnectionMonitor
from syncspine.core.entities import EntityType, Record
from syncspine.core.errors import ConnectivityError, SessionClearedError, is_relation_not_found
from syncspine.core.logging import LogContext, get_logger
from syncspine.core.result import Err, Ok, Result, partition_results
from syncspine.core.retry import RetryExecutor
from syncspine.remote.base import RemoteStore, SelectOptions
from syncspine.sync.reconciler import LocalStateReconciler

logger = get_logger(__name__)

_NEWEST_FIRST = SelectOptions()


class CollectionLoader:
    """Populates the collection store from the remote store."""

    def __init__(
        self,
        remote: RemoteStore,
        retry: RetryExecutor,
        reconciler: LocalStateReconciler,
        cache: CacheStore,
        monitor: ConnectionMonitor | None = None,
    ):
        self.remote = remote
        self.retry = retry
        self.reconciler = reconciler
        self.cache = cache
        self.monitor = monitor

    async def load(self, entity_type: EntityType | str) -> Result[int]:
        """Fetch *entity_type* and replace its collection.

        Returns:
            ``Ok(count)`` on success, ``Err(error)`` after the collection was
            reset to empty. Never raises for remote failures.
        """
        entity_type = EntityType.parse(entity_type)
        self.reconciler.mark_loading(entity_type)

        with LogContext(entity=entity_type.value):
            if self.monitor is not None and not self.monitor.is_online:
                error = ConnectivityError().with_context(
                    entity_type=entity_type.value, operation="select"
                )
                logger.warning("collection_load_skipped_offline")
                self.reconciler.replace_all(entity_type, [], failed=True)
                return Err(error)

            generation = self.reconciler.generation
            try:
                records = await self.retry.run(lambda: self._fetch(entity_type))
            except Exception as e:
                if self.reconciler.generation != generation:
                    return self._discard(entity_type)
                logger.error("collection_load_failed", error=str(e))
                self.reconciler.replace_all(entity_type, [], failed=True)
                return Err(e)

            if self.reconciler.generation != generation:
                return self._discard(entity_type)

            self.reconciler.replace_all(entity_type, records)
            self.cache.set(entity_type.value, records)
            logger.info("collection_loaded", count=len(records))
            return Ok(len(records))

    async def ensure_loaded(self, entity_type: EntityType | str) -> Result[int]:
        """Load *entity_type* unless its cache entry is still valid."""
        entity_type = EntityType.parse(entity_type)
        cached = self.cache.fresh(entity_type.value)
        if cached is not None:
            logger.debug("collection_cache_hit", entity=entity_type.value)
            return Ok(len(cached))
        return await self.load(entity_type)

    async def load_all(self) -> dict[EntityType, Result[int]]:
        """Load all ten entity types concurrently and wait for every one.

        Never raises for load failures; the per-type outcome is returned.
        """
        logger.info("load_all_started")
        entities = list(EntityType)
        outcomes = await asyncio.gather(
            *(self.load(entity) for entity in entities),
            return_exceptions=True,
        )

        report: dict[EntityType, Result[int]] = {}
        for entity, outcome in zip(entities, outcomes):
            if isinstance(outcome, Exception):
                # load() contains remote failures; anything here is a bug.
                logger.error("collection_load_crashed", entity=entity.value, error=str(outcome))
                report[entity] = Err(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report[entity] = outcome

        counts, _ = partition_results(list(report.values()))
        logger.info(
            "load_all_finished",
            loaded=len(counts),
            records=sum(counts),
            failed=[e.value for e, r in report.items() if isinstance(r, Err)],
        )
        return report

    # ── Named loaders ────────────────────────────────────────────────────

    async def load_projects(self) -> Result[int]:
        return await self.load(EntityType.PROJECTS)

    async def load_transactions(self) -> Result[int]:
        return await self.load(EntityType.TRANSACTIONS)

    async def load_invoices(self) -> Result[int]:
        return await self.load(EntityType.INVOICES)

    async def load_employees(self) -> Result[int]:
        return await self.load(EntityType.EMPLOYEES)

    async def load_equipment(self) -> Result[int]:
        return await self.load(EntityType.EQUIPMENT)

    async def load_materials(self) -> Result[int]:
        return await self.load(EntityType.MATERIALS)

    async def load_material_purchases(self) -> Result[int]:
        return await self.load(EntityType.MATERIAL_PURCHASES)

    async def load_material_usage(self) -> Result[int]:
        return await self.load(EntityType.MATERIAL_USAGE)

    async def load_equipment_borrows(self) -> Result[int]:
        return await self.load(EntityType.EQUIPMENT_BORROWS)

    async def load_attendance(self) -> Result[int]:
        return await self.load(EntityType.ATTENDANCE)

    def _discard(self, entity_type: EntityType) -> Result[int]:
        # Local state was cleared while the fetch ran; leave it cleared.
        logger.info("collection_load_discarded")
        return Err(SessionClearedError(
            f"Load of {entity_type.value} finished after local state was cleared"
        ).with_context(entity_type=entity_type.value, operation="select"))

    async def _fetch(self, entity_type: EntityType) -> list[Record]:
        result = await self.remote.select(entity_type.value, _NEWEST_FIRST)
        return result.or_else(_empty_if_missing).unwrap()


def _empty_if_missing(error: Exception) -> Result[list[Record]]:
    if is_relation_not_found(error):
        logger.warning("collection_missing")
        return Ok([])
    return Err(error)


__all__ = ["CollectionLoader"]
