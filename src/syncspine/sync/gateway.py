"""
Mutation Gateway -- create/update/delete against the remote store.

Contract for every mutation:

1. **Fail fast offline.** If the Connection Monitor reports offline, raise
   :class:`~syncspine.core.errors.ConnectivityError` before any I/O.
2. **Retry.** The remote call runs inside the Retry Executor. Errors flagged
   non-retryable (rejections, missing relation, auth) propagate on the first
   attempt.
3. **Reconcile before returning.** The canonical record (create/update) or
   the deleted id is applied to local state before the caller resumes.
   If local state was cleared (sign-out) while the call was in flight, the
   remote result is still returned but not applied.
4. **No partial apply.** If the remote call fails, local state is untouched
   and the error reaches the caller unmodified.

Writes against a collection that does not exist raise
:class:`~syncspine.core.errors.RelationNotFoundError`. Unlike reads, they are
never downgraded to a silent success.

Also provides :meth:`MutationGateway.query`, a retried filtered/paginated read
that leaves local state alone.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from syncspine.core.connection import ConnectionMonitor
from syncspine.core.entities import EntityType, Record
from syncspine.core.errors import ConnectivityError, SyncError
from syncspine.core.logging import get_logger
from syncspine.core.retry import RetryExecutor
from syncspine.remote.base import RemoteStore, SelectOptions
from syncspine.sync.reconciler import LocalStateReconciler, Operation

logger = get_logger(__name__)

Query = SelectOptions


class MutationGateway:
    """Write path from callers to the remote store and back into local state."""

    def __init__(
        self,
        remote: RemoteStore,
        retry: RetryExecutor,
        monitor: ConnectionMonitor,
        reconciler: LocalStateReconciler,
    ):
        self.remote = remote
        self.retry = retry
        self.monitor = monitor
        self.reconciler = reconciler

    async def create(self, entity_type: EntityType | str, payload: Mapping[str, Any]) -> Record:
        """Insert *payload* and return the canonical record."""
        entity_type = EntityType.parse(entity_type)
        self._ensure_online(entity_type, "insert")
        generation = self.reconciler.generation

        try:
            record = await self.retry.run(
                lambda: self._unwrap(self.remote.insert(entity_type.value, payload))
            )
        except Exception as e:
            _log_failure("create", entity_type, e)
            raise

        self._apply(generation, entity_type, Operation.CREATE, record)
        logger.info("record_created", entity=entity_type.value, record_id=record.get("id"))
        return record

    async def update(
        self,
        entity_type: EntityType | str,
        record_id: Any,
        payload: Mapping[str, Any],
    ) -> Record:
        """Patch record *record_id* and return the canonical record."""
        entity_type = EntityType.parse(entity_type)
        self._ensure_online(entity_type, "update")
        generation = self.reconciler.generation

        try:
            record = await self.retry.run(
                lambda: self._unwrap(self.remote.update(entity_type.value, record_id, payload))
            )
        except Exception as e:
            _log_failure("update", entity_type, e, record_id=record_id)
            raise

        self._apply(generation, entity_type, Operation.UPDATE, record)
        logger.info("record_updated", entity=entity_type.value, record_id=record_id)
        return record

    async def delete(self, entity_type: EntityType | str, record_id: Any) -> Any:
        """Delete record *record_id*. Returns the deleted id."""
        entity_type = EntityType.parse(entity_type)
        self._ensure_online(entity_type, "delete")
        generation = self.reconciler.generation

        try:
            await self.retry.run(
                lambda: self._unwrap(self.remote.remove(entity_type.value, record_id))
            )
        except Exception as e:
            _log_failure("delete", entity_type, e, record_id=record_id)
            raise

        self._apply(generation, entity_type, Operation.DELETE, {"id": record_id})
        logger.info("record_deleted", entity=entity_type.value, record_id=record_id)
        return record_id

    async def query(
        self,
        entity_type: EntityType | str,
        query: Query | None = None,
    ) -> list[Record]:
        """Filtered, ordered, paginated read. Errors propagate after retries."""
        entity_type = EntityType.parse(entity_type)
        options = query or Query(limit=100)
        try:
            return await self.retry.run(
                lambda: self._unwrap(self.remote.select(entity_type.value, options))
            )
        except Exception as e:
            _log_failure("query", entity_type, e)
            raise

    def _ensure_online(self, entity_type: EntityType, operation: str) -> None:
        if not self.monitor.is_online:
            raise ConnectivityError("No internet connection").with_context(
                entity_type=entity_type.value, operation=operation
            )

    def _apply(
        self,
        generation: int,
        entity_type: EntityType,
        operation: Operation,
        record: Record,
    ) -> None:
        if self.reconciler.generation != generation:
            logger.info(
                "reconcile_skipped_after_clear",
                entity=entity_type.value,
                operation=operation.value,
                record_id=record.get("id"),
            )
            return
        self.reconciler.reconcile(entity_type, operation, record)

    @staticmethod
    async def _unwrap(call):
        result = await call
        return result.unwrap()


def _log_failure(action: str, entity_type: EntityType, error: Exception, **fields: Any) -> None:
    if isinstance(error, SyncError):
        error.with_context(entity_type=entity_type.value, operation=action)
    logger.error(
        f"{action}_failed",
        entity=entity_type.value,
        error=str(error),
        error_type=type(error).__name__,
        **fields,
    )


__all__ = [
    "MutationGateway",
    "Query",
]
