"""
Local State Reconciler -- the single writer of the in-memory collections.

Every change to a collection, whether it comes from a successful local
mutation, a push event, or a bulk load, is applied here. After each change
the cache entry for the entity type is invalidated and the Change Notifier
runs.

Delta semantics:

============  ===========================================================
create        prepend (newest first). If a record with the same id is
              already present, replace it in place instead, so a push
              INSERT that echoes a local create never duplicates it.
update        replace in place by id; unknown id is a no-op
delete        remove by id; unknown id is a no-op
============  ===========================================================

All three are idempotent under replay. Misses are not errors: the remote
operation already succeeded, the mirror simply did not hold the record.

Deltas for one entity type are applied in the order they are observed.
There is no version check between a local mutation and a racing push delta;
the last one applied wins.
"""

from __future__ import annotations

from enum import Enum

from syncspine.core.cache import CacheStore
from syncspine.core.entities import EntityType, Record, record_id
from syncspine.core.events import ChangeNotifier
from syncspine.core.logging import get_logger
from syncspine.sync.state import CollectionStatus, CollectionStore

logger = get_logger(__name__)


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class LocalStateReconciler:
    """Applies deltas to a :class:`CollectionStore`."""

    def __init__(
        self,
        store: CollectionStore,
        cache: CacheStore,
        notifier: ChangeNotifier,
    ):
        self.store = store
        self.cache = cache
        self.notifier = notifier
        # Bumped by clear(); work started before a clear must not write after it.
        self.generation = 0
        self._handlers = {
            Operation.CREATE: self._apply_create,
            Operation.UPDATE: self._apply_update,
            Operation.DELETE: self._apply_delete,
        }

    def reconcile(
        self,
        entity_type: EntityType | str,
        operation: Operation | str,
        record: Record,
    ) -> bool:
        """Apply one delta.

        Args:
            entity_type: Collection to change
            operation: create / update / delete
            record: Canonical record (create/update) or at least ``{"id": ...}``
                (delete)

        Returns:
            Whether the collection changed shape or content (False on a miss).
        """
        entity_type = EntityType.parse(entity_type)
        operation = Operation(operation)

        applied = self._handlers[operation](entity_type, record)
        if not applied:
            logger.debug(
                "reconcile_miss",
                entity=entity_type.value,
                operation=operation.value,
                record_id=record_id(record),
            )

        self._after_change(entity_type)
        return applied

    def replace_all(
        self,
        entity_type: EntityType | str,
        records: list[Record],
        *,
        failed: bool = False,
    ) -> None:
        """Replace a whole collection (bulk load). Never merges."""
        entity_type = EntityType.parse(entity_type)
        status = CollectionStatus.FAILED if failed else CollectionStatus.LOADED
        self.store.replace(entity_type, records, status)
        self._after_change(entity_type)

    def mark_loading(self, entity_type: EntityType) -> None:
        self.store.set_status(entity_type, CollectionStatus.LOADING)

    def clear(self) -> None:
        """Empty every collection (sign-out / teardown)."""
        self.generation += 1
        self.store.clear()

    # ── Handlers ─────────────────────────────────────────────────────────

    def _apply_create(self, entity_type: EntityType, record: Record) -> bool:
        if self.store.replace_by_id(entity_type, record):
            return True
        self.store.prepend(entity_type, record)
        return True

    def _apply_update(self, entity_type: EntityType, record: Record) -> bool:
        return self.store.replace_by_id(entity_type, record)

    def _apply_delete(self, entity_type: EntityType, record: Record) -> bool:
        return self.store.remove_by_id(entity_type, record_id(record))

    def _after_change(self, entity_type: EntityType) -> None:
        self.cache.delete(entity_type.value)
        self.notifier.notify(entity_type)


__all__ = [
    "LocalStateReconciler",
    "Operation",
]
