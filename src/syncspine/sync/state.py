"""In-memory mirror of the remote entity collections.

One :class:`CollectionStore` per manager, owned explicitly and passed by
reference to the components that read it. Reads go through
:meth:`CollectionStore.snapshot`, which hands out copies, so the only way to
change a collection is through the mutators. Only
:class:`~syncspine.sync.reconciler.LocalStateReconciler` calls those.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any

from syncspine.core.entities import EntityType, Record, record_id


class CollectionStatus(str, Enum):
    """Load status of one collection.

    FAILED is distinct from LOADING so an empty collection after a failed
    load is never mistaken for one that is still on its way.
    """

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class CollectionStore:
    """Ten ordered, newest-first record lists plus their load status."""

    def __init__(self) -> None:
        self._collections: dict[EntityType, list[Record]] = {}
        self._status: dict[EntityType, CollectionStatus] = {}
        self.clear()

    # ── Reads ────────────────────────────────────────────────────────────

    def snapshot(self, entity_type: EntityType | str) -> list[Record]:
        """Return a deep copy of the current collection."""
        return copy.deepcopy(self._collections[EntityType.parse(entity_type)])

    def status(self, entity_type: EntityType | str) -> CollectionStatus:
        return self._status[EntityType.parse(entity_type)]

    def find(self, entity_type: EntityType | str, rid: Any) -> Record | None:
        """Return a copy of the record with id *rid*, or ``None``."""
        items = self._collections[EntityType.parse(entity_type)]
        index = _index_of(items, rid)
        return None if index is None else copy.deepcopy(items[index])

    def count(self, entity_type: EntityType | str) -> int:
        return len(self._collections[EntityType.parse(entity_type)])

    def counts(self) -> dict[EntityType, int]:
        return {entity: len(items) for entity, items in self._collections.items()}

    # ── Mutators (reconciler only) ───────────────────────────────────────

    def replace(
        self,
        entity_type: EntityType,
        records: list[Record],
        status: CollectionStatus = CollectionStatus.LOADED,
    ) -> None:
        self._collections[entity_type] = [dict(r) for r in records]
        self._status[entity_type] = status

    def set_status(self, entity_type: EntityType, status: CollectionStatus) -> None:
        self._status[entity_type] = status

    def prepend(self, entity_type: EntityType, record: Record) -> None:
        self._collections[entity_type].insert(0, dict(record))

    def replace_by_id(self, entity_type: EntityType, record: Record) -> bool:
        """Replace the record sharing *record*'s id in place. False if absent."""
        items = self._collections[entity_type]
        index = _index_of(items, record_id(record))
        if index is None:
            return False
        items[index] = dict(record)
        return True

    def remove_by_id(self, entity_type: EntityType, rid: Any) -> bool:
        """Remove the record with id *rid*. False if absent."""
        items = self._collections[entity_type]
        index = _index_of(items, rid)
        if index is None:
            return False
        del items[index]
        return True

    def clear(self) -> None:
        """Reset every collection to empty/IDLE."""
        self._collections = {entity: [] for entity in EntityType}
        self._status = {entity: CollectionStatus.IDLE for entity in EntityType}


def _index_of(items: list[Record], rid: Any) -> int | None:
    if rid is None:
        return None
    for index, item in enumerate(items):
        if record_id(item) == rid:
            return index
    return None


__all__ = [
    "CollectionStatus",
    "CollectionStore",
]
