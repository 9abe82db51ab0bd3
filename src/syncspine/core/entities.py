"""Entity type tags and record helpers.

Every tracked remote collection is addressed by an :class:`EntityType`.
The enum value is the remote table name, so an ``EntityType`` can be used
anywhere a table name string is expected (it is a ``str`` subclass).

Records are opaque mappings. The sync layer only ever reads the ``id``
field; every other field belongs to the business layer.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

Record = dict[str, Any]
"""An opaque remote record: field name -> scalar/date/string/number value."""

RECORD_ID_FIELD = "id"
CREATED_AT_FIELD = "created_at"


class EntityType(str, Enum):
    """The ten tracked record categories, valued by remote table name."""

    PROJECTS = "projects"
    TRANSACTIONS = "transactions"
    INVOICES = "invoices"
    EMPLOYEES = "employees"
    EQUIPMENT = "equipment"
    MATERIALS = "materials"
    MATERIAL_PURCHASES = "material_purchases"
    MATERIAL_USAGE = "material_usage"
    EQUIPMENT_BORROWS = "equipment_borrows"
    ATTENDANCE = "attendance"

    @property
    def table(self) -> str:
        """Remote table name."""
        return self.value

    @classmethod
    def parse(cls, value: str | EntityType) -> EntityType:
        """Resolve a table name (or member name) to an EntityType.

        Raises:
            ValueError: If *value* names no tracked entity type.
        """
        if isinstance(value, EntityType):
            return value
        normalized = value.strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            pass
        try:
            return cls[normalized.upper()]
        except KeyError:
            raise ValueError(f"Unknown entity type: {value!r}") from None


def record_id(record: Record) -> Any:
    """Return the identifier of *record*, or ``None`` if it has none."""
    return record.get(RECORD_ID_FIELD)


__all__ = [
    "CREATED_AT_FIELD",
    "EntityType",
    "RECORD_ID_FIELD",
    "Record",
    "record_id",
]
