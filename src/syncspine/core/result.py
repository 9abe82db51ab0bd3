"""
Result envelope for remote store responses.

Remote calls never hand back a duck-typed ``{data, error}`` pair. They return
``Ok(value)`` or ``Err(RemoteError)``, so a caller cannot read the data without
deciding what to do with the error branch.

Manifesto:
    - **Explicit over Implicit:** No ``data`` that is silently ``None`` on failure
    - **Pattern matching:** ``match result: case Ok(v) ... case Err(e) ...``
    - **Bridge to exceptions:** ``unwrap()`` raises the carried error, which is
      exactly what a retried operation wants

Architecture:
    ::

        ┌─────────────────┬─────────────────┬───────────────────────┐
        │     Ok[T]       │     Err[T]      │     Utilities         │
        ├─────────────────┼─────────────────┼───────────────────────┤
        │ • value: T      │ • error: Exc    │ • try_result_async()  │
        │ • map()         │ • or_else()     │ • partition_results() │
        │ • unwrap()      │ • unwrap_or()   │                       │
        └─────────────────┴─────────────────┴───────────────────────┘

Examples:
    >>> result = Ok([{"id": 1}])
    >>> match result:
    ...     case Ok(rows):
    ...         print(len(rows))
    ...     case Err(error):
    ...         print(error)
    1
    >>> Err(ValueError("x")).map(len).unwrap_or(0)
    0

Tags:
    result-pattern, error-handling, syncspine
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from syncspine.core.errors import SyncError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or default (always returns value for Ok)."""
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def or_else(self, f: Callable[[Exception], Result[T]]) -> Result[T]:
        """Return self if Ok, otherwise call f with error."""
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed result containing an error.

    ``map`` passes the error through unchanged; ``or_else`` is the recovery
    point, used by readers that turn a missing relation into an empty list.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Get default since this is Err."""
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def or_else(self, f: Callable[[Exception], Result[T]]) -> Result[T]:
        """Call f with error to try recovery."""
        return f(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, SyncError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


async def try_result_async(awaitable: Awaitable[T]) -> Result[T]:
    """Await *awaitable* and wrap the outcome in a Result.

    Only ``Exception`` subclasses are captured; cancellation propagates.
    """
    try:
        return Ok(await awaitable)
    except Exception as e:
        return Err(e)


def partition_results(
    results: list[Result[T]],
) -> tuple[list[T], list[Exception]]:
    """
    Partition results into successes and failures.

    >>> values, errors = partition_results([Ok(1), Err(ValueError("a")), Ok(2)])
    >>> values
    [1, 2]
    >>> len(errors)
    1
    """
    values = []
    errors = []
    for result in results:
        match result:
            case Ok(value):
                values.append(value)
            case Err(error):
                errors.append(error)
    return values, errors


__all__ = [
    "Ok",
    "Err",
    "Result",
    "try_result_async",
    "partition_results",
]
