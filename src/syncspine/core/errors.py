"""
Structured error types for the sync layer.

Provides a typed hierarchy of errors with the metadata the sync layer needs
to decide whether to retry, whether to fail fast, and whether a read may
degrade to an empty collection.

Every SyncError carries:
- **Category:** What kind of error (network, remote, not-found, ...)
- **Retryable:** Whether the Retry Executor may try the operation again
- **Context:** Entity type, operation, record id, remote code, HTTP status
- **Cause:** Chained underlying exception for root cause analysis

Manifesto:
    - **Typed over stringly:** Remote ``{code, message}`` payloads become classes
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Distinct not-found:** A missing collection is never confused with an outage
    - **Error chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         SyncError                             │
        │           (category, retryable, context, cause)               │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConnectivityError   RemoteError          SubscriptionError   │
        │  (NETWORK)           (REMOTE)             (SUBSCRIPTION)      │
        │                          │                                    │
        │            ┌─────────────┼──────────────┐    ConfigError      │
        │  TransientRemoteError    │   RemoteRejectedError  (CONFIG)    │
        │  (retryable=True)        │   RemoteAuthError                  │
        │                RelationNotFoundError                          │
        │                RecordNotFoundError                            │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = classify_remote_error(code="42P01", message="relation missing")
    >>> type(error).__name__
    'RelationNotFoundError'
    >>> error.retryable
    False

    >>> error = classify_remote_error(message="upstream timeout", http_status=504)
    >>> error.retryable
    True

Guardrails:
    ❌ DON'T: Retry a RelationNotFoundError, the collection will not appear
    ✅ DO: Treat it as empty-success for reads and surface it for writes

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, syncspine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and logging."""

    NETWORK = "NETWORK"            # No connectivity, transport failures
    REMOTE = "REMOTE"              # Remote store reported an error
    NOT_FOUND = "NOT_FOUND"        # Collection or record absent
    VALIDATION = "VALIDATION"      # Remote rejected the payload
    AUTH = "AUTH"                  # Authentication, authorization
    SUBSCRIPTION = "SUBSCRIPTION"  # Live-update channel failures
    CONFIG = "CONFIG"              # Missing or invalid settings
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Attributes:
        entity_type: Table name of the affected collection
        operation: Operation name (``select``, ``insert``, ``update``, ...)
        record_id: Identifier of the affected record
        code: Error code reported by the remote store
        http_status: HTTP status code if applicable
        channel: Live-update channel name
        metadata: Additional key-value pairs
    """

    entity_type: str | None = None
    operation: str | None = None
    record_id: Any = None
    code: str | None = None
    http_status: int | None = None
    channel: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity_type", "operation", "record_id", "code", "http_status", "channel"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SyncError(Exception):
    """
    Base exception for all sync-layer errors.

    Subclasses set ``default_category`` and ``default_retryable`` to provide
    sensible defaults for their domain; both can be overridden per instance.

    Examples:
        >>> error = SyncError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(entity_type="projects").context.entity_type
        'projects'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncError:
        """
        Add context to this error (fluent API).

        Usage:
            raise RemoteError("Failed").with_context(
                entity_type="projects",
                operation="insert",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONNECTIVITY
# =============================================================================


class ConnectivityError(SyncError):
    """No network path to the remote store.

    Raised before any I/O when the Connection Monitor reports offline, and
    by the liveness probe when the store is unreachable. Not retryable: the
    retry budget is not spent on a known-bad precondition.
    """

    default_category = ErrorCategory.NETWORK

    def __init__(self, message: str = "No connectivity to the remote store", **kwargs: Any):
        super().__init__(message, **kwargs)


# =============================================================================
# REMOTE STORE ERRORS
# =============================================================================


class RemoteError(SyncError):
    """Error reported by (or while talking to) the remote store."""

    default_category = ErrorCategory.REMOTE

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        http_status: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.code = code
        self.http_status = http_status
        if code is not None:
            self.context.code = code
        if http_status is not None:
            self.context.http_status = http_status


class TransientRemoteError(RemoteError):
    """Timeouts, transport failures, 5xx and rate limiting. Retryable."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class RelationNotFoundError(RemoteError):
    """The remote collection itself does not exist.

    Reads treat this as an empty collection. Writes surface it unchanged.
    """

    default_category = ErrorCategory.NOT_FOUND


class RecordNotFoundError(RemoteError):
    """An update addressed a record the remote store does not hold."""

    default_category = ErrorCategory.NOT_FOUND


class RemoteRejectedError(RemoteError):
    """The remote store refused the request (constraint, duplicate key, bad input)."""

    default_category = ErrorCategory.VALIDATION


class RemoteAuthError(RemoteError):
    """Missing or insufficient credentials."""

    default_category = ErrorCategory.AUTH


# =============================================================================
# SUBSCRIPTIONS / CONFIG
# =============================================================================


class SubscriptionError(SyncError):
    """A live-update channel could not be opened or failed in transport."""

    default_category = ErrorCategory.SUBSCRIPTION


class SessionClearedError(SyncError):
    """Local state was cleared (sign-out, teardown) while the operation ran.

    The remote result is dropped instead of being written into the new session.
    """

    default_category = ErrorCategory.INTERNAL


class ConfigError(SyncError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

# PGRST116/PGRST205 are PostgREST's "no such relation" family, 42P01 is
# PostgreSQL's undefined_table.
RELATION_NOT_FOUND_CODES = frozenset({"PGRST116", "PGRST205", "42P01"})

_REJECTED_CODES = frozenset({
    "23505",  # unique_violation
    "23503",  # foreign_key_violation
    "23502",  # not_null_violation
    "23514",  # check_violation
    "22P02",  # invalid_text_representation
})


def classify_remote_error(
    *,
    message: str,
    code: str | None = None,
    http_status: int | None = None,
    cause: Exception | None = None,
) -> RemoteError:
    """Map a raw remote ``{code, message}`` error onto the typed hierarchy.

    Precedence: relation-not-found code, auth status, constraint codes,
    server-side status (5xx/408/429), other client-side status (4xx).
    Anything unrecognised is a plain, non-retryable :class:`RemoteError`.
    """
    kwargs: dict[str, Any] = {"code": code, "http_status": http_status, "cause": cause}

    if code in RELATION_NOT_FOUND_CODES:
        return RelationNotFoundError(message, **kwargs)
    if http_status in (401, 403):
        return RemoteAuthError(message, **kwargs)
    if code in _REJECTED_CODES:
        return RemoteRejectedError(message, **kwargs)
    if http_status is not None:
        if http_status >= 500 or http_status in (408, 429):
            return TransientRemoteError(message, **kwargs)
        if http_status == 404:
            return RelationNotFoundError(message, **kwargs)
        if http_status >= 400:
            return RemoteRejectedError(message, **kwargs)
    return RemoteError(message, **kwargs)


def is_retryable(error: BaseException) -> bool:
    """Check if the Retry Executor may try again after *error*.

    SyncErrors carry an explicit flag. Any other exception is assumed to be
    transient, so plain failures always consume the full retry budget.
    """
    if isinstance(error, SyncError):
        return error.retryable
    return True


def is_relation_not_found(error: BaseException) -> bool:
    """True if *error* means the remote collection does not exist."""
    return isinstance(error, RelationNotFoundError)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SyncError",
    "ConnectivityError",
    "RemoteError",
    "TransientRemoteError",
    "RelationNotFoundError",
    "RecordNotFoundError",
    "RemoteRejectedError",
    "RemoteAuthError",
    "SubscriptionError",
    "SessionClearedError",
    "ConfigError",
    "RELATION_NOT_FOUND_CODES",
    "classify_remote_error",
    "is_retryable",
    "is_relation_not_found",
]
