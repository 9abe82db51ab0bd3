"""Syncspine Core -- domain-agnostic primitives used by the sync layer.

Architecture::

    Layer 1 -- Type System & Errors
        entities.py        EntityType tags + Record helpers
        errors.py          Structured error hierarchy (SyncError, RemoteError)
        result.py          Result[T] envelope (Ok / Err) for remote responses

    Layer 2 -- Resilience
        retry.py           Linear-backoff Retry Executor
        connection.py      Connection Monitor + status indicator
        cache.py           Lazy-expiry cache store

    Layer 3 -- Cross-Cutting Concerns
        events.py          Change Notifier fan-out
        logging.py         Structured logging (structlog)
        settings.py        SyncSettings (pydantic-settings)

Tags:
    syncspine, foundation, primitives, asyncio
"""
