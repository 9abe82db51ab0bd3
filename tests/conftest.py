"""
Shared pytest fixtures and configuration for syncspine tests.

This module provides:
- Settings cache isolation
- A recording sleep so backoff never waits on real time
- A manual clock for cache expiry
- An in-memory remote store and a fully wired DatabaseManager

Usage:
    Fixtures are auto-discovered by pytest::

        @pytest.mark.asyncio
        async def test_something(manager, store):
            await manager.create("projects", {"name": "Bridge"})
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from syncspine.core.settings import SyncSettings, clear_settings_cache
from syncspine.remote.memory import InMemoryRemoteStore
from syncspine.sync.manager import DatabaseManager


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "test_manager" in str(test_path) or "test_cli" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Forget cached settings before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Time doubles
# =============================================================================


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


# =============================================================================
# Sync layer
# =============================================================================


@pytest.fixture
def settings() -> SyncSettings:
    """Default settings, isolated from the environment and any ``.env`` file."""
    return SyncSettings(_env_file=None)


@pytest.fixture
def store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def manager(store, settings, sleeper, clock) -> DatabaseManager:
    """DatabaseManager over the in-memory store with recorded sleeps and a manual clock."""
    return DatabaseManager(store, settings, sleep=sleeper, clock=clock)
