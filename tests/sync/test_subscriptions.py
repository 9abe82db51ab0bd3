"""
Tests for syncspine.sync.subscriptions module.

Covers:
- At most one live handle per entity type
- Unique channel names per open
- Push INSERT/UPDATE/DELETE routed into the reconciler
- Transport CLOSED/ERROR drops the handle without resubscribing
- Open failures leave no handle behind
- unsubscribe / unsubscribe_all teardown, including while a channel is opening
"""

import asyncio

import pytest

from syncspine.core.entities import EntityType
from syncspine.core.errors import SubscriptionError
from syncspine.remote.base import ChangeEvent, ChangeEventType
from syncspine.remote.memory import InMemoryRemoteStore
from syncspine.remote.polling import PollingChannel
from syncspine.sync.manager import DatabaseManager
from syncspine.sync.subscriptions import SubscriptionState


@pytest.fixture
def store():
    return InMemoryRemoteStore(
        seed={
            "projects": [
                {"id": 2, "name": "B", "created_at": "2024-01-01T00:00:00+00:00"},
                {"id": 1, "name": "A", "created_at": "2024-01-02T00:00:00+00:00"},
            ]
        }
    )


class SlowOpeningStore(InMemoryRemoteStore):
    """Store whose polling channels hold their baseline read until released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.reading = asyncio.Event()
        self.release = asyncio.Event()
        self.opened = []

    def open_channel(self, name, table):
        self.calls["open_channel"] += 1

        async def fetch():
            self.reading.set()
            await self.release.wait()
            return await self.select(table)

        async def never_wake(_delay):
            await asyncio.Event().wait()

        channel = PollingChannel(name, table, fetch, sleep=never_wake)
        self.opened.append(channel)
        return channel


class StubbornChannel:
    """Channel that ignores unsubscribe until its own subscribe has finished."""

    def __init__(self, name, table):
        self.name = name
        self.table = table
        self.opening = asyncio.Event()
        self.release = asyncio.Event()
        self.subscribed = False
        self.unsubscribe_calls = 0

    def on_change(self, handler):
        pass

    def on_status(self, handler):
        pass

    async def subscribe(self):
        self.opening.set()
        await self.release.wait()
        self.subscribed = True

    async def unsubscribe(self):
        self.unsubscribe_calls += 1
        if self.subscribed:
            self.subscribed = False


@pytest.fixture
def registry(manager):
    return manager.subscriptions


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_opens_active_channel(self, registry, store):
        handle = await registry.subscribe("projects")

        assert handle.state is SubscriptionState.ACTIVE
        assert handle.entity_type is EntityType.PROJECTS
        assert handle.channel_name.startswith("projects-changes-")
        assert registry.is_subscribed(EntityType.PROJECTS)
        assert list(store.channels) == [handle.channel_name]

    @pytest.mark.asyncio
    async def test_twice_yields_exactly_one_handle(self, registry, store):
        first = await registry.subscribe("projects")
        second = await registry.subscribe("projects")

        assert first is second
        assert len(registry) == 1
        assert store.calls["open_channel"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_subscribe_opens_one_channel(self, registry, store):
        handles = await asyncio.gather(
            registry.subscribe("projects"),
            registry.subscribe("projects"),
        )
        assert handles[0] is handles[1]
        assert store.calls["open_channel"] == 1

    @pytest.mark.asyncio
    async def test_resubscribe_uses_fresh_channel_name(self, registry):
        first = await registry.subscribe("projects")
        await registry.unsubscribe("projects")
        second = await registry.subscribe("projects")

        assert second is not first
        assert second.channel_name != first.channel_name

    @pytest.mark.asyncio
    async def test_open_failure_raises_and_leaves_no_handle(self, registry, store):
        store.fail_channel_open = True

        with pytest.raises(SubscriptionError) as exc_info:
            await registry.subscribe("projects")

        assert exc_info.value.context.entity_type == "projects"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert len(registry) == 0

        store.fail_channel_open = False
        handle = await registry.subscribe("projects")
        assert handle.state is SubscriptionState.ACTIVE


class TestPushRouting:
    @pytest.mark.asyncio
    async def test_remote_insert_prepends(self, manager, store):
        await manager.load("projects")
        await manager.subscribe("projects")

        await store.insert("projects", {"name": "C"})

        assert [r["name"] for r in manager.get_collection("projects")] == ["C", "A", "B"]

    @pytest.mark.asyncio
    async def test_remote_update_replaces(self, manager, store):
        await manager.load("projects")
        await manager.subscribe("projects")

        await store.update("projects", 1, {"name": "A2"})

        assert manager.find("projects", 1)["name"] == "A2"
        assert len(manager.get_collection("projects")) == 2

    @pytest.mark.asyncio
    async def test_push_delete_removes_like_local_delete(self, manager, store):
        await manager.load("projects")
        handle = await manager.subscribe("projects")

        handle.channel.deliver(
            ChangeEvent(ChangeEventType.DELETE, "projects", old={"id": 2})
        )

        assert [r["id"] for r in manager.get_collection("projects")] == [1]
        assert handle.events_received == 1

    @pytest.mark.asyncio
    async def test_local_create_echo_is_not_duplicated(self, manager, store):
        """The INSERT echo of our own create and the gateway reconcile converge."""
        await manager.load("projects")
        await manager.subscribe("projects")

        record = await manager.create("projects", {"name": "C"})

        ids = [r["id"] for r in manager.get_collection("projects")]
        assert ids.count(record["id"]) == 1
        assert len(ids) == 3

    @pytest.mark.asyncio
    async def test_push_invalidates_cache_and_notifies(self, manager, store):
        await manager.load("projects")
        await manager.subscribe("projects")
        seen = []
        manager.on_change("projects", seen.append)

        await store.remove("projects", 1)

        assert seen == [EntityType.PROJECTS]
        assert manager.cache.is_valid("projects") is False

    @pytest.mark.asyncio
    async def test_event_without_record_is_ignored(self, manager):
        await manager.load("projects")
        handle = await manager.subscribe("projects")

        handle.channel.deliver(ChangeEvent(ChangeEventType.UPDATE, "projects"))

        assert len(manager.get_collection("projects")) == 2
        assert handle.events_received == 0

    @pytest.mark.asyncio
    async def test_other_tables_do_not_leak(self, manager, store):
        await manager.subscribe("projects")
        await store.insert("invoices", {"amount": 10})
        assert manager.get_collection("projects") == []


class TestTransportStatus:
    @pytest.mark.asyncio
    async def test_channel_error_drops_handle(self, registry, store):
        handle = await registry.subscribe("projects")

        handle.channel.fail(ConnectionError("socket reset"))

        assert handle.state is SubscriptionState.ERRORED
        assert len(registry) == 0
        assert not registry.is_subscribed("projects")

    @pytest.mark.asyncio
    async def test_no_automatic_resubscribe(self, registry, store):
        handle = await registry.subscribe("projects")
        handle.channel.fail()
        assert store.calls["open_channel"] == 1

        again = await registry.subscribe("projects")
        assert again is not handle
        assert store.calls["open_channel"] == 2

    @pytest.mark.asyncio
    async def test_events_after_close_are_ignored(self, manager, store):
        await manager.load("projects")
        handle = await manager.subscribe("projects")
        await manager.unsubscribe("projects")

        handle.channel.subscribed = True
        handle.channel.deliver(ChangeEvent(ChangeEventType.DELETE, "projects", old={"id": 1}))

        assert len(manager.get_collection("projects")) == 2


class TestTeardown:
    @pytest.mark.asyncio
    async def test_unsubscribe(self, registry, store):
        handle = await registry.subscribe("projects")

        assert await registry.unsubscribe("projects") is True
        assert handle.state is SubscriptionState.CLOSED
        assert handle.channel.closed
        assert store.channels == {}
        assert await registry.unsubscribe("projects") is False

    @pytest.mark.asyncio
    async def test_unsubscribe_all(self, registry, store):
        for entity in ("projects", "transactions", "invoices"):
            await registry.subscribe(entity)

        assert await registry.unsubscribe_all() == 3
        assert len(registry) == 0
        assert store.channels == {}

    @pytest.mark.asyncio
    async def test_unsubscribe_all_survives_a_failing_channel(self, registry, store):
        broken = await registry.subscribe("projects")
        healthy = await registry.subscribe("invoices")

        async def refuse():
            raise ConnectionError("already gone")

        broken.channel.unsubscribe = refuse

        assert await registry.unsubscribe_all() == 2
        assert healthy.channel.closed
        assert len(registry) == 0


class TestTeardownWhileOpening:
    @pytest.mark.asyncio
    async def test_polling_channel_never_starts(self, settings, sleeper, clock):
        store = SlowOpeningStore()
        manager = DatabaseManager(store, settings, sleep=sleeper, clock=clock)

        opening = asyncio.create_task(manager.subscribe("projects"))
        await store.reading.wait()
        await manager.teardown()
        store.release.set()

        with pytest.raises(SubscriptionError):
            await opening
        (channel,) = store.opened
        assert not channel.active
        assert channel._task is None
        assert len(manager.subscriptions) == 0

    @pytest.mark.asyncio
    async def test_channel_is_closed_once_subscribe_returns(self, registry, store):
        channel = StubbornChannel("projects-changes-x", "projects")
        store.open_channel = lambda name, table: channel

        opening = asyncio.create_task(registry.subscribe("projects"))
        await channel.opening.wait()
        assert await registry.unsubscribe_all() == 1
        channel.release.set()

        with pytest.raises(SubscriptionError) as exc_info:
            await opening
        assert not channel.subscribed
        assert channel.unsubscribe_calls == 2
        assert exc_info.value.context.entity_type == "projects"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_resubscribe_after_cancelled_open(self, registry, store):
        channel = StubbornChannel("projects-changes-x", "projects")
        store.open_channel = lambda name, table: channel

        opening = asyncio.create_task(registry.subscribe("projects"))
        await channel.opening.wait()
        await registry.unsubscribe_all()
        channel.release.set()
        with pytest.raises(SubscriptionError):
            await opening

        del store.open_channel
        handle = await registry.subscribe("projects")
        assert handle.state is SubscriptionState.ACTIVE
        assert len(registry) == 1
