"""
Tests for syncspine.remote.postgrest module.

All HTTP goes through ``httpx.MockTransport``; no network is touched.

Covers:
- Request shape: paths, query params, headers
- Error body classification
- Timeouts and transport failures as transient errors
- create_remote_store() selection
- The store behind a DatabaseManager (retry on 503)
"""

import json

import httpx
import pytest

from syncspine.core.errors import (
    ConfigError,
    RecordNotFoundError,
    RelationNotFoundError,
    RemoteAuthError,
    RemoteError,
    RemoteRejectedError,
    TransientRemoteError,
)
from syncspine.core.result import Ok
from syncspine.core.settings import SyncSettings
from syncspine.remote import create_remote_store
from syncspine.remote.base import ChannelStatus, SelectOptions
from syncspine.remote.memory import InMemoryRemoteStore
from syncspine.remote.polling import PollingChannel
from syncspine.remote.postgrest import PostgrestRemoteStore, build_select_params
from syncspine.sync.manager import DatabaseManager


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self):
        return self.requests[-1]


def make_store(*responses, api_key="secret"):
    recorder = Recorder(*responses)
    store = PostgrestRemoteStore(
        "https://db.example.com/", api_key, transport=httpx.MockTransport(recorder)
    )
    return store, recorder


class TestBuildSelectParams:
    def test_defaults(self):
        assert build_select_params(SelectOptions()) == {
            "select": "*",
            "order": "created_at.desc",
        }

    def test_filters_order_and_paging(self):
        options = SelectOptions(
            filters={"status": "open", "archived": False, "client": None, "note": ""},
            order_by="name",
            ascending=True,
            limit=20,
            offset=40,
        )
        assert build_select_params(options) == {
            "select": "*",
            "order": "name.asc",
            "status": "eq.open",
            "archived": "eq.false",
            "limit": "20",
            "offset": "40",
        }


class TestRequests:
    @pytest.mark.asyncio
    async def test_select(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": 1}]))

        result = await store.select("projects", SelectOptions(filters={"status": "open"}))

        assert result == Ok([{"id": 1}])
        request = recorder.last
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/projects"
        assert request.url.params["status"] == "eq.open"
        assert request.headers["apikey"] == "secret"
        assert request.headers["authorization"] == "Bearer secret"
        await store.close()

    @pytest.mark.asyncio
    async def test_insert_returns_representation(self):
        store, recorder = make_store(httpx.Response(201, json=[{"id": 9, "name": "C"}]))

        result = await store.insert("projects", {"name": "C"})

        assert result.unwrap() == {"id": 9, "name": "C"}
        assert recorder.last.method == "POST"
        assert recorder.last.headers["prefer"] == "return=representation"
        assert json.loads(recorder.last.content) == {"name": "C"}
        await store.close()

    @pytest.mark.asyncio
    async def test_insert_without_representation(self):
        store, _ = make_store(httpx.Response(201, json=[]))

        result = await store.insert("projects", {"name": "C"})

        assert type(result.error) is RemoteError
        assert not result.error.retryable
        assert result.error.context.entity_type == "projects"
        assert result.error.context.http_status == 201
        await store.close()

    @pytest.mark.asyncio
    async def test_update_targets_id(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": 3, "name": "B2"}]))

        result = await store.update("projects", 3, {"name": "B2"})

        assert result.unwrap()["name"] == "B2"
        assert recorder.last.method == "PATCH"
        assert recorder.last.url.params["id"] == "eq.3"
        await store.close()

    @pytest.mark.asyncio
    async def test_update_matching_nothing(self):
        store, _ = make_store(httpx.Response(200, json=[]))

        result = await store.update("projects", 3, {"name": "B2"})

        assert isinstance(result.error, RecordNotFoundError)
        assert result.error.context.record_id == 3
        await store.close()

    @pytest.mark.asyncio
    async def test_remove(self):
        store, recorder = make_store(httpx.Response(204))

        assert await store.remove("projects", 3) == Ok(None)
        assert recorder.last.method == "DELETE"
        assert recorder.last.url.params["id"] == "eq.3"
        await store.close()

    @pytest.mark.asyncio
    async def test_probe(self):
        store, recorder = make_store(httpx.Response(200))

        assert await store.probe("projects") == Ok(None)
        assert recorder.last.method == "HEAD"
        assert recorder.last.url.params["select"] == "count"
        assert recorder.last.headers["prefer"] == "count=exact"
        await store.close()

    @pytest.mark.asyncio
    async def test_no_auth_headers_without_key(self):
        store, recorder = make_store(httpx.Response(200, json=[]), api_key="")
        await store.select("projects")
        assert "apikey" not in recorder.last.headers
        assert "authorization" not in recorder.last.headers
        await store.close()


class TestErrorClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response, expected",
        [
            (httpx.Response(404, json={"code": "42P01", "message": "relation missing"}), RelationNotFoundError),
            (httpx.Response(404), RelationNotFoundError),
            (httpx.Response(409, json={"code": "23505", "message": "duplicate key"}), RemoteRejectedError),
            (httpx.Response(401, json={"message": "JWT expired"}), RemoteAuthError),
            (httpx.Response(503, text="upstream unavailable"), TransientRemoteError),
        ],
    )
    async def test_error_types(self, response, expected):
        store, _ = make_store(response)

        result = await store.select("projects")

        assert type(result.error) is expected
        assert result.error.context.entity_type == "projects"
        assert result.error.context.http_status == response.status_code
        await store.close()

    @pytest.mark.asyncio
    async def test_message_from_body(self):
        store, _ = make_store(httpx.Response(400, json={"code": "22P02", "message": "invalid input"}))

        result = await store.insert("projects", {"id": "x"})

        assert str(result.error) == "invalid input"
        assert result.error.context.code == "22P02"
        await store.close()

    @pytest.mark.asyncio
    async def test_plain_text_body(self):
        store, _ = make_store(httpx.Response(502, text="bad gateway"))
        result = await store.select("projects")
        assert str(result.error) == "bad gateway"
        await store.close()

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        store, _ = make_store(httpx.ReadTimeout("read timed out"))

        result = await store.select("projects")

        assert isinstance(result.error, TransientRemoteError)
        assert result.error.retryable
        assert isinstance(result.error.__cause__, httpx.TimeoutException)
        await store.close()

    @pytest.mark.asyncio
    async def test_connect_error_is_transient(self):
        store, _ = make_store(httpx.ConnectError("connection refused"))
        result = await store.probe("projects")
        assert isinstance(result.error, TransientRemoteError)
        await store.close()


class TestChannels:
    @pytest.mark.asyncio
    async def test_open_channel_polls_the_table(self):
        store, recorder = make_store(httpx.Response(200, json=[{"id": 1}]))
        channel = store.open_channel("projects-changes-abc", "projects")
        statuses = []
        channel.on_status(lambda status, error: statuses.append(status))

        await channel.subscribe()
        await channel.unsubscribe()

        assert isinstance(channel, PollingChannel)
        assert recorder.last.url.path == "/rest/v1/projects"
        assert statuses == [ChannelStatus.SUBSCRIBED, ChannelStatus.CLOSED]
        await store.close()


class TestCreateRemoteStore:
    def test_memory(self):
        store = create_remote_store(SyncSettings(_env_file=None))
        assert isinstance(store, InMemoryRemoteStore)

    @pytest.mark.asyncio
    async def test_https(self):
        settings = SyncSettings(
            _env_file=None,
            remote_url="https://db.example.com",
            poll_interval_seconds=12,
        )
        store = create_remote_store(settings)
        assert isinstance(store, PostgrestRemoteStore)
        assert store.poll_interval == 12
        await store.close()

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigError) as exc_info:
            create_remote_store(SyncSettings(_env_file=None, remote_url="ftp://db"))
        assert exc_info.value.context.metadata["remote_url"] == "ftp://db"


class TestBehindManager:
    @pytest.mark.asyncio
    async def test_create_retries_on_503(self, settings, sleeper, clock):
        store, recorder = make_store(
            httpx.Response(503, text="busy"),
            httpx.Response(201, json=[{"id": 1, "name": "Bridge", "created_at": "2024-01-01"}]),
        )
        manager = DatabaseManager(store, settings, sleep=sleeper, clock=clock)

        record = await manager.create("projects", {"name": "Bridge"})

        assert record["id"] == 1
        assert len(recorder.requests) == 2
        assert sleeper.delays == [1.0]
        assert manager.get_collection("projects") == [record]
        await store.close()

    @pytest.mark.asyncio
    async def test_missing_relation_loads_empty(self, settings, sleeper, clock):
        store, recorder = make_store(httpx.Response(404, json={"code": "PGRST205", "message": "no table"}))
        manager = DatabaseManager(store, settings, sleep=sleeper, clock=clock)

        assert await manager.load("attendance") == Ok(0)
        assert len(recorder.requests) == 1
        await store.close()
