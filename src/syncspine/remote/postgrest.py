"""
PostgREST remote store over httpx.

Talks to ``{url}/rest/v1/{table}`` the way hosted Postgres backends expose
it:

============  =========================================================
select        ``GET /{table}?select=*&order=created_at.desc&col=eq.v``
insert        ``POST /{table}`` with ``Prefer: return=representation``
update        ``PATCH /{table}?id=eq.{id}`` (representation returned)
remove        ``DELETE /{table}?id=eq.{id}``
probe         ``HEAD /{table}?select=count`` with ``Prefer: count=exact``
============  =========================================================

Transport failures and timeouts become
:class:`~syncspine.core.errors.TransientRemoteError`; HTTP error bodies
(``{"code", "message", "details", "hint"}``) are classified with
:func:`~syncspine.core.errors.classify_remote_error`. Nothing is raised for
remote failures: every method returns a ``Result``.

Live updates use :class:`~syncspine.remote.polling.PollingChannel`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from syncspine.core.entities import RECORD_ID_FIELD, Record
from syncspine.core.errors import (
    RecordNotFoundError,
    RemoteError,
    TransientRemoteError,
    classify_remote_error,
)
from syncspine.core.logging import get_logger
from syncspine.core.result import Err, Ok, Result
from syncspine.core.settings import SyncSettings
from syncspine.remote.base import SelectOptions
from syncspine.remote.polling import PollingChannel

logger = get_logger(__name__)

_RETURN_REPRESENTATION = {"Prefer": "return=representation"}


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_select_params(options: SelectOptions) -> dict[str, str]:
    """Translate :class:`SelectOptions` into PostgREST query parameters."""
    direction = "asc" if options.ascending else "desc"
    params = {"select": "*", "order": f"{options.order_by}.{direction}"}
    for column, value in options.active_filters().items():
        params[column] = f"eq.{_format_value(value)}"
    if options.limit is not None:
        params["limit"] = str(options.limit)
    if options.offset:
        params["offset"] = str(options.offset)
    return params


class PostgrestRemoteStore:
    """:class:`~syncspine.remote.base.RemoteStore` for a PostgREST endpoint.

    Args:
        url: Project URL (``https://xyz.example.co``); ``/rest/v1`` is appended
        api_key: Sent as ``apikey`` and ``Authorization: Bearer``
        timeout: Per-request timeout in seconds
        poll_interval: Interval for polling live channels
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        *,
        timeout: float = 10.0,
        poll_interval: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.poll_interval = poll_interval
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: SyncSettings, **kwargs: Any) -> PostgrestRemoteStore:
        return cls(
            settings.remote_url,
            settings.remote_key,
            timeout=settings.request_timeout_seconds,
            poll_interval=settings.poll_interval_seconds,
            **kwargs,
        )

    # ── RemoteStore ──────────────────────────────────────────────────────

    async def select(self, table: str, options: SelectOptions | None = None) -> Result[list[Record]]:
        params = build_select_params(options or SelectOptions())
        result = await self._request("GET", table, params=params)
        return result.map(lambda response: list(response.json()))

    async def insert(self, table: str, payload: Mapping[str, Any]) -> Result[Record]:
        result = await self._request(
            "POST", table, json=dict(payload), headers=_RETURN_REPRESENTATION
        )
        if isinstance(result, Err):
            return result
        response = result.unwrap()
        rows = response.json()
        if not rows:
            return Err(RemoteError(
                f"Insert into {table} returned no row", http_status=response.status_code
            ).with_context(entity_type=table, operation="insert"))
        return Ok(rows[0])

    async def update(self, table: str, record_id: Any, payload: Mapping[str, Any]) -> Result[Record]:
        result = await self._request(
            "PATCH",
            table,
            params={RECORD_ID_FIELD: f"eq.{_format_value(record_id)}"},
            json=dict(payload),
            headers=_RETURN_REPRESENTATION,
        )
        if isinstance(result, Err):
            return result
        rows = result.unwrap().json()
        if not rows:
            return Err(RecordNotFoundError(
                f"No {table} row with id {record_id!r}", http_status=200
            ).with_context(entity_type=table, record_id=record_id))
        return Ok(rows[0])

    async def remove(self, table: str, record_id: Any) -> Result[None]:
        result = await self._request(
            "DELETE", table, params={RECORD_ID_FIELD: f"eq.{_format_value(record_id)}"}
        )
        return result.map(lambda _: None)

    async def probe(self, table: str) -> Result[None]:
        result = await self._request(
            "HEAD", table, params={"select": "count"}, headers={"Prefer": "count=exact"}
        )
        return result.map(lambda _: None)

    def open_channel(self, name: str, table: str) -> PollingChannel:
        return PollingChannel(
            name,
            table,
            lambda: self.select(table, SelectOptions()),
            interval_seconds=self.poll_interval,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── HTTP ─────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result[httpx.Response]:
        try:
            response = await self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning("remote_timeout", method=method, table=table)
            return Err(TransientRemoteError(f"{method} {table} timed out", cause=e))
        except httpx.TransportError as e:
            logger.warning("remote_transport_error", method=method, table=table, error=str(e))
            return Err(TransientRemoteError(f"{method} {table} failed: {e}", cause=e))

        if response.is_error:
            return Err(_classify_response(method, table, response))
        return Ok(response)


def _classify_response(method: str, table: str, response: httpx.Response):
    code = None
    message = response.reason_phrase or f"HTTP {response.status_code}"
    if response.content:
        try:
            body = response.json()
        except ValueError:
            message = response.text
        else:
            if isinstance(body, dict):
                code = body.get("code")
                message = body.get("message") or message

    error = classify_remote_error(message=message, code=code, http_status=response.status_code)
    logger.debug(
        "remote_error_response",
        method=method,
        table=table,
        status=response.status_code,
        code=code,
        error_type=type(error).__name__,
    )
    return error.with_context(entity_type=table)


__all__ = [
    "PostgrestRemoteStore",
    "build_select_params",
]
