"""Remote store implementations and the factory that picks one from settings."""

from __future__ import annotations

from syncspine.core.errors import ConfigError
from syncspine.core.settings import SyncSettings
from syncspine.remote.base import (
    ChangeEvent,
    ChangeEventType,
    ChannelStatus,
    RemoteChannel,
    RemoteStore,
    SelectOptions,
)
from syncspine.remote.memory import InMemoryChannel, InMemoryRemoteStore
from syncspine.remote.polling import PollingChannel, diff_snapshots
from syncspine.remote.postgrest import PostgrestRemoteStore


def create_remote_store(settings: SyncSettings) -> RemoteStore:
    """Return the store selected by ``settings.remote_url``.

    ``memory://`` gives an empty :class:`InMemoryRemoteStore`; ``http://`` and
    ``https://`` give a :class:`PostgrestRemoteStore`.

    Raises:
        ConfigError: Unsupported URL scheme.
    """
    url = settings.remote_url
    if settings.is_memory_store:
        return InMemoryRemoteStore()
    if url.startswith(("http://", "https://")):
        return PostgrestRemoteStore.from_settings(settings)
    raise ConfigError(f"Unsupported remote_url: {url!r}").with_context(remote_url=url)


__all__ = [
    "ChangeEvent",
    "ChangeEventType",
    "ChannelStatus",
    "InMemoryChannel",
    "InMemoryRemoteStore",
    "PollingChannel",
    "PostgrestRemoteStore",
    "RemoteChannel",
    "RemoteStore",
    "SelectOptions",
    "create_remote_store",
    "diff_snapshots",
]
