"""Connection Monitor -- online/offline state plus a liveness probe.

The monitor holds the single ``is_online`` flag the Mutation Gateway checks
before spending any retry budget. It changes in three ways:

- :meth:`ConnectionMonitor.check_connection` runs a cheap probe read. Success
  (or a "relation not found" answer, which still proves the store is
  reachable) marks the monitor online. Any other failure marks it offline and
  raises :class:`~syncspine.core.errors.ConnectivityError`.
- :meth:`ConnectionMonitor.handle_online` reacts to an OS-level online
  transition by re-probing.
- :meth:`ConnectionMonitor.handle_offline` reacts to an OS-level offline
  transition synchronously, without any network round trip.

A :class:`ConnectionIndicator` mirrors the state for the UI layer: it shows
"connecting" during a probe, auto-hides a few seconds after success and stays
visible on failure or while offline.

Usage
-----
::

    monitor = ConnectionMonitor(lambda: store.probe("projects"))
    monitor.add_listener(lambda online: print("online" if online else "offline"))
    await monitor.check_connection()
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from syncspine.core.errors import ConnectivityError, is_relation_not_found
from syncspine.core.logging import get_logger
from syncspine.core.result import Err, Ok, Result, try_result_async

logger = get_logger(__name__)

ProbeFn = Callable[[], Awaitable[Result[None]]]
ConnectionListener = Callable[[bool], object]


# ── ConnectionIndicator ──────────────────────────────────────────────────


class IndicatorStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    OFFLINE = "offline"


_MESSAGES = {
    IndicatorStatus.CONNECTING: "Connecting...",
    IndicatorStatus.CONNECTED: "Connected",
    IndicatorStatus.ERROR: "Connection error",
    IndicatorStatus.OFFLINE: "Offline",
}


@dataclass
class ConnectionIndicator:
    """Visible connection status for the UI layer."""

    autohide_seconds: float = 3.0
    status: IndicatorStatus = IndicatorStatus.CONNECTING
    visible: bool = False
    _hide_handle: asyncio.TimerHandle | None = field(default=None, init=False, repr=False)

    @property
    def message(self) -> str:
        return _MESSAGES[self.status]

    def show(self, status: IndicatorStatus) -> None:
        """Show *status*; successes schedule an auto-hide on the running loop."""
        self.cancel_autohide()
        self.status = status
        self.visible = True
        if status is IndicatorStatus.CONNECTED:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop to schedule on: hide immediately.
                self.visible = False
                return
            self._hide_handle = loop.call_later(self.autohide_seconds, self.hide)

    def hide(self) -> None:
        self._hide_handle = None
        self.visible = False

    def cancel_autohide(self) -> None:
        if self._hide_handle is not None:
            self._hide_handle.cancel()
            self._hide_handle = None


# ── ConnectionMonitor ────────────────────────────────────────────────────


class ConnectionMonitor:
    """Tracks reachability of the remote store.

    Args:
        probe: Zero-argument coroutine factory returning ``Result[None]``
        initially_online: Starting state (the OS's view before any probe)
        indicator: Status indicator to drive (created if omitted)
    """

    def __init__(
        self,
        probe: ProbeFn,
        *,
        initially_online: bool = True,
        indicator: ConnectionIndicator | None = None,
    ):
        self._probe = probe
        self._online = initially_online
        self.indicator = indicator or ConnectionIndicator()
        self._listeners: list[ConnectionListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: ConnectionListener) -> None:
        """Call *listener(is_online)* after every probe and OS transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def check_connection(self) -> None:
        """Probe the store and update state.

        Raises:
            ConnectivityError: The store is unreachable. State is offline.
        """
        self.indicator.show(IndicatorStatus.CONNECTING)

        # A probe that raises is treated like one that returns Err.
        outcome = await try_result_async(self._probe())
        result = outcome.value if isinstance(outcome, Ok) else outcome

        if isinstance(result, Err) and not is_relation_not_found(result.error):
            error = result.error
            logger.error("connection_check_failed", error=str(error))
            self.indicator.show(IndicatorStatus.ERROR)
            self._set_online(False)
            raise ConnectivityError(
                f"Remote store unreachable: {error}",
                cause=error,
            ) from error

        logger.info("connection_check_ok")
        self.indicator.show(IndicatorStatus.CONNECTED)
        self._set_online(True)

    async def handle_online(self) -> bool:
        """OS reported connectivity: mark online and re-probe.

        Returns:
            Whether the probe confirmed the store is reachable. A failed
            probe is logged (by :meth:`check_connection`) and leaves the
            monitor offline.
        """
        logger.info("connection_restored")
        self._online = True
        try:
            await self.check_connection()
        except ConnectivityError:
            return False
        return True

    def handle_offline(self) -> None:
        """OS reported loss of connectivity: mark offline without any I/O."""
        logger.warning("connection_lost")
        self.indicator.show(IndicatorStatus.OFFLINE)
        self._set_online(False)

    def close(self) -> None:
        self.indicator.cancel_autohide()

    def _set_online(self, online: bool) -> None:
        self._online = online
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.warning("connection_listener_failed", error=str(e), exc_info=True)


__all__ = [
    "ConnectionIndicator",
    "ConnectionMonitor",
    "IndicatorStatus",
]
