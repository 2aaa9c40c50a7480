"""Liveness monitor for the Vex socket.

A socket can stay technically open while the server stopped answering. The
monitor sends a correlated ping every interval and declares the connection
dead once enough consecutive pongs are missing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .correlation import CorrelationRegistry
from .errors import ConnectionLost, VexClientError
from .protocol import build_ping, new_request_id

_LOGGER = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Periodic ping with an escalating failure counter."""

    def __init__(
        self,
        registry: CorrelationRegistry,
        send: Callable[[dict[str, Any]], Awaitable[None]],
        on_dead: Callable[[], Awaitable[None]],
        *,
        interval: float = 10.0,
        max_missed: int = 2,
        label: str = "",
    ) -> None:
        self._registry = registry
        self._send = send
        self._on_dead = on_dead
        self._interval = interval
        self._max_missed = max_missed
        self._label = label

        self._task: asyncio.Task[None] | None = None
        self._alive = True
        self._failures = 0
        self._last_ping_id: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def failures(self) -> int:
        return self._failures

    def start(self) -> None:
        """Start pinging; a running monitor is left as is."""
        if self.running:
            return
        self._alive = True
        self._failures = 0
        self._last_ping_id = None
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Stop pinging and forget the outstanding ping."""
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None
        if self._last_ping_id is not None:
            self._registry.discard(self._last_ping_id)
            self._last_ping_id = None

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)

                if self._alive:
                    self._failures = 0
                else:
                    self._failures += 1
                    _LOGGER.warning(
                        "[%s] Missed pong (%d in a row)", self._label, self._failures
                    )

                if self._failures >= self._max_missed:
                    _LOGGER.error(
                        "[%s] Connection dead (%d missed pongs)",
                        self._label,
                        self._failures,
                    )
                    self.stop()
                    await self._on_dead()
                    return

                await self._ping()
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Heartbeat cancelled", self._label)

    async def _ping(self) -> None:
        if self._last_ping_id is not None:
            self._registry.discard(self._last_ping_id)

        self._alive = False
        ping_id = new_request_id()
        self._last_ping_id = ping_id
        self._registry.register(ping_id, self._make_pong_handler(ping_id))
        try:
            await self._send(build_ping(ping_id))
            _LOGGER.debug("[%s] Ping %s", self._label, ping_id)
        except VexClientError as err:
            _LOGGER.debug("[%s] Ping send failed: %s", self._label, err)

    def _make_pong_handler(
        self, ping_id: str
    ) -> Callable[[dict[str, Any] | ConnectionLost], None]:
        def handle(outcome: dict[str, Any] | ConnectionLost) -> None:
            if isinstance(outcome, ConnectionLost):
                return
            if ping_id == self._last_ping_id:
                self._last_ping_id = None
            self._alive = True
            _LOGGER.debug("[%s] Pong %s", self._label, ping_id)

        return handle
