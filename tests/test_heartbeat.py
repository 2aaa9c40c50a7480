"""Test HeartbeatMonitor failure counting."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from vex_client import CorrelationRegistry, HeartbeatMonitor

from .conftest import wait_until


def _monitor(
    registry: CorrelationRegistry, send, on_dead, interval: float = 0.01
) -> HeartbeatMonitor:
    return HeartbeatMonitor(
        registry, send, on_dead, interval=interval, max_missed=2, label="test"
    )


async def test_answered_pings_keep_connection_alive() -> None:
    registry = CorrelationRegistry()
    on_dead = AsyncMock()

    async def send(frame):
        registry.dispatch({"type": "pong", "transmissionID": frame["transmissionID"]})

    monitor = _monitor(registry, send, on_dead)
    monitor.start()
    await asyncio.sleep(0.1)
    monitor.stop()

    on_dead.assert_not_called()
    assert monitor.failures == 0
    assert len(registry) == 0


async def test_withheld_pongs_declare_dead_once() -> None:
    registry = CorrelationRegistry()
    on_dead = AsyncMock()
    send = AsyncMock()

    monitor = _monitor(registry, send, on_dead)
    monitor.start()
    await wait_until(lambda: on_dead.await_count == 1)
    await asyncio.sleep(0.05)

    on_dead.assert_awaited_once()
    assert not monitor.running
    assert len(registry) == 0
    assert send.await_count == 2


async def test_late_pong_resets_failures() -> None:
    registry = CorrelationRegistry()
    on_dead = AsyncMock()
    sent: list[dict] = []

    async def send(frame):
        sent.append(frame)

    monitor = _monitor(registry, send, on_dead, interval=0.1)
    monitor.start()
    await wait_until(lambda: monitor.failures == 1)
    registry.dispatch({"type": "pong", "transmissionID": sent[-1]["transmissionID"]})
    await wait_until(lambda: monitor.failures == 0)
    monitor.stop()

    on_dead.assert_not_called()


async def test_stop_discards_outstanding_ping() -> None:
    registry = CorrelationRegistry()
    monitor = _monitor(registry, AsyncMock(), AsyncMock())

    monitor.start()
    await wait_until(lambda: len(registry) == 1)
    monitor.stop()

    assert len(registry) == 0
    assert not monitor.running
