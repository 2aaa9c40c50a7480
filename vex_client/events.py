"""Publish/subscribe for events surfaced to the embedding application."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

_LOGGER = logging.getLogger(__name__)


class ClientEvent(Enum):
    """Events emitted by a Vex client.

    Payloads:
        READY: none
        RECONNECT: reconnect attempt count (int)
        DISCONNECT: websocket close code (int | None)
        DEAD_HEARTBEAT: none
        AUTHED: own account (User | None)
        MESSAGE: ChatMessage
        USER_INFO: own account (User)
        PEER_CHANGE: another user's account (User)
        CHANNEL_LIST: list[Channel]
        ONLINE_LIST: list[User], channel ID (str)
        ERROR: Exception
    """

    READY = "ready"
    RECONNECT = "reconnect"
    DISCONNECT = "disconnect"
    DEAD_HEARTBEAT = "dead_heartbeat"
    AUTHED = "authed"
    MESSAGE = "message"
    USER_INFO = "user_info"
    PEER_CHANGE = "peer_change"
    CHANNEL_LIST = "channel_list"
    ONLINE_LIST = "online_list"
    ERROR = "error"


EventCallback = Callable[..., Any]


class EventBus:
    """Map each ClientEvent to its subscriber callbacks."""

    def __init__(self) -> None:
        self._subscribers: dict[ClientEvent, list[EventCallback]] = {
            event: [] for event in ClientEvent
        }
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: ClientEvent, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to an event.

        Returns:
            A callable that removes the subscription.
        """
        if not isinstance(event, ClientEvent):
            raise ValueError(f"Unknown event: {event!r}")
        self._subscribers[event].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[event]:
                self._subscribers[event].remove(callback)

        return unsubscribe

    def subscriber_count(self, event: ClientEvent) -> int:
        return len(self._subscribers[event])

    def emit(self, event: ClientEvent, *args: Any) -> None:
        """Invoke every subscriber of an event.

        Coroutine callbacks are scheduled on the running loop. Subscriber
        failures are logged and never reach the caller.
        """
        for callback in list(self._subscribers[event]):
            try:
                result = callback(*args)
            except Exception as err:
                _LOGGER.exception("%s callback error: %s", event.value, err)
                continue
            if inspect.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.error("Event callback task failed: %s", task.exception())
