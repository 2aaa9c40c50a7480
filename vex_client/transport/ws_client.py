"""WebSocket client wrapper for the Vex chat socket."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import VexConnectionError
from ..protocol import encode_frame
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

# Close code reported when the socket vanished without a close frame.
ABNORMAL_CLOSURE = 1006


class VexWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class VexWsMessage:
    """Normalized WebSocket message payload.

    TEXT messages carry the frame text, CLOSED messages the close code and
    ERROR messages the exception that ended the stream.
    """

    type: VexWsMessageType
    data: str | int | Exception | None = None


class VexWsClient:
    """Wrapper around the websockets library for the Vex socket."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        host: str,
        *,
        secure: bool = True,
        path: str = "/socket",
        timeout: float = 15.0,
    ) -> None:
        """Connect to the server websocket."""
        self._ws = await connect_websocket(
            host,
            secure=secure,
            path=path,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload as a single-line text frame."""
        if self._ws is None:
            raise VexConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(encode_frame(payload))
        except ConnectionClosed as err:
            raise VexConnectionError("WebSocket is closed") from err

    def __aiter__(self) -> AsyncIterator[VexWsMessage]:
        if self._ws is None:
            raise VexConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[VexWsMessage]:
        if self._ws is None:
            raise VexConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized: VexWsMessage | None = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed as err:
            code = err.rcvd.code if err.rcvd is not None else ABNORMAL_CLOSURE
            yield VexWsMessage(type=VexWsMessageType.CLOSED, data=code)
        except Exception as err:
            yield VexWsMessage(type=VexWsMessageType.ERROR, data=err)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield VexWsMessage(
                type=VexWsMessageType.CLOSED,
                data=getattr(self._ws, "close_code", None),
            )

    @staticmethod
    def _normalize_message(msg: Any) -> VexWsMessage | None:
        """Normalize backend frames into VexWsMessage."""
        if isinstance(msg, bytes):
            return None
        if isinstance(msg, str):
            return VexWsMessage(VexWsMessageType.TEXT, msg)
        return VexWsMessage(VexWsMessageType.TEXT, str(msg))
