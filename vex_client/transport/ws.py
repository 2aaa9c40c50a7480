"""WebSocket helpers for the Vex chat socket."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    VexConnectionError,
    VexHandshakeError,
    VexTimeout,
)


async def connect_websocket(
    host: str,
    *,
    secure: bool = True,
    path: str = "/socket",
    ping_interval: float | None = None,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to a WebSocket endpoint.

    Protocol-level pings are off by default; liveness is tracked by the
    client's own heartbeat.

    Args:
        host: Target "hostname:port"
        secure: Use wss:// instead of ws://
        path: WebSocket path (default: /socket)
        ping_interval: Interval for websocket ping frames
        timeout: Connection timeout
    """
    scheme = "wss" if secure else "ws"
    ws_url = f"{scheme}://{host}{path}"
    try:
        return await asyncio.wait_for(
            websockets.connect(
                ws_url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise VexTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise VexHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise VexConnectionError("WebSocket connection failed") from err
