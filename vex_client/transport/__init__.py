"""Transport layer for the Vex client.

The connection core treats the socket as a duplex channel of text frames
with open/message/error/close notifications. This package supplies the
websockets-backed implementation.

Components:
- ws: WebSocket connection establishment
- ws_client: WebSocket message iteration and JSON sends
"""

from .ws import connect_websocket
from .ws_client import VexWsClient, VexWsMessage, VexWsMessageType

__all__ = [
    "VexWsClient",
    "VexWsMessage",
    "VexWsMessageType",
    "connect_websocket",
]
