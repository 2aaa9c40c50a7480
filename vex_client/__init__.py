"""Client for the Vex chat protocol.

Authenticates with asymmetric-key challenge/response, multiplexes
correlated commands over one WebSocket and survives transport failures by
reconnecting, re-authenticating and rejoining channels.
"""

__version__ = "0.1.0"

from .client import VexClient
from .config import ClientConfig, load_config
from .connection import Connection, ConnectionManager, ConnectionState
from .correlation import CorrelationRegistry, PendingRequest
from .errors import (
    ConfigError,
    ConnectionLost,
    DuplicateRequestID,
    KeyRingError,
    MalformedFrameError,
    VexClientError,
    VexConnectionError,
    VexHandshakeError,
    VexRequestError,
    VexResponseError,
    VexTimeout,
    VexTrustError,
)
from .events import ClientEvent, EventBus
from .handshake import Handshake, HandshakeState
from .heartbeat import HeartbeatMonitor
from .http import VexHttpClient
from .keyring import KeyProvider, KeyRing
from .models import (
    Channel,
    ChatMessage,
    ClientInfo,
    FileInfo,
    Identity,
    PermissionGrant,
    PowerLevels,
    User,
)
from .operations import (
    ChannelOperations,
    FileOperations,
    MessageOperations,
    PermissionOperations,
    UserOperations,
)
from .protocol import Method, MessageType, Response, ResponseStatus

__all__ = [
    "Channel",
    "ChannelOperations",
    "ChatMessage",
    "ClientConfig",
    "ClientEvent",
    "ClientInfo",
    "ConfigError",
    "Connection",
    "ConnectionLost",
    "ConnectionManager",
    "ConnectionState",
    "CorrelationRegistry",
    "DuplicateRequestID",
    "EventBus",
    "FileInfo",
    "FileOperations",
    "Handshake",
    "HandshakeState",
    "HeartbeatMonitor",
    "Identity",
    "KeyProvider",
    "KeyRing",
    "KeyRingError",
    "MalformedFrameError",
    "MessageOperations",
    "MessageType",
    "Method",
    "PendingRequest",
    "PermissionGrant",
    "PermissionOperations",
    "PowerLevels",
    "Response",
    "ResponseStatus",
    "User",
    "UserOperations",
    "VexClient",
    "VexClientError",
    "VexConnectionError",
    "VexHandshakeError",
    "VexHttpClient",
    "VexRequestError",
    "VexResponseError",
    "VexTimeout",
    "VexTrustError",
    "__version__",
    "load_config",
]
