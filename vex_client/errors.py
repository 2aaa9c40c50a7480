"""Client error types for Vex chat server interactions."""

from __future__ import annotations


class VexClientError(Exception):
    """Base error for Vex client failures."""


class VexTimeout(VexClientError):
    """Timeout while communicating with the server."""


class VexConnectionError(VexClientError):
    """Network connection to the server failed."""


class ConnectionLost(VexConnectionError):
    """Connection dropped while a request was waiting for its reply."""


class VexHandshakeError(VexClientError):
    """WebSocket upgrade or authentication handshake failed."""


class VexTrustError(VexHandshakeError):
    """Server identity could not be verified.

    Raised when the server's signature over the challenge nonce does not
    verify, or when the server presents a key other than the pinned one.
    """


class VexRequestError(VexClientError):
    """The server answered a request with ``status: error``."""

    def __init__(self, code: str, message: str, request_id: str | None = None) -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.request_id = request_id


class VexResponseError(VexClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class DuplicateRequestID(VexClientError):
    """A request identifier is already pending."""


class MalformedFrameError(VexClientError):
    """Inbound frame is not a JSON object carrying a ``type`` field."""


class KeyRingError(VexClientError):
    """Key material could not be loaded or generated."""


class ConfigError(VexClientError):
    """Client configuration is invalid."""
