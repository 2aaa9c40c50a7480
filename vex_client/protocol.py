"""Protocol helpers for Vex chat transport frames.

Outbound commands are flat JSON objects carrying a ``type`` discriminator,
an operation verb in ``method`` and a fresh ``transmissionID``. Inbound
replies echo the ``transmissionID`` of the command they answer.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import MalformedFrameError, VexRequestError

REQUEST_ID_FIELD = "transmissionID"
NIL_UUID = "00000000-0000-0000-0000-000000000000"


class Method(Enum):
    """Operation verbs understood by the server."""

    CREATE = "CREATE"
    RETRIEVE = "RETRIEVE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    JOIN = "JOIN"
    LEAVE = "LEAVE"
    BAN = "BAN"
    KICK = "KICK"
    NICK = "NICK"
    ACTIVE = "ACTIVE"
    REGISTER = "REGISTER"


class MessageType:
    """Values of the ``type`` discriminator."""

    # Commands
    CHANNEL = "channel"
    CHANNEL_PERM = "channelPerm"
    USER = "user"
    FILE = "file"
    CHAT = "chat"
    HISTORY_REQ = "historyReq"
    IDENTITY = "identity"
    CHALLENGE = "challenge"
    RESPONSE = "response"
    PING = "ping"

    # Replies
    SUCCESS = "success"
    ERROR = "error"
    PONG = "pong"

    # Pushes
    CHANNEL_LIST = "channelList"
    ONLINE_LIST = "onlineList"
    CLIENT_INFO = "clientInfo"
    PEER_CHANGE = "peerChange"
    POWER_LEVELS = "powerLevels"
    HISTORY = "history"


class ResponseStatus(Enum):
    """Outcome of a correlated reply."""

    SUCCESS = "success"
    ERROR = "error"


def new_request_id() -> str:
    """Return a fresh version-4 UUID string."""
    return str(uuid.uuid4())


def build_command(
    msg_type: str,
    method: Method | None = None,
    *,
    request_id: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build an outbound command envelope.

    Args:
        msg_type: Resource discriminator (e.g., "channel", "user").
        method: Operation verb. Omitted for verb-less frames such as
            challenges and pings.
        request_id: Optional caller-supplied identifier. Generated when omitted.
        **fields: Operation-specific fields, copied verbatim.

    Returns:
        Command dict ready for JSON encoding.
    """
    frame: dict[str, Any] = {
        "type": msg_type,
        REQUEST_ID_FIELD: request_id or new_request_id(),
    }
    if method is not None:
        frame["method"] = method.value
    frame.update(fields)
    return frame


def build_ping(request_id: str | None = None) -> dict[str, Any]:
    """Construct a heartbeat ping frame."""
    return build_command(MessageType.PING, request_id=request_id)


def encode_frame(frame: dict[str, Any]) -> str:
    """Serialize a frame as a single-line JSON text frame."""
    return json.dumps(frame, separators=(",", ":"))


def decode_frame(text: str | bytes) -> dict[str, Any]:
    """Parse an inbound text frame.

    Raises:
        MalformedFrameError: If the text is not a JSON object with a string
            ``type`` field.
    """
    try:
        frame = json.loads(text)
    except (TypeError, ValueError) as err:
        raise MalformedFrameError(f"Frame is not valid JSON: {err}") from err
    if not isinstance(frame, dict):
        raise MalformedFrameError("Frame is not a JSON object")
    if not isinstance(frame.get("type"), str):
        raise MalformedFrameError("Frame has no type field")
    return frame


def request_id_of(frame: dict[str, Any]) -> str | None:
    """Return the correlation identifier of a frame, if any."""
    value = frame.get(REQUEST_ID_FIELD)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class Response:
    """Decoded correlated reply.

    Attributes:
        request_id: Identifier of the originating command.
        msg_type: Raw ``type`` of the reply frame.
        status: Success or error.
        data: Payload on success.
        code: Machine-readable error code on failure.
        message: Human-readable error message on failure.
        raw: The full reply frame.
    """

    request_id: str | None
    msg_type: str
    status: ResponseStatus
    data: Any = None
    code: str | None = None
    message: str | None = None
    raw: dict[str, Any] = field(default_factory=lambda: {})

    @property
    def is_error(self) -> bool:
        return self.status is ResponseStatus.ERROR

    def raise_for_status(self) -> None:
        """Raise the error described by this reply, if any."""
        if not self.is_error:
            return
        raise VexRequestError(
            self.code or "UNKNOWN", self.message or "", self.request_id
        )


def _reply_status(frame: dict[str, Any]) -> ResponseStatus:
    status = frame.get("status")
    if status == ResponseStatus.ERROR.value:
        return ResponseStatus.ERROR
    if status == ResponseStatus.SUCCESS.value:
        return ResponseStatus.SUCCESS
    # Servers without a status field signal the outcome through the type.
    if frame.get("type") == MessageType.ERROR:
        return ResponseStatus.ERROR
    return ResponseStatus.SUCCESS


def parse_response(frame: dict[str, Any]) -> Response:
    """Classify a correlated reply frame.

    The reply is still delivered when its semantic type is an error; callers
    decide what to do through ``Response.raise_for_status``.
    """
    status = _reply_status(frame)
    if status is ResponseStatus.ERROR:
        code = frame.get("code", frame.get("Code"))
        message = frame.get("message", frame.get("Message"))
        return Response(
            request_id=request_id_of(frame),
            msg_type=frame.get("type", ""),
            status=status,
            code=str(code) if code is not None else None,
            message=str(message) if message is not None else None,
            raw=frame,
        )
    return Response(
        request_id=request_id_of(frame),
        msg_type=frame.get("type", ""),
        status=status,
        data=frame.get("data"),
        raw=frame,
    )

