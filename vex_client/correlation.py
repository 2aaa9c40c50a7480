"""Request/response correlation for the Vex socket.

A single duplex stream carries many outstanding commands. Each command is
registered here under its ``transmissionID`` and the matching reply is handed
to exactly one handler.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ConnectionLost, DuplicateRequestID

_LOGGER = logging.getLogger(__name__)

# Handlers receive the reply frame, or the ConnectionLost error when abandoned.
ResponseHandler = Callable[[dict[str, Any] | ConnectionLost], None]
UnsolicitedHandler = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class PendingRequest:
    """A command waiting for its reply."""

    request_id: str
    handler: ResponseHandler
    created_at: float = field(default_factory=time.monotonic)


class CorrelationRegistry:
    """Map request identifiers to one-shot response handlers.

    Entries are removed before their handler runs, so a handler fires at most
    once even if the server repeats a reply.
    """

    def __init__(
        self,
        *,
        on_unsolicited: UnsolicitedHandler | None = None,
        id_field: str = "transmissionID",
    ) -> None:
        self._pending: dict[str, PendingRequest] = {}
        self._on_unsolicited = on_unsolicited
        self._id_field = id_field

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def register(self, request_id: str, handler: ResponseHandler) -> PendingRequest:
        """Store a handler for a request identifier.

        Raises:
            DuplicateRequestID: If the identifier is already pending.
        """
        if request_id in self._pending:
            raise DuplicateRequestID(f"Request {request_id} is already pending")
        pending = PendingRequest(request_id=request_id, handler=handler)
        self._pending[request_id] = pending
        return pending

    def discard(self, request_id: str) -> bool:
        """Drop a pending request without invoking its handler."""
        return self._pending.pop(request_id, None) is not None

    def dispatch(self, message: dict[str, Any]) -> bool:
        """Deliver an inbound frame to its pending handler.

        Returns:
            True if a pending request consumed the frame. Unmatched frames go
            to the unsolicited handler and False is returned.
        """
        request_id = message.get(self._id_field)
        pending = (
            self._pending.pop(request_id, None) if isinstance(request_id, str) else None
        )
        if pending is None:
            if self._on_unsolicited is not None:
                self._on_unsolicited(message)
            return False

        self._invoke(pending, message)
        return True

    def abandon_all(self, reason: str) -> int:
        """Fail every pending request with ConnectionLost and clear the table.

        Returns:
            Number of requests abandoned.
        """
        abandoned = list(self._pending.values())
        self._pending.clear()
        for pending in abandoned:
            self._invoke(pending, ConnectionLost(reason))
        if abandoned:
            _LOGGER.debug("Abandoned %d pending requests: %s", len(abandoned), reason)
        return len(abandoned)

    @staticmethod
    def _invoke(
        pending: PendingRequest, outcome: dict[str, Any] | ConnectionLost
    ) -> None:
        try:
            pending.handler(outcome)
        except Exception as err:
            _LOGGER.exception(
                "Response handler for %s failed: %s", pending.request_id, err
            )
