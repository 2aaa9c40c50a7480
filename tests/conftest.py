"""Pytest configuration and fixtures for vex_client tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from vex_client import ClientConfig, ClientEvent, KeyRing, VexClient
from vex_client.errors import VexConnectionError
from vex_client.transport import VexWsMessage, VexWsMessageType

Responder = Callable[[dict[str, Any]], dict[str, Any] | None]


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    read_data: bytes | None = None,
    headers: dict[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        read_data: Data to return from read() call
        headers: Response headers

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}

    if read_data is not None:
        response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


def success(frame: dict[str, Any], data: Any = None) -> dict[str, Any]:
    """Build a success reply to a command frame."""
    return {"type": "success", "transmissionID": frame["transmissionID"], "data": data}


def error(frame: dict[str, Any], code: str, message: str) -> dict[str, Any]:
    """Build an error reply to a command frame."""
    return {
        "type": "error",
        "transmissionID": frame["transmissionID"],
        "code": code,
        "message": message,
    }


class FakeTransport:
    """In-memory socket driven by a MockServer."""

    def __init__(self, server: MockServer | None = None) -> None:
        self.server = server
        self.inbox: asyncio.Queue[VexWsMessage] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.connected = False
        self.closed = False
        self.fail_connect: Exception | None = None

    async def connect(
        self, host: str, *, secure: bool, path: str, timeout: float
    ) -> None:
        if self.fail_connect is not None:
            raise self.fail_connect
        self.connected = True

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(VexWsMessage(VexWsMessageType.CLOSED, 1000))

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise VexConnectionError("WebSocket is closed")
        self.sent.append(payload)
        if self.server is not None:
            self.server.handle(self, payload)

    def push(self, frame: dict[str, Any]) -> None:
        """Deliver a server frame to the client."""
        if not self.closed:
            self.push_text(json.dumps(frame))

    def push_text(self, text: str) -> None:
        self.inbox.put_nowait(VexWsMessage(VexWsMessageType.TEXT, text))

    def drop(self, code: int = 1006) -> None:
        """Simulate the server vanishing."""
        self.closed = True
        self.inbox.put_nowait(VexWsMessage(VexWsMessageType.CLOSED, code))

    def sent_of(self, msg_type: str, method: str | None = None) -> list[dict[str, Any]]:
        return [
            frame
            for frame in self.sent
            if frame["type"] == msg_type
            and (method is None or frame.get("method") == method)
        ]

    def __aiter__(self) -> AsyncIterator[VexWsMessage]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[VexWsMessage]:
        while True:
            msg = await self.inbox.get()
            yield msg
            if msg.type is not VexWsMessageType.TEXT:
                return


class MockServer:
    """Scripted Vex server answering over FakeTransport.

    Handles the handshake in both directions and pings; every other command
    is answered by the responder registered for its (type, method).
    """

    def __init__(self, keyring: KeyRing) -> None:
        self.keyring = keyring
        self.client_nonce = "abc"
        self.user = {"userID": "u-1", "username": "alice", "powerLevel": 0}
        self.answer_pings = True
        self.answer_challenges = True
        self.challenge_client = True
        self.tamper_signature = False
        self.client_verified = False
        self.responders: dict[tuple[str, str | None], Responder] = {}

    def on(self, msg_type: str, method: str | None, responder: Responder) -> None:
        self.responders[(msg_type, method)] = responder

    def handle(self, transport: FakeTransport, frame: dict[str, Any]) -> None:
        msg_type = frame["type"]
        request_id = frame["transmissionID"]

        if msg_type == "ping":
            if self.answer_pings:
                transport.push({"type": "pong", "transmissionID": request_id})
            return

        if msg_type == "challenge":
            if not self.answer_challenges:
                return
            signature = self.keyring.sign(frame["challenge"].encode("utf-8"))
            if self.tamper_signature:
                signature = bytes(64)
            transport.push(
                {
                    "type": "response",
                    "transmissionID": request_id,
                    "response": signature.hex(),
                    "pubkey": self.keyring.public_key().hex(),
                }
            )
            if self.challenge_client:
                transport.push({"type": "challenge", "challenge": self.client_nonce})
            return

        if msg_type == "response":
            self.client_verified = self.keyring.verify(
                self.client_nonce.encode("utf-8"),
                bytes.fromhex(frame["response"]),
                bytes.fromhex(frame["pubkey"]),
            )
            if self.client_verified:
                transport.push(success(frame, self.user))
            else:
                transport.push(error(frame, "AUTH", "Signature did not verify"))
            return

        responder = self.responders.get(
            (msg_type, frame.get("method"))
        ) or self.responders.get((msg_type, None))
        if responder is None:
            transport.push(success(frame))
            return
        reply = responder(frame)
        if reply is not None:
            transport.push(reply)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until the predicate holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def record(client: VexClient, event: ClientEvent) -> list[tuple[Any, ...]]:
    """Collect the payloads of an event."""
    seen: list[tuple[Any, ...]] = []
    client.on(event, lambda *args: seen.append(args))
    return seen


@pytest.fixture
def server_keyring() -> KeyRing:
    keyring = KeyRing()
    keyring.init()
    return keyring


@pytest.fixture
def server(server_keyring: KeyRing) -> MockServer:
    return MockServer(server_keyring)


@pytest.fixture
def transports() -> list[FakeTransport]:
    return []


@pytest.fixture
def transport_factory(
    server: MockServer, transports: list[FakeTransport]
) -> Callable[[], FakeTransport]:
    def factory() -> FakeTransport:
        transport = FakeTransport(server)
        transports.append(transport)
        return transport

    return factory


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        host="chat.test:8000",
        secure=False,
        ping_interval=3600,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        challenge_timeout=1.0,
        auth_timeout=1.0,
    )


@pytest.fixture
async def client(
    config: ClientConfig,
    transport_factory: Callable[[], FakeTransport],
    mock_session: MagicMock,
) -> AsyncIterator[VexClient]:
    vex = VexClient(
        config,
        KeyRing(),
        transport_factory=transport_factory,
        http_session=mock_session,
    )
    yield vex
    await vex.logout()
