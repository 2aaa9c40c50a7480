"""Test the challenge/response handshake against a scripted server."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from vex_client import (
    ClientConfig,
    ClientEvent,
    ConnectionState,
    Handshake,
    HandshakeState,
    Identity,
    KeyRing,
    VexClient,
    VexHandshakeError,
    VexTimeout,
    VexTrustError,
)
from vex_client.protocol import Response, ResponseStatus

from .conftest import FakeTransport, MockServer, record


class TestMutualAuthentication:
    """Tests for a successful handshake in both directions."""

    async def test_auth_pins_server_key_on_first_use(
        self, client: VexClient, server: MockServer
    ) -> None:
        authed = record(client, ClientEvent.AUTHED)
        await client.connect()

        server_key = await client.auth()

        assert server_key == server.keyring.public_key().hex()
        assert client.identity.server_public_key == server_key
        assert client.manager.handshake_state is HandshakeState.AUTHENTICATED
        assert client.state is ConnectionState.READY
        assert authed[0][0].username == "alice"
        assert client.info().authed is True

    async def test_server_challenge_is_signed_with_client_key(
        self, client: VexClient, server: MockServer, transports: list[FakeTransport]
    ) -> None:
        server.client_nonce = "abc"
        await client.connect()

        await client.auth()

        response = transports[0].sent_of("response")[0]
        assert server.client_verified is True
        assert response["pubkey"] == client.identity.public_key
        assert server.keyring.verify(
            b"abc",
            bytes.fromhex(response["response"]),
            bytes.fromhex(response["pubkey"]),
        )

    async def test_client_challenge_carries_nonce_and_key(
        self, client: VexClient, transports: list[FakeTransport]
    ) -> None:
        await client.connect()
        await client.auth()

        challenge = transports[0].sent_of("challenge")[0]
        assert challenge["pubkey"] == client.identity.public_key
        assert len(challenge["challenge"]) == 36
        assert "transmissionID" in challenge


class TestTrustViolations:
    """Tests for server identities that must not be trusted."""

    async def test_rejects_different_key_after_pinning(
        self,
        config: ClientConfig,
        transport_factory,
        server: MockServer,
        transports: list[FakeTransport],
    ) -> None:
        impostor = KeyRing()
        impostor.init()
        pinned = server.keyring.public_key().hex()
        server.keyring = impostor
        client = VexClient(
            config, KeyRing(), pinned, transport_factory=transport_factory
        )
        errors = record(client, ClientEvent.ERROR)
        try:
            await client.connect()

            with pytest.raises(VexTrustError):
                await client.auth()

            await asyncio.sleep(0.05)
            assert client.identity.server_public_key == pinned
            assert client.manager.handshake_state is HandshakeState.HANDSHAKE_FAILED
            assert client.state is ConnectionState.CLOSED
            assert transports[0].closed
            assert len(transports) == 1
            assert isinstance(errors[0][0], VexTrustError)
        finally:
            await client.logout()

    async def test_rejects_bad_signature(
        self, client: VexClient, server: MockServer, transports: list[FakeTransport]
    ) -> None:
        server.tamper_signature = True
        await client.connect()

        with pytest.raises(VexTrustError, match="did not verify"):
            await client.auth()

        assert client.identity.server_public_key is None
        await asyncio.sleep(0.05)
        assert len(transports) == 1


class TestTimeouts:
    """Tests for handshakes that never complete."""

    async def test_unanswered_challenge_times_out(
        self,
        config: ClientConfig,
        transport_factory,
        server: MockServer,
    ) -> None:
        server.answer_challenges = False
        client = VexClient(
            config.with_overrides(challenge_timeout=0.05),
            KeyRing(),
            transport_factory=transport_factory,
        )
        errors = record(client, ClientEvent.ERROR)
        try:
            await client.connect()

            with pytest.raises(VexTimeout):
                await client.auth()

            assert client.manager.handshake_state is HandshakeState.HANDSHAKE_FAILED
            assert isinstance(errors[0][0], VexTimeout)
            assert len(client.manager.registry) == 0
        finally:
            await client.logout()

    async def test_server_never_challenging_client_times_out(
        self,
        config: ClientConfig,
        transport_factory,
        server: MockServer,
    ) -> None:
        server.challenge_client = False
        client = VexClient(
            config.with_overrides(auth_timeout=0.1),
            KeyRing(),
            transport_factory=transport_factory,
        )
        try:
            await client.connect()

            with pytest.raises(VexTimeout, match="did not complete"):
                await client.auth()

            assert client.identity.server_public_key is not None
            assert not client.manager.is_authenticated
        finally:
            await client.logout()


class TestHandshakeUnit:
    """Tests for Handshake with a stubbed round trip."""

    @pytest.fixture
    def keyring(self) -> KeyRing:
        keyring = KeyRing()
        keyring.init()
        return keyring

    async def test_requires_ready_keys(self) -> None:
        handshake = Handshake(KeyRing(), Identity("", "host"), AsyncMock())

        with pytest.raises(VexHandshakeError, match="not ready"):
            await handshake.challenge_server()

    async def test_error_reply_fails_handshake(self, keyring: KeyRing) -> None:
        round_trip = AsyncMock(
            return_value=Response(
                request_id="t1",
                msg_type="error",
                status=ResponseStatus.ERROR,
                code="DENIED",
                message="go away",
            )
        )
        handshake = Handshake(keyring, Identity("", "host"), round_trip)

        with pytest.raises(VexHandshakeError, match="DENIED"):
            await handshake.challenge_server()

        assert handshake.state is HandshakeState.HANDSHAKE_FAILED

    async def test_reset_fails_waiters(self, keyring: KeyRing) -> None:
        handshake = Handshake(keyring, Identity("", "host"), AsyncMock())
        waiter = asyncio.create_task(handshake.wait_authenticated())
        await asyncio.sleep(0)

        handshake.reset()

        with pytest.raises(VexHandshakeError, match="reset"):
            await waiter
        assert handshake.state is HandshakeState.UNAUTHENTICATED

    async def test_challenge_without_nonce_is_ignored(self, keyring: KeyRing) -> None:
        round_trip = AsyncMock()
        handshake = Handshake(keyring, Identity("", "host"), round_trip)

        await handshake.respond_to_challenge({"type": "challenge"})

        round_trip.assert_not_called()
