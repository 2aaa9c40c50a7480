"""Challenge/response authentication with a Vex server.

Both directions run independently over the same socket:

- The client proves the server's identity by sending a random nonce with its
  own public key. The server signs the nonce; the signature must verify
  against the pinned server key (or the key presented, on first use, which is
  then pinned).
- The server proves the client's identity by pushing a ``challenge`` frame.
  The client signs the nonce and answers with a ``response`` frame whose
  acknowledgement tells the client it has been accepted.

The session is authenticated once both directions succeeded. Completion is a
one-shot future per connection, so any number of callers can wait on it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, NoReturn

from .errors import (
    ConnectionLost,
    VexClientError,
    VexHandshakeError,
    VexTimeout,
    VexTrustError,
)
from .keyring import KeyProvider
from .models import Identity, User
from .protocol import MessageType, Response, new_request_id

_LOGGER = logging.getLogger(__name__)

RoundTrip = Callable[..., Awaitable[Response]]


class HandshakeState(Enum):
    """Authentication state of the current connection."""

    UNAUTHENTICATED = "unauthenticated"
    CHALLENGE_ISSUED = "challenge_issued"
    AUTHENTICATED = "authenticated"
    HANDSHAKE_FAILED = "handshake_failed"


class Handshake:
    """Authentication state machine for one client identity.

    The identity and its pinned server key survive reconnects; everything
    else is reset for each new connection through ``reset()``.
    """

    def __init__(
        self,
        keyring: KeyProvider,
        identity: Identity,
        round_trip: RoundTrip,
        *,
        challenge_timeout: float = 10.0,
        auth_timeout: float = 30.0,
        on_authenticated: Callable[[User | None], None] | None = None,
        on_trust_violation: Callable[[VexTrustError], Awaitable[None]] | None = None,
    ) -> None:
        self._keyring = keyring
        self._identity = identity
        self._round_trip = round_trip
        self._challenge_timeout = challenge_timeout
        self._auth_timeout = auth_timeout
        self._on_authenticated = on_authenticated
        self._on_trust_violation = on_trust_violation

        self._state = HandshakeState.UNAUTHENTICATED
        self._server_verified = False
        self._client_accepted = False
        self._user: User | None = None
        self._completion: asyncio.Future[User | None] | None = None

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is HandshakeState.AUTHENTICATED

    def reset(self) -> None:
        """Forget per-connection progress; pending waiters fail."""
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(VexHandshakeError("Connection was reset"))
            # Retrieve it so an unobserved future does not log a warning.
            self._completion.exception()
        self._completion = None
        self._state = HandshakeState.UNAUTHENTICATED
        self._server_verified = False
        self._client_accepted = False
        self._user = None

    def connection_lost(self, reason: str) -> None:
        """Fail pending waiters without waiting for the auth timeout."""
        if self._state is HandshakeState.AUTHENTICATED:
            self._state = HandshakeState.UNAUTHENTICATED
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(ConnectionLost(reason))
            self._completion.exception()

    async def authenticate(self) -> str:
        """Run the client side of the handshake and wait for completion.

        Returns:
            The pinned server public key (hex).

        Raises:
            VexTrustError: If the server identity does not verify.
            VexTimeout: If the handshake does not complete in time.
            VexHandshakeError: If the server rejects the handshake.
        """
        completion = self._get_completion()
        await self.challenge_server()
        await self.wait_authenticated(completion)
        server_key = self._identity.server_public_key
        if server_key is None:
            raise VexHandshakeError("Handshake completed without a pinned server key")
        return server_key

    async def challenge_server(self) -> None:
        """Send a nonce and verify the server's signature over it."""
        self._require_keys()
        nonce = new_request_id()
        if self._state is not HandshakeState.AUTHENTICATED:
            self._state = HandshakeState.CHALLENGE_ISSUED

        try:
            response = await self._round_trip(
                MessageType.CHALLENGE,
                timeout=self._challenge_timeout,
                challenge=nonce,
                pubkey=self._keyring.public_key().hex(),
            )
        except TimeoutError as err:
            error = VexTimeout("Server did not answer the challenge")
            self._fail(error)
            raise error from err

        if response.is_error:
            error = VexHandshakeError(
                f"Server rejected the challenge: {response.code} {response.message}"
            )
            self._fail(error)
            raise error

        await self._verify_server(nonce, response.raw)
        self._server_verified = True
        _LOGGER.debug("[%s] Server identity verified", self._identity.hostname)
        self._maybe_complete()

    async def respond_to_challenge(self, frame: dict[str, Any]) -> None:
        """Answer a server-issued challenge by signing its nonce."""
        nonce = frame.get("challenge")
        if not isinstance(nonce, str):
            _LOGGER.warning(
                "[%s] Ignoring challenge without a nonce", self._identity.hostname
            )
            return
        self._require_keys()

        try:
            response = await self._round_trip(
                MessageType.RESPONSE,
                timeout=self._challenge_timeout,
                response=self._keyring.sign(nonce.encode("utf-8")).hex(),
                pubkey=self._keyring.public_key().hex(),
            )
        except TimeoutError:
            self._fail(VexTimeout("Server did not acknowledge the challenge response"))
            return
        except VexClientError as err:
            _LOGGER.debug(
                "[%s] Challenge response abandoned: %s", self._identity.hostname, err
            )
            return

        if response.is_error:
            self._fail(
                VexHandshakeError(
                    f"Server rejected our identity: {response.code} {response.message}"
                )
            )
            return

        data = response.data
        self._user = User.from_wire(data) if isinstance(data, dict) else None
        self._client_accepted = True
        _LOGGER.debug("[%s] Client identity accepted", self._identity.hostname)
        self._maybe_complete()

    async def wait_authenticated(
        self, completion: asyncio.Future[User | None] | None = None
    ) -> User | None:
        """Block until the connection is authenticated.

        Raises:
            VexTimeout: If the bound is exceeded; the state becomes
                HANDSHAKE_FAILED.
        """
        completion = completion or self._get_completion()
        try:
            return await asyncio.wait_for(
                asyncio.shield(completion), timeout=self._auth_timeout
            )
        except TimeoutError as err:
            error = VexTimeout(
                f"Authentication did not complete within {self._auth_timeout}s"
            )
            self._fail(error)
            raise error from err

    def _get_completion(self) -> asyncio.Future[User | None]:
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_future()
            if self._state is HandshakeState.AUTHENTICATED:
                self._completion.set_result(self._user)
        return self._completion

    async def _verify_server(self, nonce: str, frame: dict[str, Any]) -> None:
        presented = frame.get("pubkey")
        signature_hex = frame.get("response")
        pinned = self._identity.server_public_key

        if pinned is not None and presented not in (None, pinned):
            await self._trust_violation(
                VexTrustError("Server presented a key that differs from the pinned key")
            )

        server_key = pinned or presented
        if not isinstance(server_key, str) or not isinstance(signature_hex, str):
            await self._trust_violation(
                VexTrustError("Challenge reply is missing the signature or key")
            )

        try:
            verified = self._keyring.verify(
                nonce.encode("utf-8"),
                bytes.fromhex(signature_hex),
                bytes.fromhex(server_key),
            )
        except ValueError:
            verified = False
        if not verified:
            await self._trust_violation(
                VexTrustError("Server signature did not verify")
            )

        if pinned is None:
            self._identity.pin_server_key(server_key)
            _LOGGER.info(
                "[%s] Pinned server key %s", self._identity.hostname, server_key
            )

    async def _trust_violation(self, error: VexTrustError) -> NoReturn:
        _LOGGER.error("[%s] Trust violation: %s", self._identity.hostname, error)
        self._fail(error)
        if self._on_trust_violation is not None:
            await self._on_trust_violation(error)
        raise error

    def _require_keys(self) -> None:
        if not self._keyring.is_ready:
            raise VexHandshakeError("Key material is not ready")

    def _maybe_complete(self) -> None:
        if not (self._server_verified and self._client_accepted):
            return
        if self._state is HandshakeState.AUTHENTICATED:
            return
        self._state = HandshakeState.AUTHENTICATED
        _LOGGER.info("[%s] Authenticated", self._identity.hostname)
        completion = self._get_completion()
        if not completion.done():
            completion.set_result(self._user)
        if self._on_authenticated is not None:
            self._on_authenticated(self._user)

    def _fail(self, error: VexClientError) -> None:
        self._state = HandshakeState.HANDSHAKE_FAILED
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(error)
            self._completion.exception()
