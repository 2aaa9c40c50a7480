"""Public entry point for talking to a Vex chat server."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from .config import ClientConfig
from .connection import ConnectionManager, ConnectionState, Transport
from .errors import VexClientError
from .events import ClientEvent, EventBus
from .http import VexHttpClient
from .keyring import KeyProvider, KeyRing
from .models import ClientInfo, Identity, User
from .operations import (
    ChannelOperations,
    FileOperations,
    MessageOperations,
    PermissionOperations,
    UserOperations,
)
from .protocol import Method, MessageType
from .transport import VexWsClient

_LOGGER = logging.getLogger(__name__)


class VexClient:
    """Vex chat client.

    Usage:
        client = VexClient("chat.example.org:8000", KeyRing("./keys"))
        client.on(ClientEvent.MESSAGE, print)
        await client.connect()
        await client.auth()
        channel = await client.channels.create("general")
        await client.channels.join(channel.channel_id)
        await client.messages.send(channel.channel_id, "hello")
        await client.logout()

    The client owns no global state; several instances may run side by side
    on one event loop.
    """

    def __init__(
        self,
        config: ClientConfig | str,
        keyring: KeyProvider,
        server_public_key: str | None = None,
        *,
        transport_factory: Callable[[], Transport] = VexWsClient,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize client.

        Args:
            config: Settings, or just the server "hostname:port".
            keyring: Key material used to authenticate.
            server_public_key: Hex server key pinned from a previous session.
            transport_factory: Builds one socket per connection attempt.
            http_session: aiohttp session for file downloads. One is created
                (and closed on logout) when omitted.
        """
        if not isinstance(config, ClientConfig):
            config = ClientConfig(host=config)
        self.config = config
        if not self.config.secure:
            _LOGGER.warning(
                "[%s] Insecure connection: traffic is not encrypted", self.config.host
            )

        self._keyring = keyring
        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._http_client: VexHttpClient | None = None

        self.events = EventBus()
        self.identity = Identity(
            public_key="",
            hostname=self.config.host,
            server_public_key=server_public_key,
        )
        self._manager = ConnectionManager(
            self.config,
            keyring,
            self.identity,
            self.events,
            transport_factory=transport_factory,
        )

        self.channels = ChannelOperations(self._manager)
        self.permissions = PermissionOperations(self._manager)
        self.users = UserOperations(self._manager)
        self.files = FileOperations(self._manager, self._get_http_client)
        self.messages = MessageOperations(self._manager)

    async def __aenter__(self) -> VexClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.logout()

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def state(self) -> ConnectionState:
        return self._manager.connection_state

    @property
    def joined_channels(self) -> tuple[str, ...]:
        return self._manager.joined_channels

    def on(self, event: ClientEvent, callback: Callable[..., Any]) -> Callable[[], None]:
        """Subscribe to a client event; returns an unsubscribe callable."""
        return self.events.on(event, callback)

    async def connect(self) -> bool:
        """Load keys and open the socket.

        Returns:
            True if the socket opened now; False if the first attempt failed
            and a reconnect was scheduled.
        """
        if not self._keyring.is_ready and isinstance(self._keyring, KeyRing):
            self._keyring.init()
        self.identity.public_key = self._keyring.public_key().hex()
        return await self._manager.connect()

    async def register(self) -> User:
        """Create a new account on the server for this keypair."""
        data = await self._manager.request(MessageType.IDENTITY, Method.CREATE)
        user_id = (data or {}).get("userID")
        if not user_id:
            raise VexClientError("Server did not assign a user ID")

        data = await self._manager.request(
            MessageType.IDENTITY,
            Method.REGISTER,
            pubkey=self._keyring.public_key().hex(),
            signed=self._keyring.sign(user_id.encode("utf-8")).hex(),
            uuid=user_id,
        )
        user = User.from_wire(data) if isinstance(data, dict) else User(user_id=user_id)
        self.identity.user_id = user.user_id or user_id
        self._manager.store_user_info(user)
        _LOGGER.info("[%s] Registered user %s", self.config.host, self.identity.user_id)
        return user

    async def auth(self) -> str:
        """Perform the login handshake.

        Returns:
            The pinned server public key (hex).
        """
        return await self._manager.authenticate()

    async def logout(self) -> None:
        """Close the connection for good and release HTTP resources."""
        await self._manager.close()
        if self._owns_http_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._http_client = None

    def info(self) -> ClientInfo:
        return ClientInfo(
            authed=self._manager.is_authenticated,
            user=self._manager.user_info,
            host=self.config.ws_url(),
            secure=self.config.secure,
            power_levels=self._manager.power_levels,
        )

    def _get_http_client(self) -> VexHttpClient:
        if self._http_client is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._http_client = VexHttpClient(
                self._http_session, self.config.host, secure=self.config.secure
            )
        return self._http_client
