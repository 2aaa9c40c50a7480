"""Connection manager for a Vex chat session.

This module owns everything that lives on the socket:
- Transport lifecycle and reconnect with exponential backoff
- Correlated request/response round trips
- Routing of server pushes to client events
- Heartbeat supervision
- Restoration after an unplanned disconnect (re-authentication, rejoin)

Each transport instance is wrapped in a ``Connection`` tagged with a
generation number. Callbacks that belong to a superseded connection are
ignored, so a late frame from a dead socket can never touch the new one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .config import ClientConfig
from .correlation import CorrelationRegistry
from .errors import (
    ConnectionLost,
    MalformedFrameError,
    VexClientError,
    VexConnectionError,
    VexTimeout,
    VexTrustError,
)
from .events import ClientEvent, EventBus
from .handshake import Handshake, HandshakeState
from .heartbeat import HeartbeatMonitor
from .keyring import KeyProvider
from .models import Channel, ChatMessage, Identity, PowerLevels, User
from .protocol import (
    Method,
    MessageType,
    Response,
    build_command,
    decode_frame,
    new_request_id,
    parse_response,
)
from .transport import VexWsClient, VexWsMessage, VexWsMessageType

_LOGGER = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000

# Push types that may also echo the transmissionID of the command that caused
# them; they are routed as pushes even when a pending request consumed them.
ECHOED_PUSH_TYPES = frozenset({MessageType.CHAT})


class Transport(Protocol):
    """Duplex text-frame channel used by the connection manager."""

    async def connect(
        self, host: str, *, secure: bool, path: str, timeout: float
    ) -> None: ...

    async def close(self) -> None: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    def __aiter__(self) -> AsyncIterator[VexWsMessage]: ...


class ConnectionState(Enum):
    """Lifecycle state of a connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(slots=True)
class Connection:
    """One logical session over one transport instance.

    Attributes:
        generation: Monotonic counter distinguishing this connection from
            the ones it superseded.
        transport: Underlying socket.
        state: Lifecycle state.
        joined: Channel IDs joined on this connection, in join order.
        pending_rejoin: Channel IDs of the session, in original join
            order, that have not been rejoined on this connection yet.
    """

    generation: int
    transport: Transport
    state: ConnectionState = ConnectionState.CONNECTING
    joined: list[str] = field(default_factory=list)
    pending_rejoin: list[str] = field(default_factory=list)

    @property
    def is_live(self) -> bool:
        return self.state not in (
            ConnectionState.CONNECTING,
            ConnectionState.RECONNECTING,
            ConnectionState.CLOSED,
        )

    def mark_joined(self, channel_id: str) -> None:
        if channel_id not in self.joined:
            self.joined.append(channel_id)
        if channel_id in self.pending_rejoin:
            self.pending_rejoin.remove(channel_id)

    def mark_left(self, channel_id: str) -> None:
        if channel_id in self.joined:
            self.joined.remove(channel_id)
        if channel_id in self.pending_rejoin:
            self.pending_rejoin.remove(channel_id)


class ConnectionManager:
    """Own the socket, its callbacks and all connection-scoped state.

    Usage:
        manager = ConnectionManager(config, keyring, identity, events)
        await manager.connect()
        await manager.authenticate()
        channel = await manager.join_channel(channel_id)
        await manager.close()
    """

    def __init__(
        self,
        config: ClientConfig,
        keyring: KeyProvider,
        identity: Identity,
        events: EventBus,
        *,
        transport_factory: Callable[[], Transport] = VexWsClient,
    ) -> None:
        self.config = config
        self.identity = identity
        self._events = events
        self._transport_factory = transport_factory
        self._label = config.host

        self._registry = CorrelationRegistry(on_unsolicited=self._route_push)
        self._handshake = Handshake(
            keyring,
            identity,
            self.round_trip,
            challenge_timeout=config.challenge_timeout,
            auth_timeout=config.auth_timeout,
            on_authenticated=self._handle_authenticated,
            on_trust_violation=self._handle_trust_violation,
        )
        self._heartbeat: HeartbeatMonitor | None = None

        # Connection state
        self._connection: Connection | None = None
        self._generation = 0
        self._connect_count = 0
        self._retry_attempts = 0
        self._shutdown_requested = False
        self._authenticated_once = False
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._restore_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()
        # Channels the caller has joined this session, in original join order
        self._join_order: list[str] = []

        # Read replicas, refreshed only from server frames
        self._channel_list: list[Channel] | None = None
        self._online_lists: dict[str, list[User]] = {}
        self._user_info: User | None = None
        self._power_levels = PowerLevels()

    # -------------------------------------------------------------------------
    # Public API: State
    # -------------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        if self._connection is None:
            return ConnectionState.CLOSED
        return self._connection.state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def reconnect_count(self) -> int:
        return max(self._connect_count - 1, 0)

    @property
    def handshake_state(self) -> HandshakeState:
        return self._handshake.state

    @property
    def is_authenticated(self) -> bool:
        return self._handshake.is_authenticated

    @property
    def registry(self) -> CorrelationRegistry:
        return self._registry

    @property
    def joined_channels(self) -> tuple[str, ...]:
        """Snapshot of joined channel IDs in join order."""
        if self._connection is None:
            return ()
        joined = self._connection.joined
        return tuple(c for c in self._join_order if c in joined)

    @property
    def user_info(self) -> User | None:
        return self._user_info

    @property
    def power_levels(self) -> PowerLevels:
        return self._power_levels

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """Open a fresh transport instance.

        Returns:
            True if the transport opened, False if a reconnect was scheduled
            instead.
        """
        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connection aborted: shutdown requested", self._label)
            return False

        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._retire(self._connection)

        self._generation += 1
        connection = Connection(
            generation=self._generation,
            transport=self._transport_factory(),
            pending_rejoin=list(self._join_order),
        )
        self._connection = connection

        if self._listen_task is not None and not self._listen_task.done():
            self._listen_task.cancel()

        _LOGGER.info(
            "[%s] Connecting to %s (attempt #%d)",
            self._label,
            self.config.ws_url(),
            self._retry_attempts + 1,
        )
        try:
            await connection.transport.connect(
                self.config.host,
                secure=self.config.secure,
                path=self.config.socket_path,
                timeout=self.config.connect_timeout,
            )
        except VexClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self._label, err)
            self._events.emit(ClientEvent.ERROR, err)
            connection.state = ConnectionState.RECONNECTING
            self._schedule_reconnect()
            return False

        if connection is not self._connection or self._shutdown_requested:
            await self._close_transport(connection.transport)
            return False

        self._retry_attempts = 0
        self._listen_task = asyncio.create_task(self._listen(connection))
        self._handle_open(connection)
        return True

    async def close(self) -> None:
        """Log out: disarm reconnects and close the socket."""
        _LOGGER.info("[%s] Closing session", self._label)
        self._shutdown_requested = True

        for task in (self._reconnect_task, self._restore_task):
            await self._cancel_task(task)
        self._reconnect_task = None
        self._restore_task = None
        self._stop_heartbeat()

        connection = self._connection
        if connection is not None and connection.is_live:
            connection.state = ConnectionState.CLOSED
            self._registry.abandon_all("Client logged out")
            self._handshake.connection_lost("Client logged out")
            await self._close_transport(connection.transport)
            self._events.emit(ClientEvent.DISCONNECT, NORMAL_CLOSURE)
        elif connection is not None:
            connection.state = ConnectionState.CLOSED

        await self._cancel_task(self._listen_task)
        self._listen_task = None

    async def authenticate(self) -> str:
        """Run the handshake on the current connection.

        Returns:
            The pinned server public key (hex).
        """
        connection = self._require_connection()
        connection.state = ConnectionState.AUTHENTICATING
        try:
            return await self._handshake.authenticate()
        except VexTrustError:
            raise
        except VexClientError as err:
            _LOGGER.error("[%s] Authentication failed: %s", self._label, err)
            if connection.state is ConnectionState.AUTHENTICATING:
                connection.state = ConnectionState.OPEN
            self._events.emit(ClientEvent.ERROR, err)
            raise

    # -------------------------------------------------------------------------
    # Public API: Requests
    # -------------------------------------------------------------------------

    async def send(self, frame: dict[str, Any]) -> None:
        """Send a frame on the live connection."""
        connection = self._connection
        if connection is None or not connection.is_live:
            raise VexConnectionError("Not connected")
        await connection.transport.send_json(frame)

    async def round_trip(
        self,
        msg_type: str,
        method: Method | None = None,
        *,
        timeout: float | None = None,
        **fields: Any,
    ) -> Response:
        """Send a command and wait for its correlated reply.

        Error replies are returned, not raised.

        Raises:
            ConnectionLost: If the connection drops before the reply arrives.
            TimeoutError: If ``timeout`` (or the configured request timeout)
                elapses.
        """
        request_id = new_request_id()
        frame = build_command(msg_type, method, request_id=request_id, **fields)
        future: asyncio.Future[Response] = asyncio.get_running_loop().create_future()

        def handle(outcome: dict[str, Any] | ConnectionLost) -> None:
            if future.done():
                return
            if isinstance(outcome, ConnectionLost):
                future.set_exception(outcome)
            else:
                future.set_result(parse_response(outcome))

        self._registry.register(request_id, handle)
        try:
            await self.send(frame)
            limit = timeout if timeout is not None else self.config.request_timeout
            if limit is None:
                return await future
            return await asyncio.wait_for(future, timeout=limit)
        finally:
            self._registry.discard(request_id)

    async def request(
        self,
        msg_type: str,
        method: Method | None = None,
        *,
        timeout: float | None = None,
        **fields: Any,
    ) -> Any:
        """Send a command and return the reply payload.

        Raises:
            VexRequestError: If the server answers with an error.
            ConnectionLost: If the connection drops before the reply arrives.
            VexTimeout: If the reply does not arrive in time.
        """
        try:
            response = await self.round_trip(
                msg_type, method, timeout=timeout, **fields
            )
        except TimeoutError as err:
            raise VexTimeout(f"No reply to {msg_type} request") from err
        response.raise_for_status()
        return response.data

    # -------------------------------------------------------------------------
    # Public API: Joined channels and caches
    # -------------------------------------------------------------------------

    async def join_channel(self, channel_id: str) -> Channel:
        """Join a channel and record it for rejoin after reconnects."""
        connection = self._require_connection()
        data = await self.request(MessageType.CHANNEL, Method.JOIN, channelID=channel_id)
        connection.mark_joined(channel_id)
        if channel_id not in self._join_order:
            self._join_order.append(channel_id)
        _LOGGER.debug("[%s] Joined channel %s", self._label, channel_id)
        if isinstance(data, dict):
            return Channel.from_wire(data)
        return Channel(channel_id=channel_id, name="")

    async def leave_channel(self, channel_id: str) -> Channel:
        """Leave a channel; it will not be rejoined after reconnects."""
        connection = self._require_connection()
        data = await self.request(
            MessageType.CHANNEL, Method.LEAVE, channelID=channel_id
        )
        self._forget_channel(connection, channel_id)
        _LOGGER.debug("[%s] Left channel %s", self._label, channel_id)
        if isinstance(data, dict):
            return Channel.from_wire(data)
        return Channel(channel_id=channel_id, name="")

    def cached_channel_list(self) -> list[Channel] | None:
        if self._channel_list is None:
            return None
        return list(self._channel_list)

    def store_channel_list(self, channels: list[Channel]) -> None:
        self._channel_list = list(channels)

    def invalidate_channel_list(self) -> None:
        self._channel_list = None

    def cached_online_list(self, channel_id: str) -> list[User] | None:
        users = self._online_lists.get(channel_id)
        return list(users) if users is not None else None

    def store_online_list(self, channel_id: str, users: list[User]) -> None:
        self._online_lists[channel_id] = list(users)

    def store_user_info(self, user: User) -> None:
        self._user_info = user

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _require_connection(self) -> Connection:
        if self._connection is None or not self._connection.is_live:
            raise VexConnectionError("Not connected")
        return self._connection

    def _forget_channel(self, connection: Connection, channel_id: str) -> None:
        connection.mark_left(channel_id)
        if channel_id in self._join_order:
            self._join_order.remove(channel_id)

    async def _retire(self, connection: Connection | None) -> None:
        """Close a connection that is being replaced while still live."""
        if connection is None or not connection.is_live:
            return
        self._stop_heartbeat()
        connection.state = ConnectionState.CLOSED
        await self._cancel_task(self._listen_task)
        self._listen_task = None
        await self._close_transport(connection.transport)

    def _handle_open(self, connection: Connection) -> None:
        """Reset connection-scoped state and signal readiness or recover."""
        connection.state = ConnectionState.OPEN
        self._registry.abandon_all("Superseded by a new connection")
        self._handshake.reset()
        self._channel_list = None
        self._online_lists.clear()
        self._start_heartbeat(connection)

        first_connection = self._connect_count == 0
        self._connect_count += 1
        _LOGGER.info(
            "[%s] Connected (generation %d)", self._label, connection.generation
        )

        if first_connection:
            self._events.emit(ClientEvent.READY)
        else:
            self._restore_task = asyncio.create_task(self._restore(connection))

    async def _restore(self, connection: Connection) -> None:
        """Re-authenticate and rejoin channels after a reconnect."""
        attempt = self.reconnect_count
        if self._authenticated_once:
            try:
                await self.authenticate()
            except VexClientError as err:
                _LOGGER.warning(
                    "[%s] Re-authentication after reconnect failed: %s",
                    self._label,
                    err,
                )
                return

        for channel_id in list(connection.pending_rejoin):
            if connection is not self._connection:
                return
            if channel_id not in connection.pending_rejoin:
                continue
            try:
                await self.join_channel(channel_id)
            except ConnectionLost:
                return
            except VexClientError as err:
                _LOGGER.warning(
                    "[%s] Rejoin of %s failed: %s", self._label, channel_id, err
                )
                self._forget_channel(connection, channel_id)
                self._events.emit(ClientEvent.ERROR, err)

        if connection is self._connection:
            _LOGGER.info("[%s] Recovered after reconnect #%d", self._label, attempt)
            self._events.emit(ClientEvent.RECONNECT, attempt)

    def _handle_disconnect(self, connection: Connection, close_code: int | None) -> None:
        """Fail pending requests and schedule a reconnect.

        Runs at most once per connection.
        """
        if connection is not self._connection:
            return
        if connection.state in (ConnectionState.RECONNECTING, ConnectionState.CLOSED):
            return

        self._stop_heartbeat()
        connection.state = (
            ConnectionState.CLOSED
            if self._shutdown_requested
            else ConnectionState.RECONNECTING
        )
        _LOGGER.info("[%s] Disconnected (code %s)", self._label, close_code)
        self._events.emit(ClientEvent.DISCONNECT, close_code)
        self._registry.abandon_all("Connection lost")
        self._handshake.connection_lost("Connection lost")
        self._spawn(self._close_transport(connection.transport))

        if not self._shutdown_requested:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule reconnection attempt with exponential backoff."""
        if self._shutdown_requested or self._reconnect_task:
            return

        delay = min(
            self.config.reconnect_base_delay * (2**self._retry_attempts),
            self.config.reconnect_max_delay,
        )
        self._retry_attempts += 1

        _LOGGER.info(
            "[%s] Reconnecting in %.1fs (attempt %d)",
            self._label,
            delay,
            self._retry_attempts,
        )

        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(delay))

    async def _reconnect_after_delay(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self._label)
            self._reconnect_task = None
            raise
        self._reconnect_task = None
        await self.connect()

    async def _handle_trust_violation(self, error: VexTrustError) -> None:
        """Close for good: an unverifiable server is never retried."""
        self._shutdown_requested = True
        self._events.emit(ClientEvent.ERROR, error)
        if self._connection is not None:
            self._handle_disconnect(self._connection, None)

    def _handle_authenticated(self, user: User | None) -> None:
        self._authenticated_once = True
        if self._connection is not None and self._connection.is_live:
            self._connection.state = ConnectionState.READY
        if user is not None:
            self._user_info = user
            self.identity.user_id = user.user_id or self.identity.user_id
        self._events.emit(ClientEvent.AUTHED, user)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await asyncio.wait_for(transport.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self._label)
        except VexClientError as err:
            _LOGGER.debug("[%s] WebSocket close failed: %s", self._label, err)

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, connection: Connection) -> None:
        """Feed transport notifications into the state machine."""
        close_code: int | None = None
        message_count = 0

        try:
            async for msg in connection.transport:
                if connection is not self._connection:
                    _LOGGER.debug(
                        "[%s] Dropping frame from superseded generation %d",
                        self._label,
                        connection.generation,
                    )
                    return
                message_count += 1

                if msg.type is VexWsMessageType.TEXT:
                    self._handle_text(msg.data)

                elif msg.type is VexWsMessageType.CLOSED:
                    close_code = msg.data if isinstance(msg.data, int) else None
                    _LOGGER.info("[%s] WebSocket closed by server", self._label)
                    break

                elif msg.type is VexWsMessageType.ERROR:
                    self._handle_transport_error(msg.data)
                    break

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self._label, message_count
            )
            raise
        except VexClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self._label, err)
            self._events.emit(ClientEvent.ERROR, err)
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self._label, err)
            self._events.emit(ClientEvent.ERROR, err)

        self._handle_disconnect(connection, close_code)

    def _handle_text(self, data: Any) -> None:
        try:
            frame = decode_frame(data)
            self._deliver(frame)
        except MalformedFrameError as err:
            _LOGGER.warning("[%s] Invalid message: %s", self._label, err)
            self._events.emit(ClientEvent.ERROR, err)

    def _deliver(self, frame: dict[str, Any]) -> None:
        try:
            matched = self._registry.dispatch(frame)
            if matched and frame["type"] in ECHOED_PUSH_TYPES:
                self._route_push(frame)
        except (TypeError, ValueError, KeyError) as err:
            raise MalformedFrameError(
                f"Invalid {frame['type']} frame: {err}"
            ) from err

    def _handle_transport_error(self, error: Any) -> None:
        _LOGGER.error("[%s] WebSocket error: %s", self._label, error)
        self._stop_heartbeat()
        if not isinstance(error, Exception):
            error = VexConnectionError("WebSocket error")
        self._events.emit(ClientEvent.ERROR, error)

    # -------------------------------------------------------------------------
    # Internal: Push Routing
    # -------------------------------------------------------------------------

    def _route_push(self, frame: dict[str, Any]) -> None:
        """Handle a frame no pending request was waiting for."""
        msg_type = frame.get("type")

        if msg_type == MessageType.CHAT:
            self._events.emit(ClientEvent.MESSAGE, ChatMessage.from_wire(frame))

        elif msg_type == MessageType.CHALLENGE:
            self._spawn(self._handshake.respond_to_challenge(frame))

        elif msg_type == MessageType.CLIENT_INFO:
            client = frame.get("client")
            if isinstance(client, dict):
                self._user_info = User.from_wire(client)
                self._events.emit(ClientEvent.USER_INFO, self._user_info)

        elif msg_type == MessageType.PEER_CHANGE:
            client = frame.get("client")
            if isinstance(client, dict):
                self._events.emit(ClientEvent.PEER_CHANGE, User.from_wire(client))

        elif msg_type == MessageType.CHANNEL_LIST:
            data = frame.get("data")
            if isinstance(data, list):
                self._channel_list = [
                    Channel.from_wire(item) for item in data if isinstance(item, dict)
                ]
                self._events.emit(ClientEvent.CHANNEL_LIST, list(self._channel_list))

        elif msg_type == MessageType.ONLINE_LIST:
            data = frame.get("data")
            channel_id = frame.get("channelID")
            if isinstance(data, list) and isinstance(channel_id, str):
                users = [User.from_wire(item) for item in data if isinstance(item, dict)]
                self._online_lists[channel_id] = users
                self._events.emit(ClientEvent.ONLINE_LIST, list(users), channel_id)

        elif msg_type == MessageType.POWER_LEVELS:
            levels = frame.get("powerLevels")
            if isinstance(levels, dict):
                self._power_levels = PowerLevels.from_wire(levels)

        elif msg_type == MessageType.PONG:
            _LOGGER.debug("[%s] Late pong %s", self._label, frame.get("transmissionID"))

        else:
            _LOGGER.debug("[%s] Unhandled message type: %s", self._label, msg_type)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -------------------------------------------------------------------------
    # Internal: Heartbeat
    # -------------------------------------------------------------------------

    def _start_heartbeat(self, connection: Connection) -> None:
        self._stop_heartbeat()

        async def on_dead() -> None:
            self._handle_dead_heartbeat(connection)

        self._heartbeat = HeartbeatMonitor(
            self._registry,
            self.send,
            on_dead,
            interval=self.config.ping_interval,
            max_missed=self.config.max_missed_pongs,
            label=self._label,
        )
        self._heartbeat.start()

    def _stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None

    def _handle_dead_heartbeat(self, connection: Connection) -> None:
        """Treat an unresponsive server like a dropped socket."""
        if connection is not self._connection:
            return
        self._events.emit(ClientEvent.DEAD_HEARTBEAT)
        self._handle_disconnect(connection, None)
