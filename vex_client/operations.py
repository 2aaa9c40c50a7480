"""Typed request builders grouped by resource.

Every operation is one correlated round trip through the connection
manager: the reply payload is decoded into a model on success, and an error
reply raises ``VexRequestError`` for the caller to handle.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .connection import ConnectionManager
from .errors import VexClientError, VexTimeout
from .http import VexHttpClient
from .models import Channel, ChatMessage, FileInfo, PermissionGrant, User
from .protocol import NIL_UUID, Method, MessageType

_LOGGER = logging.getLogger(__name__)


def _records(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


class ChannelOperations:
    """Channel commands: create, delete, join, leave, retrieve, active."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def create(self, name: str, *, public: bool = True) -> Channel:
        data = await self._manager.request(
            MessageType.CHANNEL,
            Method.CREATE,
            name=name,
            privateChannel=not public,
        )
        self._manager.invalidate_channel_list()
        return Channel.from_wire(data or {})

    async def delete(self, channel_id: str) -> Channel:
        data = await self._manager.request(
            MessageType.CHANNEL, Method.DELETE, channelID=channel_id
        )
        self._manager.invalidate_channel_list()
        return Channel.from_wire(data or {"channelID": channel_id})

    async def join(self, channel_id: str) -> Channel:
        return await self._manager.join_channel(channel_id)

    async def leave(self, channel_id: str) -> Channel:
        return await self._manager.leave_channel(channel_id)

    async def retrieve(self) -> list[Channel]:
        """List the channels visible to this account.

        Served from the cache while it holds a server-confirmed list.
        """
        cached = self._manager.cached_channel_list()
        if cached is not None:
            return cached
        data = await self._manager.request(MessageType.CHANNEL, Method.RETRIEVE)
        channels = [Channel.from_wire(item) for item in _records(data)]
        self._manager.store_channel_list(channels)
        return channels

    async def active(self, channel_id: str) -> list[User]:
        """List the users online in a channel."""
        cached = self._manager.cached_online_list(channel_id)
        if cached is not None:
            return cached
        data = await self._manager.request(
            MessageType.CHANNEL, Method.ACTIVE, channelID=channel_id
        )
        users = [User.from_wire(item) for item in _records(data)]
        self._manager.store_online_list(channel_id, users)
        return users


class PermissionOperations:
    """Access grants on private channels."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def grant(self, user_id: str, channel_id: str) -> PermissionGrant:
        data = await self._manager.request(
            MessageType.CHANNEL_PERM,
            Method.CREATE,
            permission={"channelID": channel_id, "userID": user_id},
        )
        return PermissionGrant.from_wire(
            data or {"channelID": channel_id, "userID": user_id}
        )

    async def revoke(self, user_id: str, channel_id: str) -> PermissionGrant:
        data = await self._manager.request(
            MessageType.CHANNEL_PERM,
            Method.DELETE,
            permission={"channelID": channel_id, "userID": user_id},
        )
        return PermissionGrant.from_wire(
            data or {"channelID": channel_id, "userID": user_id}
        )

    async def retrieve(self, channel_id: str) -> list[PermissionGrant]:
        data = await self._manager.request(
            MessageType.CHANNEL_PERM,
            Method.RETRIEVE,
            permission={"channelID": channel_id},
        )
        return [PermissionGrant.from_wire(item) for item in _records(data)]


class UserOperations:
    """User account commands."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def retrieve(self, user_id: str) -> User:
        data = await self._manager.request(
            MessageType.USER, Method.RETRIEVE, userID=user_id
        )
        return User.from_wire(data or {"userID": user_id})

    async def update(
        self,
        *,
        user_id: str | None = None,
        username: str | None = None,
        avatar: str | None = None,
        power_level: int = 0,
    ) -> User:
        """Update an account, defaulting to our own.

        Missing fields fall back to the current account: a nil avatar and
        the current username.
        """
        current = self._manager.user_info
        target = user_id or (current.user_id if current else None)
        if target is None:
            target = self._manager.identity.user_id
        if target is None:
            raise VexClientError("No user ID to update; register or authenticate first")

        data = await self._manager.request(
            MessageType.USER,
            Method.UPDATE,
            avatar=avatar or NIL_UUID,
            powerLevel=power_level,
            userID=target,
            username=username or (current.username if current else ""),
        )
        user = User.from_wire(data or {"userID": target})
        if current is not None and user.user_id == current.user_id:
            self._manager.store_user_info(user)
        return user

    async def kick(self, user_id: str) -> User:
        data = await self._manager.request(
            MessageType.USER, Method.KICK, userID=user_id
        )
        return User.from_wire(data or {"userID": user_id})

    async def ban(self, user_id: str) -> User:
        data = await self._manager.request(MessageType.USER, Method.BAN, userID=user_id)
        return User.from_wire(data or {"userID": user_id})

    async def nick(self, username: str) -> User:
        """Change our own display name."""
        data = await self._manager.request(
            MessageType.USER, Method.NICK, username=username
        )
        user = User.from_wire(data or {})
        if user.user_id:
            self._manager.store_user_info(user)
        return user


class FileOperations:
    """Channel file commands plus HTTP download."""

    def __init__(
        self,
        manager: ConnectionManager,
        http: Callable[[], VexHttpClient],
    ) -> None:
        self._manager = manager
        self._http = http

    @property
    def _base_url(self) -> str:
        return self._manager.config.http_url()

    async def upload(
        self, content: bytes | str, file_name: str, channel_id: str
    ) -> FileInfo:
        """Upload a file to a channel.

        Args:
            content: Raw bytes, or an already hex-encoded string.
            file_name: Name shown to other users.
            channel_id: Channel receiving the file.
        """
        encoded = content if isinstance(content, str) else content.hex()
        data = await self._manager.request(
            MessageType.FILE,
            Method.CREATE,
            channelID=channel_id,
            file=encoded,
            fileName=file_name,
        )
        return FileInfo.from_wire(data or {}, base_url=self._base_url)

    async def retrieve(self, channel_id: str) -> list[FileInfo]:
        data = await self._manager.request(
            MessageType.FILE, Method.RETRIEVE, channelID=channel_id
        )
        return [
            FileInfo.from_wire(item, base_url=self._base_url) for item in _records(data)
        ]

    async def delete(self, file_id: str) -> FileInfo:
        data = await self._manager.request(
            MessageType.FILE, Method.DELETE, fileID=file_id
        )
        return FileInfo.from_wire(data or {"fileID": file_id}, base_url=self._base_url)

    async def download(self, file_id: str) -> tuple[bytes, str]:
        """Fetch file content over HTTP.

        Returns:
            File bytes and content type.
        """
        _LOGGER.debug("[%s] Downloading file %s", self._manager.config.host, file_id)
        return await self._http().download_file(file_id)


class MessageOperations:
    """Chat messages and channel history."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def send(self, channel_id: str, body: str) -> ChatMessage | None:
        """Post a message to a channel.

        The server broadcast of the message surfaces as a MESSAGE event.
        """
        try:
            response = await self._manager.round_trip(
                MessageType.CHAT, Method.CREATE, channelID=channel_id, message=body
            )
        except TimeoutError as err:
            raise VexTimeout("No reply to chat request") from err
        response.raise_for_status()
        if response.msg_type == MessageType.CHAT:
            return ChatMessage.from_wire(response.raw)
        if isinstance(response.data, dict):
            return ChatMessage.from_wire(response.data)
        return None

    async def retrieve(
        self, channel_id: str, top_message: str = NIL_UUID
    ) -> list[ChatMessage]:
        """Fetch channel history older than ``top_message`` (all by default)."""
        data = await self._manager.request(
            MessageType.HISTORY_REQ,
            Method.RETRIEVE,
            channelID=channel_id,
            topMessage=top_message,
        )
        return [ChatMessage.from_wire(item) for item in _records(data)]
