"""Server-identified records exchanged with a Vex chat server.

Every record here is a read replica. The client never asserts authority over
them; instances are only built from server replies and push frames.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import VexTrustError


@dataclass(frozen=True)
class User:
    """A user account on the server.

    Attributes:
        user_id: Server-assigned user UUID.
        username: Display name.
        pubkey: Hex-encoded public key of the account.
        power_level: Server-side privilege level.
        avatar: Avatar file ID, if set.
        banned: Whether the account is banned.
        index: Server ordering index.
    """

    user_id: str
    username: str = ""
    pubkey: str = ""
    power_level: int = 0
    avatar: str | None = None
    banned: bool = False
    index: int | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> User:
        return cls(
            user_id=data.get("userID", ""),
            username=data.get("username", ""),
            pubkey=data.get("pubkey", ""),
            power_level=int(data.get("powerLevel") or 0),
            avatar=data.get("avatar"),
            banned=bool(data.get("banned", False)),
            index=data.get("index"),
        )


@dataclass(frozen=True)
class Channel:
    """A chat channel.

    Attributes:
        channel_id: Server-assigned channel UUID.
        name: Channel name.
        public: Whether any user may join.
        admin_id: User ID of the channel administrator.
        index: Server ordering index.
    """

    channel_id: str
    name: str
    public: bool = True
    admin_id: str | None = None
    index: int | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Channel:
        return cls(
            channel_id=data.get("channelID", ""),
            name=data.get("name", ""),
            public=bool(data.get("public", True)),
            admin_id=data.get("admin"),
            index=data.get("index"),
        )


@dataclass(frozen=True)
class ChatMessage:
    """A message broadcast to a channel."""

    message_id: str
    channel_id: str
    author_id: str
    body: str
    created_at: str | None = None
    username: str = ""
    author: User | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> ChatMessage:
        author = data.get("author")
        return cls(
            message_id=data.get("messageID", ""),
            channel_id=data.get("channelID", ""),
            author_id=data.get("userID", ""),
            body=data.get("message", data.get("body", "")),
            created_at=data.get("createdAt"),
            username=data.get("username", ""),
            author=User.from_wire(author) if isinstance(author, dict) else None,
        )


@dataclass(frozen=True)
class PermissionGrant:
    """Access grant for a user on a private channel."""

    user_id: str
    channel_id: str
    power_level: int = 0

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> PermissionGrant:
        return cls(
            user_id=data.get("userID", ""),
            channel_id=data.get("channelID", ""),
            power_level=int(data.get("powerLevel") or 0),
        )


@dataclass(frozen=True)
class FileInfo:
    """Metadata of a file uploaded to a channel."""

    file_id: str
    file_name: str
    owner_id: str
    url: str = ""
    index: int | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any], *, base_url: str = "") -> FileInfo:
        file_id = data.get("fileID", "")
        return cls(
            file_id=file_id,
            file_name=data.get("fileName", ""),
            owner_id=data.get("ownerID", ""),
            url=f"{base_url}/file/{file_id}" if base_url else data.get("url", ""),
            index=data.get("index"),
        )


@dataclass(frozen=True)
class PowerLevels:
    """Power level required for each action, as configured on the server."""

    kick: int = 25
    ban: int = 50
    op: int = 100
    grant: int = 50
    revoke: int = 50
    talk: int = 0
    create: int = 50
    delete: int = 50
    files: int = 25

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> PowerLevels:
        defaults = cls()
        return cls(
            **{
                name: int(data.get(name, getattr(defaults, name)))
                for name in defaults.__dataclass_fields__
            }
        )


@dataclass
class Identity:
    """The local account and the server key it trusts.

    Attributes:
        public_key: Hex-encoded public key of this client.
        hostname: Server the account belongs to.
        server_public_key: Hex-encoded server key, pinned on the first
            successful handshake.
        user_id: Server-assigned user ID, set by registration.
    """

    public_key: str
    hostname: str
    server_public_key: str | None = None
    user_id: str | None = None

    @property
    def is_pinned(self) -> bool:
        return self.server_public_key is not None

    def pin_server_key(self, server_public_key: str) -> None:
        """Trust a server key on first use.

        Raises:
            VexTrustError: If a different key is already pinned.
        """
        if self.server_public_key is None:
            self.server_public_key = server_public_key
            return
        if self.server_public_key != server_public_key:
            raise VexTrustError(
                f"Server key {server_public_key[:16]}... does not match pinned key"
            )


@dataclass(frozen=True)
class ClientInfo:
    """Snapshot of the client's connection and account state."""

    authed: bool
    user: User | None
    host: str
    secure: bool
    power_levels: PowerLevels = field(default_factory=PowerLevels)
