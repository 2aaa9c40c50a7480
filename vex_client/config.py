"""Client configuration.

Settings can be built in code or loaded from a YAML mapping:

    host: chat.example.org:8000
    secure: true
    ping_interval: 10
    max_missed_pongs: 2
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for a Vex client.

    Attributes:
        host: Server "hostname:port".
        secure: Use wss:// and https:// (disable for development only).
        socket_path: WebSocket endpoint path.
        connect_timeout: Transport open timeout (seconds).
        ping_interval: Heartbeat interval (seconds).
        max_missed_pongs: Consecutive missed pongs before the connection
            is declared dead.
        reconnect_base_delay: First reconnect delay (seconds).
        reconnect_max_delay: Cap for the exponential reconnect delay (seconds).
        challenge_timeout: Wait for the server's signed challenge reply (seconds).
        auth_timeout: Total wait for the handshake to complete (seconds).
        request_timeout: Per-request reply timeout (seconds); None waits until
            the reply arrives or the connection drops.
    """

    host: str
    secure: bool = True
    socket_path: str = "/socket"
    connect_timeout: float = 15.0
    ping_interval: float = 10.0
    max_missed_pongs: int = 2
    reconnect_base_delay: float = 5.0
    reconnect_max_delay: float = 60.0
    challenge_timeout: float = 10.0
    auth_timeout: float = 30.0
    request_timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("host is required")
        for name in (
            "connect_timeout",
            "ping_interval",
            "reconnect_base_delay",
            "reconnect_max_delay",
            "challenge_timeout",
            "auth_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.max_missed_pongs < 1:
            raise ConfigError("max_missed_pongs must be at least 1")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")

    def ws_url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}{self.socket_path}"

    def http_url(self, path: str = "") -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}{path}"

    def with_overrides(self, **overrides: Any) -> ClientConfig:
        return replace(self, **overrides)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def load_config(path: str | Path, **overrides: Any) -> ClientConfig:
    """Load client settings from a YAML file.

    Args:
        path: YAML file containing a mapping of ClientConfig fields.
        **overrides: Values that take precedence over the file.

    Raises:
        ConfigError: If the file is missing, malformed, or holds unknown keys.
    """
    data = _load_yaml(Path(path))
    data.update(overrides)

    known = {f.name for f in fields(ClientConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    try:
        return ClientConfig(**data)
    except TypeError as err:
        raise ConfigError(str(err)) from err
