"""Ed25519 key material for authenticating with a Vex server.

The connection core only needs the ``KeyProvider`` operations. ``KeyRing`` is
the stock implementation: it loads a keypair from a key folder (creating one
on first use) or keeps it in memory when the folder is ``":memory:"``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .errors import KeyRingError

_LOGGER = logging.getLogger(__name__)

MEMORY = ":memory:"
PUB_KEY_FILE = "key.pub"
PRIV_KEY_FILE = "key.priv"

_SEED_SIZE = 32
# NaCl-style secret keys are the 32-byte seed followed by the public key.
_NACL_SECRET_SIZE = 64


@runtime_checkable
class KeyProvider(Protocol):
    """Signing operations the handshake depends on."""

    @property
    def is_ready(self) -> bool: ...

    def public_key(self) -> bytes: ...

    def sign(self, message: bytes) -> bytes: ...

    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool: ...


class KeyRing:
    """Ed25519 keypair with file or in-memory storage.

    Usage:
        keyring = KeyRing("./keys")
        keyring.on_ready(lambda: print(keyring.public_key().hex()))
        keyring.init()
    """

    def __init__(self, key_folder: str | Path = MEMORY, secret_key: str | None = None):
        """Initialize keyring.

        Args:
            key_folder: Directory holding key.pub/key.priv as hex text, or
                ":memory:" to keep the keys in memory only.
            secret_key: Hex-encoded secret key to use instead of generating
                one (in-memory mode only).
        """
        self._key_folder = None if str(key_folder) == MEMORY else Path(key_folder)
        self._provided_key = secret_key
        self._private_key: Ed25519PrivateKey | None = None
        self._ready_callbacks: list[Callable[[], None]] = []
        self._error_callbacks: list[Callable[[Exception], None]] = []

    @property
    def is_ready(self) -> bool:
        return self._private_key is not None

    @property
    def key_folder(self) -> Path | None:
        return self._key_folder

    def on_ready(self, callback: Callable[[], None]) -> None:
        """Register callback fired once key material is loaded."""
        self._ready_callbacks.append(callback)

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        """Register callback fired when key material cannot be loaded."""
        self._error_callbacks.append(callback)

    def init(self) -> None:
        """Load or generate the keypair, then notify listeners.

        Raises:
            KeyRingError: If the key files are unreadable or invalid.
        """
        try:
            if self._key_folder is None:
                self._private_key = self._load_memory_key()
            else:
                self._private_key = self._load_folder_key(self._key_folder)
        except KeyRingError as err:
            _LOGGER.error("Key material unavailable: %s", err)
            for callback in self._error_callbacks:
                callback(err)
            raise

        for callback in self._ready_callbacks:
            callback()

    def public_key(self) -> bytes:
        return self._require_key().public_key().public_bytes_raw()

    def private_key_material(self) -> bytes:
        """Return the raw 32-byte private seed."""
        return self._require_key().private_bytes_raw()

    def sign(self, message: bytes) -> bytes:
        """Sign a message with the private key."""
        return self._require_key().sign(message)

    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        """Check a detached signature against a public key."""
        try:
            Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        except (InvalidSignature, ValueError):
            return False
        return True

    def _require_key(self) -> Ed25519PrivateKey:
        if self._private_key is None:
            raise KeyRingError("Keyring is not initialized")
        return self._private_key

    def _load_memory_key(self) -> Ed25519PrivateKey:
        if self._provided_key is None:
            key = Ed25519PrivateKey.generate()
            self._provided_key = key.private_bytes_raw().hex()
            return key
        return _private_key_from_hex(self._provided_key)

    @staticmethod
    def _load_folder_key(folder: Path) -> Ed25519PrivateKey:
        priv_path = folder / PRIV_KEY_FILE
        pub_path = folder / PUB_KEY_FILE
        try:
            folder.mkdir(parents=True, exist_ok=True)
            if not priv_path.exists():
                key = Ed25519PrivateKey.generate()
                priv_path.write_text(key.private_bytes_raw().hex(), encoding="utf-8")
                pub_path.write_text(
                    key.public_key().public_bytes_raw().hex(), encoding="utf-8"
                )
                _LOGGER.info("Generated new keypair in %s", folder)
                return key
            return _private_key_from_hex(priv_path.read_text(encoding="utf-8"))
        except OSError as err:
            raise KeyRingError(f"Cannot access key folder: {err}") from err


def _private_key_from_hex(secret_hex: str) -> Ed25519PrivateKey:
    try:
        secret = bytes.fromhex(secret_hex.strip())
    except ValueError as err:
        raise KeyRingError("Secret key is not valid hex") from err
    if len(secret) not in (_SEED_SIZE, _NACL_SECRET_SIZE):
        raise KeyRingError(
            "Invalid keyfiles. Generate new keyfiles and replace them in the key folder."
        )
    return Ed25519PrivateKey.from_private_bytes(secret[:_SEED_SIZE])
