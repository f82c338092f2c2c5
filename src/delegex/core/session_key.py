"""Backend session key: loading, public identifier and digest signing.

One ``SessionKeyManager`` is constructed per deployment and injected into the
executor.  The key is materialized lazily from a provisioned secret (env var
or key file), then stays immutable for the process lifetime; rotation means
a restart with a new secret.

The soft expiry is only a reminder: after it passes, signing still works but
a warning is logged once.
"""

from __future__ import annotations

import logging
import os
import platform
import stat
import threading
import time
import warnings
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

from delegex.protocol.crypto import (
    p256_private_key,
    p256_public_id,
    parse_private_key,
    secp256k1_private_key,
    secp256k1_public_id,
    sign_digest_p256,
    sign_digest_secp256k1,
    to_0x,
)
from delegex.protocol.errors import ConfigurationError
from delegex.protocol.types import KeyType

logger = logging.getLogger(__name__)

DEFAULT_SOFT_EXPIRY = timedelta(days=30)


def parse_key_type(value: str) -> KeyType:
    try:
        return KeyType(value.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unsupported session key type {value!r}; expected one of "
            f"{sorted(k.value for k in KeyType)}"
        ) from None


# ---------------------------------------------------------------------------
# Key files
# ---------------------------------------------------------------------------


def write_key_file(path: Path | str, key_type: KeyType, secret: bytes) -> Path:
    """Write ``<type>:<hex>`` to *path* with 600 permissions."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{key_type.value}:{to_0x(secret)}\n")
    if platform.system() != "Windows":
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    return path


def read_key_file(path: Path | str) -> tuple[KeyType | None, str]:
    """Read a key file written by :func:`write_key_file` (or a bare hex key).

    Warns when the file is readable by other users.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Session key file not found: {path}")
    if platform.system() != "Windows":
        mode = path.stat().st_mode & 0o777
        if mode & 0o077:
            warnings.warn(
                f"Session key file {path} has permissions {oct(mode)} (expected 0o600). "
                f"Run: chmod 600 {path}",
                stacklevel=2,
            )
    content = path.read_text().strip()
    if ":" in content:
        type_part, _, hex_part = content.partition(":")
        return parse_key_type(type_part), hex_part.strip()
    return None, content


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class SigningKeyHandle:
    """Opaque handle to the loaded key.

    Exposes the key type, the public identifier and a ``sign`` method; the
    private scalar never leaves the handle.
    """

    __slots__ = ("key_type", "public_id", "_sign")

    def __init__(self, key_type: KeyType, public_id: str, sign: Callable[[bytes], str]) -> None:
        self.key_type = key_type
        self.public_id = public_id
        self._sign = sign

    def sign(self, digest: bytes) -> str:
        return self._sign(digest)

    def relay_reference(self) -> dict[str, Any]:
        """The ``key`` object sent to the relay in ``wallet_prepareCalls``."""
        return {"type": self.key_type.value, "publicKey": self.public_id, "prehash": False}

    def __repr__(self) -> str:
        return f"SigningKeyHandle(type={self.key_type.value}, public_id={self.public_id[:18]}...)"


def _build_handle(key_type: KeyType, secret: bytes) -> SigningKeyHandle:
    if key_type is KeyType.P256:
        p256 = p256_private_key(secret)
        return SigningKeyHandle(key_type, p256_public_id(p256), lambda d: sign_digest_p256(p256, d))
    k1 = secp256k1_private_key(secret)
    return SigningKeyHandle(key_type, secp256k1_public_id(k1), lambda d: sign_digest_secp256k1(k1, d))


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionKeyManager:
    """Holds exactly one backend signing key.

    *load_secret* returns ``(key_type or None, hex_secret)``; ``None`` means
    "use the configured *key_type*".  It runs at most once, on first use.
    """

    def __init__(
        self,
        load_secret: Callable[[], tuple[KeyType | None, str]],
        *,
        key_type: KeyType = KeyType.P256,
        soft_expiry: timedelta = DEFAULT_SOFT_EXPIRY,
    ) -> None:
        self._load_secret = load_secret
        self._key_type = key_type
        self._soft_expiry = soft_expiry
        self._handle: SigningKeyHandle | None = None
        self._loaded_at: float | None = None
        self._expiry_warned = False
        self._lock = threading.Lock()

    @classmethod
    def from_hex(
        cls, secret: str, key_type: KeyType = KeyType.P256, **kwargs: Any
    ) -> SessionKeyManager:
        return cls(lambda: (key_type, secret), key_type=key_type, **kwargs)

    @classmethod
    def from_file(
        cls, path: Path | str, key_type: KeyType = KeyType.P256, **kwargs: Any
    ) -> SessionKeyManager:
        return cls(lambda: read_key_file(path), key_type=key_type, **kwargs)

    @classmethod
    def from_settings(cls, settings: Any) -> SessionKeyManager:
        """Build from ``Settings``: the env secret wins over the key file."""
        key_type = parse_key_type(settings.session_key_type)
        soft_expiry = timedelta(days=settings.session_key_soft_expiry_days)
        if settings.session_key:
            return cls.from_hex(settings.session_key, key_type, soft_expiry=soft_expiry)
        if settings.session_key_path:
            return cls.from_file(settings.session_key_path, key_type, soft_expiry=soft_expiry)
        raise ConfigurationError(
            "No backend session key configured. Set DELEGEX_SESSION_KEY or "
            "DELEGEX_SESSION_KEY_PATH (see `delegex keygen`)."
        )

    def get_signing_key(self) -> SigningKeyHandle:
        """Return the key handle, loading it on first call."""
        if self._handle is not None:
            return self._handle
        with self._lock:
            if self._handle is None:
                declared, secret = self._load_secret()
                key_type = declared or self._key_type
                if declared is not None and declared is not self._key_type:
                    raise ConfigurationError(
                        f"Session key file declares {declared.value} but "
                        f"{self._key_type.value} is configured"
                    )
                self._handle = _build_handle(key_type, parse_private_key(secret, key_type))
                self._loaded_at = time.time()
                logger.info(
                    "Backend session key loaded: type=%s public_id=%s...",
                    key_type.value,
                    self._handle.public_id[:18],
                )
        return self._handle

    def get_public_identifier(self) -> str:
        """Value the grant-ceremony UI puts in ``backendKeyPublicId``."""
        return self.get_signing_key().public_id

    @property
    def key_type(self) -> KeyType:
        return self.get_signing_key().key_type

    @property
    def soft_expiry_at(self) -> float | None:
        if self._loaded_at is None:
            return None
        return self._loaded_at + self._soft_expiry.total_seconds()

    def is_past_soft_expiry(self, now: float | None = None) -> bool:
        expires = self.soft_expiry_at
        if expires is None:
            return False
        return (now if now is not None else time.time()) >= expires

    def sign(self, digest: bytes) -> str:
        handle = self.get_signing_key()
        if not self._expiry_warned and self.is_past_soft_expiry():
            self._expiry_warned = True
            logger.warning(
                "Backend session key %s... is past its soft expiry; plan a rotation",
                handle.public_id[:18],
            )
        return handle.sign(digest)
