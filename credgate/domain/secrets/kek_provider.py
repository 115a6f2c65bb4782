"""Master key loading and AES-256-GCM envelope encryption.

Agent private keys (and any other secret handed to `EnvelopeCipher`) are
stored as `iv:tag:ciphertext`, three lowercase hex segments. The master key is
loaded once per process by a `Keyring` and never logged.
"""
import os
import base64
import binascii
import logging
import re
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from credgate.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_HEX_SEGMENT_RE = re.compile(r"^[0-9a-fA-F]+$")


@dataclass(frozen=True)
class SecretEnvelope:
    """Persisted form of one encrypted secret."""
    iv: bytes
    tag: bytes
    ciphertext: bytes

    def __post_init__(self):
        if len(self.iv) != IV_LENGTH or len(self.tag) != TAG_LENGTH:
            raise DecryptionError()

    def serialize(self) -> str:
        return f"{self.iv.hex()}:{self.tag.hex()}:{self.ciphertext.hex()}"

    @staticmethod
    def parse(text: str) -> "SecretEnvelope":
        """Parse `iv:tag:ciphertext`. Any structural problem is a DecryptionError."""
        if not isinstance(text, str):
            raise DecryptionError()
        parts = text.split(":")
        if len(parts) != 3:
            raise DecryptionError()
        iv_hex, tag_hex, ct_hex = parts
        if (
            len(iv_hex) != IV_LENGTH * 2
            or len(tag_hex) != TAG_LENGTH * 2
            or not all(_HEX_SEGMENT_RE.match(p) for p in parts)
            or len(ct_hex) % 2
        ):
            raise DecryptionError()
        return SecretEnvelope(
            iv=binascii.unhexlify(iv_hex),
            tag=binascii.unhexlify(tag_hex),
            ciphertext=binascii.unhexlify(ct_hex),
        )

    def __repr__(self) -> str:
        return f"SecretEnvelope(ciphertext_len={len(self.ciphertext)})"


def load_master_key(raw: Optional[str]) -> bytes:
    """Decode a 32-byte master key given as 64 hex chars or base64."""
    if not raw:
        raise ConfigurationError("AGENT_ENCRYPTION_KEY is not set")
    raw = raw.strip()
    if _HEX_KEY_RE.match(raw):
        return binascii.unhexlify(raw)
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise ConfigurationError("AGENT_ENCRYPTION_KEY must be 64 hex chars or base64") from None
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            f"AGENT_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}"
        )
    return key


class EnvelopeCipher:
    """AES-256-GCM over a fixed master key. Nonces are always generated here."""

    def __init__(self, master_key: bytes):
        if len(master_key) != KEY_LENGTH:
            raise ConfigurationError(f"Master key must be {KEY_LENGTH} bytes")
        self._aesgcm = AESGCM(master_key)

    def encrypt(self, plaintext: bytes) -> SecretEnvelope:
        iv = os.urandom(IV_LENGTH)
        ct_and_tag = self._aesgcm.encrypt(iv, plaintext, None)
        return SecretEnvelope(iv=iv, tag=ct_and_tag[-TAG_LENGTH:], ciphertext=ct_and_tag[:-TAG_LENGTH])

    def decrypt(self, envelope: SecretEnvelope) -> bytes:
        try:
            return self._aesgcm.decrypt(envelope.iv, envelope.ciphertext + envelope.tag, None)
        except InvalidTag:
            raise DecryptionError() from None

    def encrypt_text(self, plaintext: str) -> str:
        return self.encrypt(plaintext.encode("utf-8")).serialize()

    def decrypt_text(self, serialized: str) -> str:
        plaintext = self.decrypt(SecretEnvelope.parse(serialized))
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError() from None

    def __repr__(self) -> str:
        return "EnvelopeCipher(alg=aes-256-gcm)"


def encrypt(plaintext: bytes, master_key: bytes) -> SecretEnvelope:
    return EnvelopeCipher(master_key).encrypt(plaintext)


def decrypt(envelope: SecretEnvelope, master_key: bytes) -> bytes:
    return EnvelopeCipher(master_key).decrypt(envelope)


class MasterKeySource(Protocol):
    def read(self) -> Optional[str]:
        """Return the encoded master key, or None when absent."""
        ...


class EnvMasterKeySource:
    """Reads AGENT_ENCRYPTION_KEY through settings (env or .env file)."""

    def read(self) -> Optional[str]:
        from credgate.settings import get_settings
        value = get_settings().AGENT_ENCRYPTION_KEY
        return value.get_secret_value() if value else None


class StaticMasterKeySource:
    def __init__(self, value: str):
        self._value = value

    def read(self) -> Optional[str]:
        return self._value


class Keyring:
    """Process-scoped holder of the master key.

    The key is read from its source at most once; later calls reuse the cached
    cipher. A failed load is not cached, so `ConfigurationError` repeats on
    every call until configuration is fixed. `reset()` exists for tests.
    """

    def __init__(self, source: Optional[MasterKeySource] = None):
        self._source = source or EnvMasterKeySource()
        self._cipher: Optional[EnvelopeCipher] = None
        self._lock = threading.Lock()

    def cipher(self) -> EnvelopeCipher:
        if self._cipher is None:
            with self._lock:
                if self._cipher is None:
                    self._cipher = EnvelopeCipher(load_master_key(self._source.read()))
                    logger.info("Master encryption key loaded")
        return self._cipher

    @property
    def loaded(self) -> bool:
        return self._cipher is not None

    def reset(self) -> None:
        with self._lock:
            self._cipher = None
