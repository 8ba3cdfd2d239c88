"""Integration config encryption using AES-GCM.

Integration configs carry connector credentials (API keys, passwords), so
they are encrypted at rest when HUB_ENCRYPTION_KEY is set.
Uses AES-256-GCM for authenticated encryption.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


ENVELOPE_MARKER = "aesgcm"


def generate_encryption_key() -> str:
    """Generate a new 256-bit encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for AES-256
    """
    key = secrets.token_bytes(32)
    return base64.b64encode(key).decode('utf-8')


@dataclass
class EncryptedConfig:
    """Encrypted config blob as stored in the integrations table."""
    ciphertext: str  # Base64-encoded encrypted data (GCM tag appended)
    nonce: str       # Base64-encoded 96-bit nonce
    key_version: int = 1

    def to_json(self) -> str:
        return json.dumps({
            "enc": ENVELOPE_MARKER,
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "key_version": self.key_version,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedConfig":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            key_version=data.get("key_version", 1),
        )


class ConfigEncryption:
    """AES-256-GCM encryption for integration configs.

    The config column holds the integration's context string as additional
    authenticated data, so a blob copied onto another integration type fails
    to decrypt.

    Usage:
        enc = ConfigEncryption(generate_encryption_key())
        stored = enc.encrypt({"api_key": "..."}, context="sync")
        config = enc.decrypt(stored, context="sync")
    """

    def __init__(self, encryption_key: str):
        """Initialize with base64-encoded encryption key.

        Args:
            encryption_key: Base64-encoded 32-byte key (from generate_encryption_key())
        """
        try:
            key = base64.b64decode(encryption_key, validate=True)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid encryption key: {e}")
        if len(key) != 32:
            raise ValueError("Invalid encryption key: key must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)

    def encrypt(self, config: Dict[str, Any], context: str = "", key_version: int = 1) -> str:
        """Encrypt a config dict and return the JSON envelope to store."""
        plaintext = json.dumps(config).encode('utf-8')
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, context.encode('utf-8'))

        return EncryptedConfig(
            ciphertext=base64.b64encode(ciphertext).decode('utf-8'),
            nonce=base64.b64encode(nonce).decode('utf-8'),
            key_version=key_version,
        ).to_json()

    def decrypt(self, stored: str, context: str = "") -> Dict[str, Any]:
        """Decrypt a stored envelope.

        Raises:
            ValueError: If decryption fails (wrong key, tampered data, wrong context)
        """
        try:
            envelope = EncryptedConfig.from_dict(json.loads(stored))
            plaintext = self._aesgcm.decrypt(
                base64.b64decode(envelope.nonce),
                base64.b64decode(envelope.ciphertext),
                context.encode('utf-8'),
            )
            return json.loads(plaintext.decode('utf-8'))
        except Exception as e:
            raise ValueError(f"Config decryption failed: {e}")


def is_encrypted(stored: str) -> bool:
    """True when a stored config column holds an encryption envelope."""
    try:
        data = json.loads(stored)
    except (TypeError, ValueError):
        return False
    return isinstance(data, dict) and data.get("enc") == ENVELOPE_MARKER


class ConfigCodec:
    """Serializes integration configs for storage, encrypting when a cipher is set."""

    def __init__(self, encryption: Optional[ConfigEncryption] = None):
        self.encryption = encryption

    def dumps(self, config: Dict[str, Any], context: str = "") -> str:
        if self.encryption is None:
            return json.dumps(config)
        return self.encryption.encrypt(config, context=context)

    def loads(self, stored: Optional[str], context: str = "") -> Dict[str, Any]:
        if not stored:
            return {}
        if is_encrypted(stored):
            if self.encryption is None:
                raise ValueError("Config is encrypted but HUB_ENCRYPTION_KEY is not set")
            return self.encryption.decrypt(stored, context=context)
        return json.loads(stored)
