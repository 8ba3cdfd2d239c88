"""Security module - encryption of integration configs at rest."""

from core.security.encryption import (
    ConfigCodec,
    ConfigEncryption,
    EncryptedConfig,
    generate_encryption_key,
    is_encrypted,
)

__all__ = [
    "ConfigCodec",
    "ConfigEncryption",
    "EncryptedConfig",
    "generate_encryption_key",
    "is_encrypted",
]
