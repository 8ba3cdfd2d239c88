"""Config encryption tests."""

import base64
import json

import pytest

from core.security import (
    ConfigCodec,
    ConfigEncryption,
    generate_encryption_key,
    is_encrypted,
)


@pytest.fixture
def encryption():
    return ConfigEncryption(generate_encryption_key())


class TestConfigEncryption:

    def test_decrypts_what_it_encrypts(self, encryption):
        stored = encryption.encrypt({"api_key": "k-123", "port": 443}, context="sync")

        assert is_encrypted(stored)
        assert "k-123" not in stored
        assert encryption.decrypt(stored, context="sync") == {"api_key": "k-123", "port": 443}

    def test_fresh_nonce_per_encryption(self, encryption):
        assert encryption.encrypt({"a": 1}) != encryption.encrypt({"a": 1})

    def test_context_is_authenticated(self, encryption):
        stored = encryption.encrypt({"api_key": "k"}, context="sync")
        with pytest.raises(ValueError):
            encryption.decrypt(stored, context="export")

    def test_wrong_key(self, encryption):
        stored = encryption.encrypt({"api_key": "k"})
        with pytest.raises(ValueError):
            ConfigEncryption(generate_encryption_key()).decrypt(stored)

    def test_tampered_ciphertext(self, encryption):
        envelope = json.loads(encryption.encrypt({"api_key": "k"}))
        raw = bytearray(base64.b64decode(envelope["ciphertext"]))
        raw[0] ^= 0xFF
        envelope["ciphertext"] = base64.b64encode(bytes(raw)).decode()

        with pytest.raises(ValueError):
            encryption.decrypt(json.dumps(envelope))

    @pytest.mark.parametrize("key", ["not base64!", base64.b64encode(b"short").decode()])
    def test_invalid_key(self, key):
        with pytest.raises(ValueError):
            ConfigEncryption(key)


class TestConfigCodec:

    def test_plain_json_without_encryption(self):
        codec = ConfigCodec()
        stored = codec.dumps({"host": "erp.local"})
        assert json.loads(stored) == {"host": "erp.local"}
        assert codec.loads(stored) == {"host": "erp.local"}

    def test_empty_column(self):
        assert ConfigCodec().loads(None) == {}
        assert ConfigCodec().loads("") == {}

    def test_reads_plain_rows_after_key_is_added(self, encryption):
        """Rows written before HUB_ENCRYPTION_KEY was set stay readable."""
        plain = ConfigCodec().dumps({"host": "erp.local"})
        assert ConfigCodec(encryption).loads(plain) == {"host": "erp.local"}

    def test_encrypted_row_without_key(self, encryption):
        stored = ConfigCodec(encryption).dumps({"host": "erp.local"}, context="sync")
        with pytest.raises(ValueError, match="HUB_ENCRYPTION_KEY"):
            ConfigCodec().loads(stored, context="sync")

    def test_is_encrypted_ignores_other_json(self):
        assert not is_encrypted('{"enc": "other"}')
        assert not is_encrypted("[]")
        assert not is_encrypted("not json")
