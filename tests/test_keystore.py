"""
Tests for key generation and the secret stores.
"""

import json
import os
import stat
from unittest.mock import patch

import pytest

from zkstack_wizard.errors import StateIOError
from zkstack_wizard.keystore import (
    SECP256K1_ORDER,
    SECRETS_FILE_NAME,
    FileSecretStore,
    KeyGenerator,
    MemorySecretStore,
    RandomKeyGenerator,
    SecretStore,
    secret_ref,
)


class TestRandomKeyGenerator:

    def test_format(self):
        key = RandomKeyGenerator().generate()
        assert key.startswith("0x")
        assert len(key) == 66
        assert 0 < int(key, 16) < SECP256K1_ORDER

    def test_keys_differ(self):
        generator = RandomKeyGenerator()
        assert generator.generate() != generator.generate()

    def test_redraws_out_of_range_values(self):
        draws = [b"\x00" * 32, b"\xff" * 32, b"\x00" * 31 + b"\x07"]
        with patch("zkstack_wizard.keystore.secrets.token_bytes", side_effect=draws):
            key = RandomKeyGenerator().generate()
        assert int(key, 16) == 7

    def test_satisfies_protocol(self):
        assert isinstance(RandomKeyGenerator(), KeyGenerator)


class TestFileSecretStore:

    def test_put_and_get(self, tmp_path):
        store = FileSecretStore(tmp_path)
        store.put(secret_ref("demo", "admin"), "0xabc")

        assert store.get("demo/admin") == "0xabc"
        assert store.get("demo/operator") is None
        assert isinstance(store, SecretStore)

    def test_file_is_owner_only(self, tmp_path):
        FileSecretStore(tmp_path).put("demo/admin", "0xabc")

        path = tmp_path / SECRETS_FILE_NAME
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert json.loads(path.read_text()) == {"demo/admin": "0xabc"}

    def test_put_keeps_other_secrets(self, tmp_path):
        store = FileSecretStore(tmp_path)
        store.put("demo/admin", "0x1")
        store.put("demo/operator", "0x2")

        reopened = FileSecretStore(tmp_path)
        assert reopened.get("demo/admin") == "0x1"
        assert reopened.get("demo/operator") == "0x2"

    def test_corrupt_file(self, tmp_path):
        (tmp_path / SECRETS_FILE_NAME).write_text("[1, 2")
        with pytest.raises(StateIOError):
            FileSecretStore(tmp_path).get("demo/admin")

    def test_non_object_file(self, tmp_path):
        (tmp_path / SECRETS_FILE_NAME).write_text("[]")
        with pytest.raises(StateIOError, match="not a JSON object"):
            FileSecretStore(tmp_path).get("demo/admin")


class TestMemorySecretStore:

    def test_put_and_get(self):
        store = MemorySecretStore()
        store.put("demo/admin", "0x1")
        assert store.get("demo/admin") == "0x1"
        assert store.secrets == {"demo/admin": "0x1"}
