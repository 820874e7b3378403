"""
Key material generation and storage.

Private keys never go into the provisioning state record. They are kept in
a separate owner-only secret file per instance, and the state only holds a
reference such as ``demo/admin``::

    store = FileSecretStore(instance_dir)
    ref = secret_ref("demo", "admin")
    store.put(ref, RandomKeyGenerator().generate())
"""

from __future__ import annotations

import json
import logging
import secrets
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

from zkstack_wizard.errors import StateIOError
from zkstack_wizard.fileio import atomic_write_text

logger = logging.getLogger(__name__)

SECRETS_FILE_NAME = ".secrets.json"

# Order of the secp256k1 group; valid private keys are in [1, n - 1]
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def secret_ref(instance: str, role: str) -> str:
    """Reference under which the key for ``role`` of ``instance`` is stored."""
    return f"{instance}/{role}"


@runtime_checkable
class KeyGenerator(Protocol):
    """Produces new private keys as 0x-prefixed hex strings."""

    def generate(self) -> str:
        ...


class RandomKeyGenerator:
    """Draws uniformly random secp256k1 private keys from the OS CSPRNG."""

    def generate(self) -> str:
        while True:
            candidate = secrets.token_bytes(32)
            if 0 < int.from_bytes(candidate, "big") < SECP256K1_ORDER:
                return "0x" + candidate.hex()


@runtime_checkable
class SecretStore(Protocol):
    """Storage for key material addressed by reference."""

    def get(self, ref: str) -> Optional[str]:
        ...

    def put(self, ref: str, value: str) -> None:
        ...


class FileSecretStore:
    """
    Owner-only JSON file of secrets, replaced atomically on every write.

    Data layout:
        <instance_dir>/.secrets.json   # {"<ref>": "0x..."}
    """

    def __init__(self, directory: Path):
        self.path = Path(directory) / SECRETS_FILE_NAME

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StateIOError(f"Unable to read secret store ({e})", self.path) from e
        if not isinstance(data, dict):
            raise StateIOError("Secret store is not a JSON object", self.path)
        return data

    def get(self, ref: str) -> Optional[str]:
        return self._read().get(ref)

    def put(self, ref: str, value: str) -> None:
        data = self._read()
        data[ref] = value
        try:
            atomic_write_text(self.path, json.dumps(data, indent=2, sort_keys=True), mode=0o600)
        except OSError as e:
            raise StateIOError(f"Unable to write secret store ({e})", self.path) from e
        logger.debug(f"Stored secret {ref}")


class MemorySecretStore:
    """Dict-backed secret store for tests and dry runs."""

    def __init__(self) -> None:
        self.secrets: Dict[str, str] = {}

    def get(self, ref: str) -> Optional[str]:
        return self.secrets.get(ref)

    def put(self, ref: str, value: str) -> None:
        self.secrets[ref] = value
