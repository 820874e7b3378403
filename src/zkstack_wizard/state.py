"""
Persisted provisioning state for hyperchain instances.

Provisioning can be interrupted at any point (crash, Ctrl-C, an external
dependency going away), so the record of completed steps must survive
process restarts. This module handles:

1. The ``ProvisioningState`` record and its monotonic update rule
2. Serializing the record to disk with crash-safe replacement
3. Pluggable stores behind the ``StateStore`` protocol

State is stored as JSON at <data_dir>/<instance>/.init_state.json

Writes are not locked: running two provisioning processes against the
same instance name at once is unsupported.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Type, runtime_checkable

from zkstack_wizard.errors import StateIOError, StatePreconditionError
from zkstack_wizard.fileio import atomic_write_text

logger = logging.getLogger(__name__)

STATE_FILE_NAME = ".init_state.json"

# Schema versioning for state files
# Increment when making breaking changes to ProvisioningState structure
SCHEMA_VERSION = 1

# Fields that are bookkeeping rather than step-owned results
_META_FIELDS = frozenset({"schema_version", "created_at", "updated_at"})


@dataclass
class ProvisioningState:
    """
    Durable record of which provisioning steps have completed.

    Every step-owned field only ever moves from unset/False to set/True.
    ``apply`` enforces this; nothing else should mutate a loaded state.
    """
    # Instance parameters recorded on the first run
    l1_network: Optional[str] = None
    chain_id: Optional[int] = None

    database_name: Optional[str] = None
    migrations_applied: bool = False

    # References into the secret store, never key material
    admin_identity: Optional[str] = None
    operator_identity: Optional[str] = None

    funds_provisioned: bool = False
    deployed_contracts: Dict[str, str] = field(default_factory=dict)
    genesis_completed: bool = False
    l1_contracts_deployed: bool = False
    l2_contracts_deployed: bool = False
    configs_generated: bool = False
    manifest_updated: bool = False

    schema_version: int = SCHEMA_VERSION
    created_at: Optional[str] = None  # ISO format
    updated_at: Optional[str] = None  # ISO format

    def to_dict(self) -> Dict[str, Any]:
        """Serialize state to dictionary, always at current schema version."""
        data = asdict(self)
        data["schema_version"] = SCHEMA_VERSION
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisioningState":
        """
        Deserialize state from dictionary.

        Unknown fields are dropped. Records written by a newer schema are
        rejected, since silently discarding their fields could re-run steps.
        """
        if not isinstance(data, dict):
            raise TypeError(f"State record must be a JSON object, not {type(data).__name__}")

        version = data.get("schema_version", SCHEMA_VERSION)
        if version > SCHEMA_VERSION:
            raise ValueError(
                f"State schema v{version} is newer than supported v{SCHEMA_VERSION}"
            )

        known_fields = {f.name for f in fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in known_fields}
        filtered_data["deployed_contracts"] = dict(filtered_data.get("deployed_contracts") or {})
        return cls(**filtered_data)

    @classmethod
    def step_fields(cls) -> frozenset:
        """Names of the fields owned by provisioning steps."""
        return frozenset(f.name for f in fields(cls) if f.name not in _META_FIELDS)

    def apply(self, updates: Dict[str, Any]) -> "ProvisioningState":
        """
        Return a copy of this state with ``updates`` applied.

        Raises:
            StatePreconditionError: If an update names an unknown field,
                unsets a field, or overwrites a set field with a different value
        """
        new_state = copy.deepcopy(self)
        owned = self.step_fields()

        for name, value in updates.items():
            if name not in owned:
                raise StatePreconditionError(f"Unknown provisioning state field '{name}'")

            current = getattr(new_state, name)

            if name == "deployed_contracts":
                merged = dict(current)
                for contract, address in dict(value).items():
                    existing = merged.get(contract)
                    if existing is not None and existing != address:
                        raise StatePreconditionError(
                            f"Contract '{contract}' is already recorded at {existing}, "
                            f"refusing to overwrite it with {address}"
                        )
                    merged[contract] = address
                new_state.deployed_contracts = merged
            elif isinstance(current, bool):
                if value is not True:
                    raise StatePreconditionError(
                        f"Field '{name}' can only transition to True, got {value!r}"
                    )
                setattr(new_state, name, True)
            else:
                if value is None:
                    raise StatePreconditionError(f"Field '{name}' cannot be unset")
                if current is not None and current != value:
                    raise StatePreconditionError(
                        f"Field '{name}' is already set to {current!r}, "
                        f"refusing to overwrite it with {value!r}"
                    )
                setattr(new_state, name, value)

        return new_state

    def require_database_name(self) -> str:
        """Database name recorded by the create-isolated-database step."""
        if self.database_name is None:
            raise StatePreconditionError(
                "Database name requested before the isolated database was created"
            )
        return self.database_name

    @property
    def identities_generated(self) -> bool:
        return self.admin_identity is not None and self.operator_identity is not None

    def has_contracts(self, *names: str) -> bool:
        return all(name in self.deployed_contracts for name in names)


def serialize_state(state: ProvisioningState) -> str:
    """Canonical JSON text of a state record."""
    return json.dumps(state.to_dict(), indent=2, sort_keys=True) + "\n"


def _stamped(state: ProvisioningState) -> ProvisioningState:
    """Copy of ``state`` with created_at/updated_at filled in for saving."""
    now = datetime.now(timezone.utc).isoformat()
    return replace(
        state,
        schema_version=SCHEMA_VERSION,
        created_at=state.created_at or now,
        updated_at=now,
        deployed_contracts=dict(state.deployed_contracts),
    )


# =============================================================================
# Stores
# =============================================================================


class StorageType(str, Enum):
    """Available state store backends."""
    FILE = "file"
    MEMORY = "memory"


@runtime_checkable
class StateStore(Protocol):
    """
    Protocol for durable provisioning state.

    ``load`` returns a default state when no record exists. ``save``
    replaces the whole record; a crash during ``save`` must never leave a
    partially written record visible to a later ``load``.
    """

    def load(self, instance: str) -> ProvisioningState:
        ...

    def save(self, instance: str, state: ProvisioningState) -> None:
        ...


# Store backend registry
_BACKENDS: Dict[StorageType, Type] = {}


def register_backend(storage_type: StorageType):
    """Decorator to register a state store backend."""
    def decorator(cls: Type) -> Type:
        _BACKENDS[storage_type] = cls
        return cls
    return decorator


@register_backend(StorageType.FILE)
class FileStateStore:
    """
    JSON file store, one record per instance.

    Data layout:
        <base_dir>/
        ├── <instance>/
        │   └── .init_state.json
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def path_for(self, instance: str) -> Path:
        return self.base_dir / instance / STATE_FILE_NAME

    def load(self, instance: str) -> ProvisioningState:
        """
        Load the state for ``instance``.

        Returns:
            ProvisioningState, all-unset if no record exists

        Raises:
            StateIOError: If the record exists but cannot be read or parsed
        """
        path = self.path_for(instance)
        if not path.exists():
            logger.debug(f"No state record for {instance}, starting fresh")
            return ProvisioningState()

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return ProvisioningState.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            raise StateIOError(f"Unable to read provisioning state ({e})", path) from e

    def save(self, instance: str, state: ProvisioningState) -> None:
        """
        Save the state for ``instance`` atomically.

        Uses temporary file + rename so a crash mid-write leaves the previous
        record intact. Sets file permissions to 600 (owner read/write only).
        """
        path = self.path_for(instance)
        try:
            atomic_write_text(path, serialize_state(_stamped(state)), mode=0o600)
        except OSError as e:
            raise StateIOError(f"Unable to write provisioning state ({e})", path) from e
        logger.debug(f"Saved provisioning state for {instance} to {path}")


@register_backend(StorageType.MEMORY)
class MemoryStateStore:
    """In-process store; keeps serialized records so they can be compared byte for byte."""

    def __init__(self) -> None:
        self.records: Dict[str, str] = {}
        self.save_count = 0

    def load(self, instance: str) -> ProvisioningState:
        record = self.records.get(instance)
        if record is None:
            return ProvisioningState()
        return ProvisioningState.from_dict(json.loads(record))

    def save(self, instance: str, state: ProvisioningState) -> None:
        self.records[instance] = serialize_state(_stamped(state))
        self.save_count += 1


def get_state_store(storage_type: StorageType = StorageType.FILE, **kwargs: Any) -> StateStore:
    """
    Get a state store instance.

    Args:
        storage_type: Backend to use
        **kwargs: Backend-specific options (``base_dir`` for file storage)

    Returns:
        StateStore instance
    """
    if storage_type not in _BACKENDS:
        raise ValueError(f"Unknown storage type: {storage_type}")
    return _BACKENDS[storage_type](**kwargs)
