"""
Tests for provisioning state - ProvisioningState and the state stores.
"""

import json
import os
import stat
from unittest.mock import patch

import pytest

from zkstack_wizard.errors import StateIOError, StatePreconditionError
from zkstack_wizard.state import (
    SCHEMA_VERSION,
    STATE_FILE_NAME,
    FileStateStore,
    MemoryStateStore,
    ProvisioningState,
    StorageType,
    get_state_store,
    serialize_state,
)


@pytest.fixture
def file_store(tmp_path):
    return FileStateStore(tmp_path)


class TestProvisioningState:
    """Tests for the ProvisioningState record."""

    def test_defaults_are_unset(self):
        state = ProvisioningState()
        assert state.database_name is None
        assert state.migrations_applied is False
        assert state.identities_generated is False
        assert state.deployed_contracts == {}

    def test_round_trip_through_dict(self):
        state = ProvisioningState(
            l1_network="localhost",
            chain_id=270,
            database_name="demo_localhost",
            migrations_applied=True,
            deployed_contracts={"verifier": "0x" + "1" * 40},
        )
        assert ProvisioningState.from_dict(state.to_dict()) == state

    def test_from_dict_ignores_unknown_fields(self):
        state = ProvisioningState.from_dict({"database_name": "x", "future_field": 1})
        assert state.database_name == "x"

    def test_from_dict_rejects_newer_schema(self):
        with pytest.raises(ValueError, match="newer"):
            ProvisioningState.from_dict({"schema_version": SCHEMA_VERSION + 1})

    def test_step_fields_exclude_bookkeeping(self):
        owned = ProvisioningState.step_fields()
        assert "database_name" in owned
        assert "deployed_contracts" in owned
        assert "updated_at" not in owned
        assert "schema_version" not in owned


class TestMonotonicUpdates:
    """Fields may only move from unset/False to set/True."""

    def test_apply_returns_new_state(self):
        state = ProvisioningState()
        updated = state.apply({"database_name": "demo_localhost", "migrations_applied": True})

        assert updated.database_name == "demo_localhost"
        assert updated.migrations_applied is True
        assert state.database_name is None

    def test_flag_cannot_flip_back(self):
        state = ProvisioningState(migrations_applied=True)
        with pytest.raises(StatePreconditionError):
            state.apply({"migrations_applied": False})

    def test_field_cannot_be_unset(self):
        state = ProvisioningState(database_name="demo_localhost")
        with pytest.raises(StatePreconditionError):
            state.apply({"database_name": None})

    def test_field_cannot_be_overwritten(self):
        state = ProvisioningState(database_name="demo_localhost")
        with pytest.raises(StatePreconditionError, match="refusing to overwrite"):
            state.apply({"database_name": "demo_sepolia"})

    def test_rewriting_same_value_is_allowed(self):
        state = ProvisioningState(database_name="demo_localhost")
        assert state.apply({"database_name": "demo_localhost"}) == state

    def test_unknown_field_rejected(self):
        with pytest.raises(StatePreconditionError, match="Unknown"):
            ProvisioningState().apply({"private_key": "0x00"})

    def test_bookkeeping_fields_are_not_step_owned(self):
        with pytest.raises(StatePreconditionError):
            ProvisioningState().apply({"created_at": "2024-01-01T00:00:00+00:00"})

    def test_contracts_merge(self):
        state = ProvisioningState(deployed_contracts={"multicall3": "0x" + "a" * 40})
        updated = state.apply({"deployed_contracts": {"verifier": "0x" + "b" * 40}})

        assert updated.deployed_contracts == {
            "multicall3": "0x" + "a" * 40,
            "verifier": "0x" + "b" * 40,
        }
        assert updated.has_contracts("multicall3", "verifier")
        assert not state.has_contracts("verifier")

    def test_contract_address_cannot_change(self):
        state = ProvisioningState(deployed_contracts={"verifier": "0x" + "a" * 40})
        with pytest.raises(StatePreconditionError, match="verifier"):
            state.apply({"deployed_contracts": {"verifier": "0x" + "b" * 40}})

    def test_require_database_name_before_creation(self):
        with pytest.raises(StatePreconditionError):
            ProvisioningState().require_database_name()


class TestFileStateStore:
    """Tests for the JSON file store."""

    def test_load_missing_returns_default(self, file_store):
        assert file_store.load("demo") == ProvisioningState()

    def test_save_then_load(self, file_store):
        state = ProvisioningState(l1_network="localhost", chain_id=270, database_name="demo_localhost")
        file_store.save("demo", state)

        loaded = file_store.load("demo")
        assert loaded.database_name == "demo_localhost"
        assert loaded.chain_id == 270
        assert loaded.created_at is not None
        assert loaded.updated_at is not None

    def test_record_location_and_format(self, file_store, tmp_path):
        file_store.save("demo", ProvisioningState(database_name="demo_localhost"))

        path = tmp_path / "demo" / STATE_FILE_NAME
        assert file_store.path_for("demo") == path
        data = json.loads(path.read_text())
        assert data["database_name"] == "demo_localhost"
        assert data["schema_version"] == SCHEMA_VERSION

    def test_created_at_preserved_across_saves(self, file_store):
        file_store.save("demo", ProvisioningState())
        first = file_store.load("demo")
        file_store.save("demo", first.apply({"migrations_applied": True}))

        assert file_store.load("demo").created_at == first.created_at

    def test_file_permissions(self, file_store):
        file_store.save("demo", ProvisioningState())
        mode = os.stat(file_store.path_for("demo")).st_mode
        assert stat.S_IMODE(mode) == 0o600

    def test_corrupt_record_is_fatal(self, file_store):
        path = file_store.path_for("demo")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(StateIOError) as exc_info:
            file_store.load("demo")
        assert exc_info.value.path == path

    @pytest.mark.parametrize("record", ["[]", "null", "3", "\"demo\""])
    def test_non_object_record_is_fatal(self, file_store, record):
        path = file_store.path_for("demo")
        path.parent.mkdir(parents=True)
        path.write_text(record)

        with pytest.raises(StateIOError) as exc_info:
            file_store.load("demo")
        assert exc_info.value.path == path
        assert "JSON object" in str(exc_info.value)

    def test_newer_schema_is_fatal(self, file_store):
        path = file_store.path_for("demo")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"schema_version": SCHEMA_VERSION + 1}))

        with pytest.raises(StateIOError):
            file_store.load("demo")

    def test_crash_during_write_keeps_previous_record(self, file_store, tmp_path):
        file_store.save("demo", ProvisioningState(database_name="demo_localhost"))

        with patch("zkstack_wizard.fileio.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StateIOError):
                file_store.save("demo", ProvisioningState(database_name="demo_localhost", migrations_applied=True))

        assert file_store.load("demo").migrations_applied is False
        assert [p.name for p in (tmp_path / "demo").iterdir()] == [STATE_FILE_NAME]


class TestMemoryStateStore:

    def test_records_are_serialized(self):
        store = MemoryStateStore()
        store.save("demo", ProvisioningState(database_name="demo_localhost"))

        assert json.loads(store.records["demo"])["database_name"] == "demo_localhost"
        assert store.load("demo").database_name == "demo_localhost"
        assert store.save_count == 1

    def test_serialization_is_canonical(self):
        state = ProvisioningState(deployed_contracts={"b": "0x2", "a": "0x1"})
        assert serialize_state(state) == serialize_state(ProvisioningState.from_dict(state.to_dict()))


class TestGetStateStore:

    def test_file_backend(self, tmp_path):
        store = get_state_store(StorageType.FILE, base_dir=tmp_path)
        assert isinstance(store, FileStateStore)

    def test_memory_backend(self):
        assert isinstance(get_state_store(StorageType.MEMORY), MemoryStateStore)
