"""
Provisioning pipeline steps.

Each step owns a slice of ``ProvisioningState``: it reports whether its
effect is already recorded (``is_complete``) and, when it is not, performs
the effect and returns the state fields to record (``run``). Steps never
save state themselves; the orchestrator applies and persists the returned
updates right after ``run`` returns.

Steps backed by other tooling (funding, contract deployment, genesis) are
delegated to hooks, see ``zkstack_wizard.hooks``.
"""

from __future__ import annotations

import functools
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import yaml

from zkstack_wizard.config import WizardConfig
from zkstack_wizard.database import DatabaseServer, isolated_database_name
from zkstack_wizard.errors import (
    HookOutputError,
    InstanceMismatchError,
    StateIOError,
    StatePreconditionError,
)
from zkstack_wizard.fileio import atomic_write_text
from zkstack_wizard.hooks import HookRunner
from zkstack_wizard.instances import instance_dir
from zkstack_wizard.keystore import (
    FileSecretStore,
    KeyGenerator,
    RandomKeyGenerator,
    SecretStore,
    secret_ref,
)
from zkstack_wizard.l1 import L1Client, L1Network
from zkstack_wizard.migrations import MigrationHistory, PostgresMigrationHistory, apply_migrations
from zkstack_wizard.retry import wait_until
from zkstack_wizard.state import ProvisioningState
from zkstack_wizard.versions import DEFAULT_VERSION, HyperchainVersion

logger = logging.getLogger(__name__)

CONFIGS_DIR_NAME = "configs"
CHAIN_CONFIG_FILE_NAME = "chain.yaml"
MANIFEST_FILE_NAME = "manifest.yaml"

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


# =============================================================================
# Context
# =============================================================================


@dataclass
class StepContext:
    """
    Everything a step needs besides the state: invocation parameters and the
    collaborators that perform side effects.
    """
    instance: str
    l1_network: L1Network
    chain_id: int
    l1_rpc_url: str
    data_dir: Path
    instance_dir: Path
    migrations_dir: Path
    database_server: DatabaseServer
    history_factory: Callable[[str], MigrationHistory]
    l1_client: L1Client
    key_generator: KeyGenerator
    secret_store: SecretStore
    hooks: HookRunner
    store_probe_attempts: int = 30
    store_probe_interval: float = 0.5
    l1_probe_attempts: int = 100
    l1_probe_interval: float = 0.2
    version: HyperchainVersion = DEFAULT_VERSION
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def from_config(
        cls,
        config: WizardConfig,
        instance: str,
        l1_network: L1Network,
        chain_id: int,
        l1_rpc_url: str,
    ) -> "StepContext":
        data_dir = config.get_data_path()
        path = instance_dir(data_dir, instance)
        return cls(
            instance=instance,
            l1_network=l1_network,
            chain_id=chain_id,
            l1_rpc_url=l1_rpc_url,
            data_dir=data_dir,
            instance_dir=path,
            migrations_dir=config.get_migrations_path(),
            database_server=DatabaseServer(config.postgres_url, connect_timeout=config.connect_timeout_s),
            history_factory=functools.partial(
                PostgresMigrationHistory, connect_timeout=config.connect_timeout_s
            ),
            l1_client=L1Client(l1_rpc_url, timeout=config.l1_rpc_timeout_s),
            key_generator=RandomKeyGenerator(),
            secret_store=FileSecretStore(path),
            hooks=HookRunner(config.hook_commands, cwd=path, timeout=config.hook_timeout_s),
            store_probe_attempts=config.store_probe_attempts,
            store_probe_interval=config.store_probe_interval_s,
            l1_probe_attempts=config.l1_probe_attempts,
            l1_probe_interval=config.l1_probe_interval_s,
        )

    def database_url(self, state: ProvisioningState) -> str:
        """
        URL of the instance database.

        Raises:
            StatePreconditionError: If the database has not been created yet
        """
        return self.database_server.database_url(state.require_database_name())

    def private_key(self, ref: Optional[str]) -> Optional[str]:
        if ref is None:
            return None
        key = self.secret_store.get(ref)
        if key is None:
            raise StatePreconditionError(
                f"Identity '{ref}' is recorded in the provisioning state "
                f"but missing from the secret store"
            )
        return key

    def hook_env(self, state: ProvisioningState) -> Dict[str, str]:
        """Environment handed to hook commands, limited to what is known so far."""
        env = {
            "ZKSTACK_INSTANCE": self.instance,
            "ZKSTACK_L1_NETWORK": self.l1_network.value,
            "ZKSTACK_CHAIN_ID": str(self.chain_id),
            "ZKSTACK_L1_RPC_URL": self.l1_rpc_url,
            "ZKSTACK_CONTRACTS": json.dumps(state.deployed_contracts, sort_keys=True),
        }
        if state.database_name is not None:
            env["ZKSTACK_DATABASE_URL"] = self.database_url(state)
        admin_key = self.private_key(state.admin_identity)
        if admin_key is not None:
            env["ZKSTACK_ADMIN_PRIVATE_KEY"] = admin_key
        operator_key = self.private_key(state.operator_identity)
        if operator_key is not None:
            env["ZKSTACK_OPERATOR_PRIVATE_KEY"] = operator_key
        return env


# =============================================================================
# Step contract
# =============================================================================


class ProvisioningStep(ABC):
    """
    A single idempotent unit of provisioning.

    ``is_complete`` must be derived from the state alone. ``run`` performs the
    side effect and returns the state fields to record; it must not mutate
    ``state``.
    """

    name: str = ""

    @abstractmethod
    def is_complete(self, state: ProvisioningState) -> bool:
        ...

    @abstractmethod
    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        ...

    def check(self, ctx: StepContext, state: ProvisioningState) -> None:
        """Validate the invocation against the state before anything else happens."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


# =============================================================================
# Built-in steps
# =============================================================================


class RecordInstanceParameters(ProvisioningStep):
    name = "record-instance-parameters"

    def check(self, ctx: StepContext, state: ProvisioningState) -> None:
        if state.l1_network is None:
            return
        if state.l1_network != ctx.l1_network.value or state.chain_id != ctx.chain_id:
            raise InstanceMismatchError(
                f"Hyperchain '{ctx.instance}' was initialized with --l1={state.l1_network} "
                f"--chain-id={state.chain_id}, refusing to continue it with "
                f"--l1={ctx.l1_network.value} --chain-id={ctx.chain_id}"
            )

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.l1_network is not None

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        return {"l1_network": ctx.l1_network.value, "chain_id": ctx.chain_id}


class WaitForStore(ProvisioningStep):
    """Block until the Postgres server accepts connections."""
    name = "wait-for-store"

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.database_name is not None and state.migrations_applied

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        wait_until(
            ctx.database_server.probe,
            max_attempts=ctx.store_probe_attempts,
            interval=ctx.store_probe_interval,
            resource=ctx.database_server.display_name,
            sleep=ctx.sleep,
            clock=ctx.clock,
        )
        return {}


class CreateIsolatedDatabase(ProvisioningStep):
    name = "create-isolated-database"

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.database_name is not None

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        name = isolated_database_name(ctx.instance, ctx.l1_network.value)
        if ctx.database_server.database_exists(name):
            # Created by an earlier run that died before recording it
            logger.warning(f"Database {name} already exists, adopting it")
        else:
            ctx.database_server.create_database(name)
        return {"database_name": name}


class ApplySchemaMigrations(ProvisioningStep):
    name = "apply-schema-migrations"

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.migrations_applied

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        history = ctx.history_factory(ctx.database_url(state))
        apply_migrations(history, ctx.migrations_dir)
        return {"migrations_applied": True}


class GenerateIdentities(ProvisioningStep):
    """
    Generate the admin and operator keys.

    Keys already present in the secret store are reused, so a crash between
    storing a key and saving the state never produces a second, unfunded key.
    """
    name = "generate-identities"
    roles = ("admin", "operator")

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.identities_generated

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        updates = {}
        for role in self.roles:
            ref = secret_ref(ctx.instance, role)
            if ctx.secret_store.get(ref) is None:
                ctx.secret_store.put(ref, ctx.key_generator.generate())
                logger.info(f"Generated {role} key for {ctx.instance}")
            else:
                logger.info(f"Reusing stored {role} key for {ctx.instance}")
            updates[f"{role}_identity"] = ref
        return updates


class WaitForL1(ProvisioningStep):
    """
    Block until the L1 node answers JSON-RPC.

    Only needed while some step that talks to L1 is still pending.
    """
    name = "wait-for-l1"

    def __init__(self, dependents: Sequence[ProvisioningStep] = ()):
        self.dependents = list(dependents)

    def is_complete(self, state: ProvisioningState) -> bool:
        return all(step.is_complete(state) for step in self.dependents)

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        wait_until(
            ctx.l1_client.probe,
            max_attempts=ctx.l1_probe_attempts,
            interval=ctx.l1_probe_interval,
            resource=f"L1 RPC at {ctx.l1_rpc_url}",
            sleep=ctx.sleep,
            clock=ctx.clock,
        )
        return {}


# =============================================================================
# Hook-backed steps
# =============================================================================


class HookStep(ProvisioningStep):
    """A step whose side effect is performed by the configured hook command."""

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        output = ctx.hooks.run(self.name, ctx.hook_env(state))
        return self.updates_from(output)

    @abstractmethod
    def updates_from(self, output: Dict[str, Any]) -> Dict[str, Any]:
        ...


class FlagHookStep(HookStep):
    """Hook step that records a single boolean once its hook succeeds."""
    flag: str = ""

    def is_complete(self, state: ProvisioningState) -> bool:
        return getattr(state, self.flag)

    def updates_from(self, output: Dict[str, Any]) -> Dict[str, Any]:
        return {self.flag: True}


class FundIdentities(FlagHookStep):
    name = "fund-identities"
    flag = "funds_provisioned"


class RunGenesis(FlagHookStep):
    name = "run-genesis"
    flag = "genesis_completed"


def parse_contract_addresses(step: str, output: Dict[str, Any]) -> Dict[str, str]:
    """
    Validate hook output of the form ``{"<contract>": "0x<40 hex>"}``.

    Raises:
        HookOutputError: If any value is not an address
    """
    addresses = {}
    for contract, address in output.items():
        if not isinstance(address, str) or not _ADDRESS_PATTERN.match(address):
            raise HookOutputError(
                f"Hook for step '{step}' reported an invalid address for '{contract}': {address!r}"
            )
        addresses[contract] = address
    return addresses


class ContractDeploymentStep(HookStep):
    """
    Hook step that deploys contracts and reports their addresses.

    Complete once every contract in ``required_contracts`` is recorded and,
    when set, ``flag`` is True.
    """
    required_contracts: Tuple[str, ...] = ()
    flag: Optional[str] = None

    def is_complete(self, state: ProvisioningState) -> bool:
        if self.flag is not None and not getattr(state, self.flag):
            return False
        return state.has_contracts(*self.required_contracts)

    def updates_from(self, output: Dict[str, Any]) -> Dict[str, Any]:
        addresses = parse_contract_addresses(self.name, output)
        missing = [name for name in self.required_contracts if name not in addresses]
        if missing:
            raise HookOutputError(
                f"Hook for step '{self.name}' did not report addresses for: {', '.join(missing)}"
            )
        updates: Dict[str, Any] = {}
        if addresses:
            updates["deployed_contracts"] = addresses
        if self.flag is not None:
            updates[self.flag] = True
        return updates


class DeployPrerequisiteContracts(ContractDeploymentStep):
    name = "deploy-prerequisite-contracts"
    required_contracts = ("create2_factory", "multicall3")


class DeployVerifier(ContractDeploymentStep):
    name = "deploy-verifier"
    required_contracts = ("verifier",)


class DeployL1Contracts(ContractDeploymentStep):
    name = "deploy-l1-contracts"
    flag = "l1_contracts_deployed"


class DeployL2Contracts(ContractDeploymentStep):
    name = "deploy-l2-contracts"
    flag = "l2_contracts_deployed"


# =============================================================================
# Derived configuration
# =============================================================================


def chain_config(ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
    """Configuration document for the hyperchain's services."""
    return {
        "name": ctx.instance,
        "chain_id": state.chain_id,
        "l1": {
            "network": state.l1_network,
            "rpc_url": ctx.l1_rpc_url,
        },
        "database": {
            "name": state.require_database_name(),
            "url": ctx.database_url(state),
        },
        # References into the instance secret store, not the keys
        "identities": {
            "admin": state.admin_identity,
            "operator": state.operator_identity,
        },
        "contracts": dict(sorted(state.deployed_contracts.items())),
        "server": {
            "image": ctx.version.server_image_ref,
            "git_repo": ctx.version.server_git_repo,
            "git_revision": ctx.version.server_git_revision,
        },
    }


class GenerateConfigs(ProvisioningStep):
    """Write ``<instance>/configs/chain.yaml``."""
    name = "generate-configs"

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.configs_generated

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        path = ctx.instance_dir / CONFIGS_DIR_NAME / CHAIN_CONFIG_FILE_NAME
        content = yaml.safe_dump(chain_config(ctx, state), sort_keys=False, default_flow_style=False)
        try:
            atomic_write_text(path, content, mode=0o600)
        except OSError as e:
            raise StateIOError(f"Unable to write chain config ({e})", path) from e
        logger.info(f"Wrote chain config to {path}")
        return {"configs_generated": True}


def load_manifest(path: Path) -> Dict[str, Any]:
    """
    Read the deployment manifest, empty if it does not exist yet.

    Raises:
        StateIOError: If the manifest exists but is unreadable or malformed
    """
    if not path.exists():
        return {"instances": {}}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise StateIOError(f"Unable to read deployment manifest ({e})", path) from e
    if not isinstance(data, dict) or not isinstance(data.get("instances", {}), dict):
        raise StateIOError("Deployment manifest has an unexpected layout", path)
    data.setdefault("instances", {})
    return data


class UpdateDeploymentManifest(ProvisioningStep):
    """Upsert this instance in ``<data_dir>/manifest.yaml``."""
    name = "update-deployment-manifest"

    def is_complete(self, state: ProvisioningState) -> bool:
        return state.manifest_updated

    def run(self, ctx: StepContext, state: ProvisioningState) -> Dict[str, Any]:
        path = ctx.data_dir / MANIFEST_FILE_NAME
        manifest = load_manifest(path)
        manifest["instances"][ctx.instance] = {
            "l1_network": state.l1_network,
            "chain_id": state.chain_id,
            "database": state.require_database_name(),
            "path": str(ctx.instance_dir),
            "config": str(ctx.instance_dir / CONFIGS_DIR_NAME / CHAIN_CONFIG_FILE_NAME),
            "server_version": ctx.version.to_dict(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            atomic_write_text(path, yaml.safe_dump(manifest, sort_keys=True))
        except OSError as e:
            raise StateIOError(f"Unable to write deployment manifest ({e})", path) from e
        logger.info(f"Recorded {ctx.instance} in {path}")
        return {"manifest_updated": True}


# =============================================================================
# Pipeline
# =============================================================================


def build_pipeline() -> List[ProvisioningStep]:
    """The canonical provisioning pipeline, in execution order."""
    l1_steps: List[ProvisioningStep] = [
        FundIdentities(),
        DeployPrerequisiteContracts(),
        DeployVerifier(),
        RunGenesis(),
        DeployL1Contracts(),
        DeployL2Contracts(),
    ]
    return [
        RecordInstanceParameters(),
        WaitForStore(),
        CreateIsolatedDatabase(),
        ApplySchemaMigrations(),
        GenerateIdentities(),
        WaitForL1(dependents=l1_steps),
        *l1_steps,
        GenerateConfigs(),
        UpdateDeploymentManifest(),
    ]


PIPELINE_STEP_NAMES = tuple(step.name for step in build_pipeline())
