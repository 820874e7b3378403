"""zkstack-wizard CLI - Provisioning command (init)."""

import shutil
from typing import List

import click

from zkstack_wizard.config import get_config
from zkstack_wizard.errors import WizardError, error_chain
from zkstack_wizard.instances import ensure_instance_dir, validate_instance_name
from zkstack_wizard.l1 import L1Network
from zkstack_wizard.orchestrator import create_orchestrator
from zkstack_wizard.telemetry import configure_tracing, flush_tracing

PREREQUISITES = ("docker", "docker-compose")


class ProvisioningFailed(click.ClickException):
    """Provisioning stopped; prints the whole cause chain."""

    exit_code = 1

    def __init__(self, error: BaseException):
        self.error = error
        super().__init__(str(error))

    def show(self, file=None) -> None:
        click.echo("A following error occurred:", file=file, err=True)
        for line in error_chain(self.error):
            for part in line.splitlines():
                click.echo(f"  {part}", file=file, err=True)
        click.echo("Unable to continue, exiting.", file=file, err=True)


def missing_prerequisites() -> List[str]:
    """Names of required tools that are not on PATH."""
    return [name for name in PREREQUISITES if shutil.which(name) is None]


def _check_prerequisites() -> None:
    missing = missing_prerequisites()
    if missing:
        lines = ["Prerequisite check has failed"]
        for name in missing:
            lines.append(f"  {name} is not available")
        lines.append("Make sure these tools are installed and on your PATH")
        raise click.ClickException("\n".join(lines))


@click.command()
@click.argument("name")
@click.option("--l1", "l1_network", type=click.Choice([n.value for n in L1Network]), required=True,
              help="L1 network the hyperchain settles on")
@click.option("--chain-id", type=click.IntRange(min=1), required=True, help="Chain id of the hyperchain")
@click.option("--rpc-url", default=None, help="L1 JSON-RPC endpoint (required unless --l1 localhost)")
@click.option("--skip-prerequisites", is_flag=True, help="Do not check for docker and docker-compose")
def init(name, l1_network, chain_id, rpc_url, skip_prerequisites):
    """
    Initialize a new hyperchain or continue an interrupted initialization.

    Steps already recorded in the hyperchain's state are skipped, so running
    the same command again after a failure resumes where it stopped.

    Examples:
        zkstack-wizard init demo --l1 localhost --chain-id 270
        zkstack-wizard init demo --l1 sepolia --chain-id 271 --rpc-url https://rpc.sepolia.org
    """
    try:
        validate_instance_name(name)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="NAME")

    network = L1Network(l1_network)
    if network != L1Network.LOCALHOST and not rpc_url:
        raise click.UsageError(f"--rpc-url is required with --l1 {network.value}")

    if not skip_prerequisites:
        _check_prerequisites()

    config = get_config()
    tracing = bool(config.otlp_endpoint) and configure_tracing(config.otlp_endpoint)

    try:
        dirs = ensure_instance_dir(config.get_data_path(), name)
        if dirs.created_data_dir:
            click.echo(f"Initialized data directory at {dirs.data_dir}")
            click.echo("All future hyperchain data will be stored there")
        if dirs.created_instance_dir:
            click.echo(f"Initialized hyperchain directory for {name} at {dirs.instance_dir}")
        else:
            click.echo(f"Continuing initialization of {name} at {dirs.instance_dir}")

        orchestrator = create_orchestrator(config, name, network, chain_id, rpc_url)
        report = orchestrator.run()
    except (WizardError, OSError) as e:
        raise ProvisioningFailed(e) from e
    finally:
        if tracing:
            flush_tracing()

    if report.up_to_date:
        click.echo(f"{name} is already fully initialized")
    else:
        click.echo(
            f"{name} initialized: {len(report.executed)} steps run, "
            f"{len(report.skipped)} already done"
        )
