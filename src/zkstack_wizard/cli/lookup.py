"""zkstack-wizard CLI - Instance lookup commands (where, status)."""

import json
from typing import List, Optional

import click
import psycopg

from zkstack_wizard.config import WizardConfig, get_config
from zkstack_wizard.database import DatabaseServer
from zkstack_wizard.errors import WizardError
from zkstack_wizard.instances import LookupStatus, locate
from zkstack_wizard.migrations import PostgresMigrationHistory, verify_migrations
from zkstack_wizard.state import ProvisioningState, get_state_store
from zkstack_wizard.steps import build_pipeline
from zkstack_wizard.versions import APP_NAME


@click.command()
@click.argument("name")
def where(name):
    """Print the location of a hyperchain's data."""
    lookup = locate(get_config().get_data_path(), name)

    if lookup.status == LookupStatus.NO_DATA_DIR:
        click.echo(f"Looks like the data directory for {APP_NAME} does not exist yet ({lookup.data_dir})")
        click.echo("Try initializing at least one hyperchain")
        return

    if lookup.status == LookupStatus.NOT_FOUND:
        click.echo(f"Looks like {name} has not been initialized")
        if not lookup.available:
            click.echo("There are no known hyperchains at this moment")
            click.echo("Try initializing one")
            return
        click.echo("Available hyperchains:")
        for path in lookup.available:
            click.echo(f" - {path.name} at {path}")
        return

    click.echo(f"{name} is located at {lookup.path}")


def _step_rows(state: ProvisioningState):
    for step in build_pipeline():
        yield step.name, "done" if step.is_complete(state) else "pending"


def _verify_schema(config: WizardConfig, state: ProvisioningState) -> Optional[List[int]]:
    """Pending migration versions of the instance database, or None if it has none yet."""
    if state.database_name is None:
        return None

    server = DatabaseServer(config.postgres_url, connect_timeout=config.connect_timeout_s)
    history = PostgresMigrationHistory(
        server.database_url(state.database_name), connect_timeout=config.connect_timeout_s
    )
    try:
        return verify_migrations(history, config.get_migrations_path())
    except WizardError as e:
        raise click.ClickException(f"Schema verification failed: {e}")
    except psycopg.Error as e:
        raise click.ClickException(f"Unable to verify schema on {server.display_name}: {e}")


@click.command()
@click.argument("name")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table",
              help="Output format")
@click.option("--verify", is_flag=True,
              help="Re-check applied migrations against the migration files")
def status(name, output_format, verify):
    """
    Show the persisted provisioning state of a hyperchain.

    Lists which pipeline steps are done and which a rerun of init would
    still execute.

    With --verify, every applied migration is checked against its file, so
    a migration edited after it was applied is reported even though init
    no longer runs the applier.
    """
    config = get_config()
    lookup = locate(config.get_data_path(), name)
    if lookup.status != LookupStatus.FOUND:
        raise click.ClickException(f"{name} has not been initialized")

    store = get_state_store(base_dir=config.get_data_path())
    try:
        state = store.load(name)
    except WizardError as e:
        raise click.ClickException(str(e))

    steps = list(_step_rows(state))
    pending = _verify_schema(config, state) if verify else None

    if output_format == "json":
        payload = {
            "name": name,
            "path": str(lookup.path),
            "state": state.to_dict(),
            "steps": [{"name": step, "status": s} for step, s in steps],
        }
        if pending is not None:
            payload["schema"] = {"verified": True, "pending": pending}
        click.echo(json.dumps(payload, indent=2))
        return

    click.echo(f"Hyperchain: {name}")
    click.echo(f"Location:   {lookup.path}")
    if state.l1_network is not None:
        click.echo(f"L1:         {state.l1_network} (chain id {state.chain_id})")
    if state.database_name is not None:
        click.echo(f"Database:   {state.database_name}")
    if pending is not None:
        detail = f"{len(pending)} pending" if pending else "up to date"
        click.echo(f"Schema:     verified, {detail}")
    elif verify:
        click.echo("Schema:     no database yet")
    click.echo()

    width = max(len(step) for step, _ in steps)
    for step, s in steps:
        marker = click.style(s, fg="green" if s == "done" else "yellow")
        click.echo(f"  {step.ljust(width)}  {marker}")

    if state.deployed_contracts:
        click.echo()
        click.echo("Contracts:")
        for contract, address in sorted(state.deployed_contracts.items()):
            click.echo(f"  {contract}: {address}")
