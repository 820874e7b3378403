"""
zkstack-wizard CLI - Provision and inspect local hyperchain instances.

Commands:
    zkstack-wizard init     Provision a hyperchain (resumes an interrupted run)
    zkstack-wizard where    Print where a hyperchain's data lives
    zkstack-wizard status   Show the persisted provisioning state
"""

import click

from zkstack_wizard import __version__
from zkstack_wizard.config import get_config
from zkstack_wizard.logger import configure_logging

from .provision import init
from .lookup import status, where


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", type=click.Choice(["debug", "info", "warning", "error"]), default=None,
              help="Override ZKSTACK_WIZARD_LOG_LEVEL")
def main(log_level):
    """zkstack-wizard - Resumable hyperchain provisioning."""
    config = get_config()
    configure_logging(log_level or config.log_level, config.log_format)


main.add_command(init)
main.add_command(where)
main.add_command(status)


if __name__ == "__main__":
    main()
