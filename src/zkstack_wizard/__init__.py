"""
zkstack-wizard - Resumable provisioning of local ZK Stack hyperchains.

A hyperchain instance is brought up by a fixed pipeline of steps: wait for
Postgres, create the instance database, apply the server's schema
migrations, generate operator identities, then hand the L1-facing work
(funding, contract deployment, genesis) to configured hooks and write the
derived configuration. Progress is persisted after every step, so an
interrupted run is resumed by running the same command again.

Example usage:
    from zkstack_wizard.config import get_config
    from zkstack_wizard.l1 import L1Network
    from zkstack_wizard.orchestrator import create_orchestrator

    report = create_orchestrator(get_config(), "demo", L1Network.LOCALHOST, 270).run()
"""

__version__ = "0.1.0"
__all__ = [
    "Orchestrator",
    "ProvisioningState",
    "apply_migrations",
    "wait_until",
    "__version__",
]


# Lazy imports keep `zkstack-wizard --help` from loading psycopg and OpenTelemetry
def __getattr__(name: str):
    if name == "Orchestrator":
        from zkstack_wizard.orchestrator import Orchestrator
        return Orchestrator
    if name == "ProvisioningState":
        from zkstack_wizard.state import ProvisioningState
        return ProvisioningState
    if name == "apply_migrations":
        from zkstack_wizard.migrations import apply_migrations
        return apply_migrations
    if name == "wait_until":
        from zkstack_wizard.retry import wait_until
        return wait_until
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
