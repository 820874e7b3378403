"""
Schema migrations for the instance database.

Public API::

    from zkstack_wizard.migrations import (
        # Source
        MigrationFile,
        Direction,
        discover_migrations,
        up_migrations,
        # History
        MigrationRecord,
        MigrationHistory,
        PostgresMigrationHistory,
        # Applier
        apply_migrations,
        verify_migrations,
    )
"""

from zkstack_wizard.migrations.applier import apply_migrations, verify_migrations
from zkstack_wizard.migrations.history import (
    HISTORY_TABLE,
    MigrationHistory,
    MigrationRecord,
    PostgresMigrationHistory,
)
from zkstack_wizard.migrations.source import (
    Direction,
    MigrationFile,
    checksum,
    discover_migrations,
    up_migrations,
)

__all__ = [
    "MigrationFile",
    "Direction",
    "checksum",
    "discover_migrations",
    "up_migrations",
    "HISTORY_TABLE",
    "MigrationRecord",
    "MigrationHistory",
    "PostgresMigrationHistory",
    "apply_migrations",
    "verify_migrations",
]
