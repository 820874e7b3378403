"""
Checksum-verified migration applier.

Brings a database's migration history into agreement with the migration
files on disk, refusing to go past any inconsistency:

- a dirty version left by an interrupted run blocks everything
- an applied version whose file changed stops the run
- unseen versions are applied one transaction each, in ascending order

``verify_migrations`` runs the same checks without applying anything, for
operators inspecting an instance whose schema is already recorded as applied.

Usage::

    from zkstack_wizard.migrations import PostgresMigrationHistory, apply_migrations

    applied = apply_migrations(PostgresMigrationHistory(conninfo), migrations_dir)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Tuple, Union

from zkstack_wizard.errors import ChecksumMismatch, DirtyMigration
from zkstack_wizard.migrations.history import MigrationHistory, MigrationRecord
from zkstack_wizard.migrations.source import MigrationFile, up_migrations

logger = logging.getLogger(__name__)


def _load_history(
    history: MigrationHistory, migrations_dir: Union[str, Path]
) -> Tuple[Dict[int, MigrationRecord], List[MigrationFile]]:
    history.ensure_table()

    dirty = history.dirty_version()
    if dirty is not None:
        raise DirtyMigration(dirty)

    records = history.applied()
    migrations = up_migrations(migrations_dir)

    known_versions = {m.version for m in migrations}
    for version in sorted(set(records) - known_versions):
        logger.warning(
            f"Migration {version} ({records[version].description}) is applied "
            f"but its file is missing from {migrations_dir}"
        )
    return records, migrations


def apply_migrations(history: MigrationHistory, migrations_dir: Union[str, Path]) -> int:
    """
    Apply every unseen up-migration from ``migrations_dir``.

    The history's resources are released on every exit path.

    Args:
        history: Store-side migration history
        migrations_dir: Directory holding the migration files

    Returns:
        Number of newly applied migrations (0 when already up to date)

    Raises:
        DirtyMigration: A previous run left a migration half-applied
        ChecksumMismatch: An applied migration's file no longer matches
        MigrationSourceError: The migration directory is unusable
    """
    try:
        records, migrations = _load_history(history, migrations_dir)

        applied_count = 0
        for migration in migrations:
            record = records.get(migration.version)
            if record is not None:
                if record.checksum != migration.checksum:
                    raise ChecksumMismatch(migration.version, record.checksum, migration.checksum)
                continue

            logger.info(f"Applying migration {migration.version} ({migration.description})")
            history.mark_dirty(migration)
            history.apply(migration)
            applied_count += 1

        if applied_count:
            logger.info(f"Applied {applied_count} migrations")
        else:
            logger.info("Database schema is up to date")
        return applied_count
    finally:
        history.close()


def verify_migrations(history: MigrationHistory, migrations_dir: Union[str, Path]) -> List[int]:
    """
    Check every applied migration against its file without applying anything.

    Returns:
        Versions on disk that are not applied yet, ascending

    Raises:
        DirtyMigration: A previous run left a migration half-applied
        ChecksumMismatch: An applied migration's file no longer matches
        MigrationSourceError: The migration directory is unusable
    """
    try:
        records, migrations = _load_history(history, migrations_dir)

        pending = []
        for migration in migrations:
            record = records.get(migration.version)
            if record is None:
                pending.append(migration.version)
            elif record.checksum != migration.checksum:
                raise ChecksumMismatch(migration.version, record.checksum, migration.checksum)
        return pending
    finally:
        history.close()
