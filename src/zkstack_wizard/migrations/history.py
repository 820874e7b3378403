"""
Migration history kept inside the target database.

The history table is the source of truth for migration status, independent
of the provisioning state. Its layout matches the one the hyperchain
server's migrator uses, so the server recognises the migrations applied
here::

    _sqlx_migrations
        version         BIGINT PRIMARY KEY
        description     TEXT
        installed_on    TIMESTAMPTZ     -- applied at
        success         BOOLEAN         -- false while in progress (dirty)
        checksum        BYTEA           -- SHA-384 of the script
        execution_time  BIGINT          -- nanoseconds

A migration is first recorded with ``success = false`` in its own commit.
The script then runs in a transaction that also flips the row to
``success = true``; a crash anywhere in between leaves a dirty row behind.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Protocol, runtime_checkable

import psycopg
from psycopg.rows import dict_row

from zkstack_wizard.errors import StatePreconditionError
from zkstack_wizard.migrations.source import MigrationFile

logger = logging.getLogger(__name__)

HISTORY_TABLE = "_sqlx_migrations"

_CREATE_HISTORY_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {HISTORY_TABLE} (
    version BIGINT PRIMARY KEY,
    description TEXT NOT NULL,
    installed_on TIMESTAMPTZ NOT NULL DEFAULT now(),
    success BOOLEAN NOT NULL,
    checksum BYTEA NOT NULL,
    execution_time BIGINT NOT NULL
)
"""


@dataclass(frozen=True)
class MigrationRecord:
    """A completed migration as recorded in the history table."""
    version: int
    description: str
    checksum: bytes
    applied_at: Optional[datetime]


@runtime_checkable
class MigrationHistory(Protocol):
    """
    Store-side operations the migration applier needs.

    ``mark_dirty`` must be durable before ``apply`` starts; ``apply`` must
    run the script and clear the dirty marker in a single transaction.
    """

    def ensure_table(self) -> None:
        ...

    def dirty_version(self) -> Optional[int]:
        ...

    def applied(self) -> Dict[int, MigrationRecord]:
        ...

    def mark_dirty(self, migration: MigrationFile) -> None:
        ...

    def apply(self, migration: MigrationFile) -> None:
        ...

    def close(self) -> None:
        ...


class PostgresMigrationHistory:
    """
    History table in a Postgres database, accessed with psycopg.

    Holds one autocommit connection, opened lazily and released by
    ``close()``; use it as a context manager to scope the connection.
    """

    def __init__(self, conninfo: str, connect_timeout: int = 5):
        self.conninfo = conninfo
        self.connect_timeout = connect_timeout
        self._conn: Optional[psycopg.Connection] = None

    def __enter__(self) -> "PostgresMigrationHistory":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _connect(self) -> psycopg.Connection:
        if self._conn is None or self._conn.closed:
            self._conn = psycopg.connect(
                self.conninfo,
                autocommit=True,
                connect_timeout=self.connect_timeout,
                row_factory=dict_row,
            )
        return self._conn

    def ensure_table(self) -> None:
        """Create the history table if it is missing."""
        self._connect().execute(_CREATE_HISTORY_TABLE_SQL)

    def dirty_version(self) -> Optional[int]:
        row = self._connect().execute(
            f"SELECT version FROM {HISTORY_TABLE} WHERE success = false "
            f"ORDER BY version LIMIT 1"
        ).fetchone()
        return None if row is None else int(row["version"])

    def applied(self) -> Dict[int, MigrationRecord]:
        rows = self._connect().execute(
            f"SELECT version, description, checksum, installed_on FROM {HISTORY_TABLE} "
            f"WHERE success = true ORDER BY version"
        ).fetchall()
        return {
            int(row["version"]): MigrationRecord(
                version=int(row["version"]),
                description=row["description"],
                checksum=bytes(row["checksum"]),
                applied_at=row["installed_on"],
            )
            for row in rows
        }

    def mark_dirty(self, migration: MigrationFile) -> None:
        """Record ``migration`` as in progress; committed immediately."""
        self._connect().execute(
            f"INSERT INTO {HISTORY_TABLE} "
            f"(version, description, success, checksum, execution_time) "
            f"VALUES (%s, %s, false, %s, -1)",
            (migration.version, migration.description, migration.checksum),
        )

    def apply(self, migration: MigrationFile) -> None:
        """Run the script and mark it applied, all in one transaction."""
        conn = self._connect()
        with conn.transaction():
            started = time.perf_counter_ns()
            # No parameters: sent as a simple query, so multi-statement
            # scripts and literal '%' pass through untouched
            conn.execute(migration.script)
            elapsed = time.perf_counter_ns() - started

            cursor = conn.execute(
                f"UPDATE {HISTORY_TABLE} "
                f"SET success = true, checksum = %s, installed_on = now(), execution_time = %s "
                f"WHERE version = %s AND success = false",
                (migration.checksum, elapsed, migration.version),
            )
            if cursor.rowcount != 1:
                raise StatePreconditionError(
                    f"Migration {migration.version} was not marked in progress before applying"
                )

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            logger.debug("Closed migration history connection")
        self._conn = None
