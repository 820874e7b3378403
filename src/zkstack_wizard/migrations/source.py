"""
Migration script discovery.

Migrations live in one flat directory, one file per version and direction::

    20211026134308_init.up.sql
    20211026134308_init.down.sql
    20220120160234_add_tx_index.sql        # no direction: treated as up

The checksum is the SHA-384 digest of the raw file bytes, the same digest
the hyperchain server's own migrator records, so histories written here and
by the server agree.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Union

from zkstack_wizard.errors import MigrationSourceError

logger = logging.getLogger(__name__)

_FILENAME_PATTERN = re.compile(
    r"^(?P<version>\d+)_(?P<description>.+?)(?:\.(?P<direction>up|down))?\.sql$"
)


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class MigrationFile:
    """A single versioned migration script."""
    version: int
    description: str
    direction: Direction
    checksum: bytes
    script: str
    path: Path


def checksum(content: bytes) -> bytes:
    """Content hash recorded for an applied migration."""
    return hashlib.sha384(content).digest()


def parse_migration(path: Path) -> MigrationFile:
    """
    Parse one migration file.

    Raises:
        MigrationSourceError: If the name does not follow the naming scheme
            or the file cannot be read
    """
    match = _FILENAME_PATTERN.match(path.name)
    if match is None:
        raise MigrationSourceError(
            "Migration file name must look like '<version>_<description>.up.sql'", path
        )

    try:
        content = path.read_bytes()
        script = content.decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MigrationSourceError(f"Unable to read migration ({e})", path) from e

    return MigrationFile(
        version=int(match.group("version")),
        description=match.group("description").replace("_", " "),
        direction=Direction(match.group("direction") or "up"),
        checksum=checksum(content),
        script=script,
        path=path,
    )


def discover_migrations(directory: Union[str, Path]) -> List[MigrationFile]:
    """
    Discover all migration files in ``directory``, ascending by version.

    Both directions are returned; callers filter. Files without the ``.sql``
    extension are ignored.

    Raises:
        MigrationSourceError: If the directory is missing, a file is
            malformed, or two files claim the same version and direction
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise MigrationSourceError("Migrations directory does not exist", directory)

    migrations: List[MigrationFile] = []
    seen: Dict[tuple, Path] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix != ".sql":
            continue

        migration = parse_migration(path)
        key = (migration.version, migration.direction)
        if key in seen:
            raise MigrationSourceError(
                f"Duplicate {migration.direction.value} migration for version "
                f"{migration.version} (also defined in {seen[key].name})",
                path,
            )
        seen[key] = path
        migrations.append(migration)

    migrations.sort(key=lambda m: (m.version, m.direction.value))
    logger.debug(f"Discovered {len(migrations)} migration files in {directory}")
    return migrations


def up_migrations(directory: Union[str, Path]) -> List[MigrationFile]:
    """Up-direction migrations in ascending version order."""
    return [m for m in discover_migrations(directory) if m.direction == Direction.UP]
