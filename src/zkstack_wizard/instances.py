"""
Instance data directories.

Every hyperchain instance keeps its state, secrets and generated configs in
its own directory under the data directory::

    <data_dir>/
    ├── manifest.yaml
    ├── <instance>/
    │   ├── .init_state.json
    │   ├── .secrets.json
    │   └── configs/
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

_INSTANCE_NAME_PATTERN = re.compile(r"[a-z][a-z0-9_]{0,40}")


def validate_instance_name(name: str) -> str:
    """
    Check that ``name`` is usable as a directory and database name prefix.

    Names are used verbatim in the database name, so only lowercase letters,
    digits and '_' are accepted.

    Raises:
        ValueError: If the name is empty, too long or has unsupported characters
    """
    if not _INSTANCE_NAME_PATTERN.fullmatch(name):
        raise ValueError(
            f"Invalid hyperchain name '{name}': use a lowercase letter followed by "
            f"lowercase letters, digits or '_' (at most 41 characters)"
        )
    return name


def instance_dir(data_dir: Path, name: str) -> Path:
    return Path(data_dir) / name


@dataclass
class InstanceDirs:
    """Directories prepared for a run, and whether they were just created."""
    data_dir: Path
    instance_dir: Path
    created_data_dir: bool = False
    created_instance_dir: bool = False


def ensure_instance_dir(data_dir: Path, name: str) -> InstanceDirs:
    """Create the data directory and the instance directory if missing."""
    data_dir = Path(data_dir)
    path = instance_dir(data_dir, name)
    dirs = InstanceDirs(data_dir=data_dir, instance_dir=path)

    if not data_dir.exists():
        data_dir.mkdir(parents=True)
        dirs.created_data_dir = True
        logger.info(f"Initialized data directory at {data_dir}")

    if not path.exists():
        path.mkdir()
        dirs.created_instance_dir = True
        logger.info(f"Initialized hyperchain directory for {name} at {path}")

    return dirs


def list_instances(data_dir: Path) -> List[Path]:
    """Known instance directories, sorted by name."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        return []
    return sorted(p for p in data_dir.iterdir() if p.is_dir() and not p.name.startswith("."))


class LookupStatus(str, Enum):
    NO_DATA_DIR = "no_data_dir"
    NOT_FOUND = "not_found"
    FOUND = "found"


@dataclass
class InstanceLookup:
    """Result of resolving an instance name to its directory."""
    name: str
    status: LookupStatus
    data_dir: Path
    path: Optional[Path] = None
    available: List[Path] = field(default_factory=list)


def locate(data_dir: Path, name: str) -> InstanceLookup:
    """Resolve ``name`` to its instance directory without creating anything."""
    data_dir = Path(data_dir)
    if not data_dir.exists():
        return InstanceLookup(name=name, status=LookupStatus.NO_DATA_DIR, data_dir=data_dir)

    path = instance_dir(data_dir, name)
    if not path.exists():
        return InstanceLookup(
            name=name,
            status=LookupStatus.NOT_FOUND,
            data_dir=data_dir,
            available=list_instances(data_dir),
        )

    return InstanceLookup(name=name, status=LookupStatus.FOUND, data_dir=data_dir, path=path)
