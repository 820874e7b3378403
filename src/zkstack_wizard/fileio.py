"""Crash-safe file writes shared by the state, secret and artifact writers."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_text(path: Path, content: str, mode: Optional[int] = None) -> None:
    """
    Replace ``path`` with ``content`` atomically.

    Writes to a temp file in the same directory, fsyncs it and renames it
    over the target, so readers observe either the old or the new file.

    Args:
        path: Target file
        content: Full new content
        mode: Optional permission bits for the new file (e.g. 0o600)
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}-",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)

        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
