"""
Error taxonomy for hyperchain provisioning.

Every error raised by the provisioning engine derives from ``WizardError``.
The orchestrator wraps step failures in ``StepFailedError`` chained to the
underlying cause, so the CLI can print the whole chain::

    try:
        orchestrator.run()
    except WizardError as e:
        for line in error_chain(e):
            print(line)
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

__all__ = [
    "WizardError",
    "DependencyUnavailable",
    "DirtyMigration",
    "ChecksumMismatch",
    "MigrationSourceError",
    "StatePreconditionError",
    "StateIOError",
    "InstanceMismatchError",
    "HookNotConfiguredError",
    "HookFailedError",
    "HookOutputError",
    "StepFailedError",
    "error_chain",
]


class WizardError(Exception):
    """Base class for all provisioning errors."""
    pass


class DependencyUnavailable(WizardError):
    """An external dependency never became ready within the retry window."""

    def __init__(self, resource: str, attempts: int, elapsed: float):
        self.resource = resource
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"{resource} did not become available after {attempts} attempts "
            f"({elapsed:.1f}s)"
        )


class DirtyMigration(WizardError):
    """A previous run was interrupted while applying a migration."""

    def __init__(self, version: int):
        self.version = version
        super().__init__(
            f"Migration {version} is dirty: a previous run started applying it "
            f"but never completed. Inspect the database, resolve the migration "
            f"manually and mark it as applied or remove its history row."
        )


class ChecksumMismatch(WizardError):
    """An applied migration no longer matches its source file."""

    def __init__(self, version: int, expected: bytes, actual: bytes):
        self.version = version
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Migration {version} was modified after it was applied "
            f"(recorded checksum {expected.hex()[:16]}..., "
            f"file checksum {actual.hex()[:16]}...)"
        )


class MigrationSourceError(WizardError):
    """The migration directory or one of its files is unusable."""

    def __init__(self, message: str, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")


class StatePreconditionError(WizardError):
    """An internal invariant on provisioning state was violated."""
    pass


class StateIOError(WizardError):
    """A persisted record could not be read or written."""

    def __init__(self, message: str, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")


class InstanceMismatchError(WizardError):
    """An existing instance was re-run with different parameters."""
    pass


class HookNotConfiguredError(WizardError):
    """No external command is configured for an extension step."""

    def __init__(self, step: str):
        self.step = step
        super().__init__(
            f"No hook command configured for step '{step}'. "
            f"Set it in ZKSTACK_WIZARD_HOOK_COMMANDS, e.g. "
            f"'{{\"{step}\": \"./scripts/{step}.sh\"}}'"
        )


class HookFailedError(WizardError):
    """An external hook command exited unsuccessfully."""

    def __init__(self, step: str, command: str, returncode: Optional[int], stderr: str = ""):
        self.step = step
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [f"Hook for step '{self.step}' failed"]
        parts.append(f"Command: {self.command}")
        if self.returncode is None:
            parts.append("Timed out")
        else:
            parts.append(f"Exit code: {self.returncode}")
        if self.stderr:
            parts.append(f"Error: {self.stderr.strip()}")
        return "\n".join(parts)


class HookOutputError(WizardError):
    """A hook produced output that could not be interpreted."""
    pass


class StepFailedError(WizardError):
    """A pipeline step failed; the cause is chained via ``__cause__``."""

    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Step '{step}' failed")


def error_chain(error: BaseException) -> List[str]:
    """Flatten an exception and its causes into printable lines."""
    lines = []
    current: Optional[BaseException] = error
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(str(current) or type(current).__name__)
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    return lines
