"""
Logging setup and structured step events.

``configure_logging`` installs one handler on the ``zkstack_wizard`` logger,
emitting either plain text for the console or JSON lines for log shippers.

``ProvisioningLogger`` emits one JSON entry per pipeline event on the
``zkstack_wizard.steps`` logger. Logged events:
- step.started
- step.skipped
- step.completed
- step.failed
- pipeline.completed

Usage:
    from zkstack_wizard.logger import ProvisioningLogger

    events = ProvisioningLogger(instance="demo")
    events.log_step_skipped("create-isolated-database")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_step_logger = logging.getLogger("zkstack_wizard.steps")


class JsonFormatter(logging.Formatter):
    """Formats records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        try:
            payload = json.loads(message)
            if not isinstance(payload, dict):
                payload = {"message": message}
        except ValueError:
            payload = {"message": message}

        entry: Dict[str, Any] = {
            "timestamp": payload.pop(
                "timestamp",
                datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            ),
            "level": record.levelname.lower(),
            "logger": record.name,
        }
        entry.update(payload)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    """
    Configure the package logger.

    Args:
        level: debug, info, warning or error
        fmt: "json" for JSON lines, "text" for human readable output
    """
    root = logging.getLogger("zkstack_wizard")
    root.setLevel(_LEVELS.get(level, logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.propagate = False


class ProvisioningLogger:
    """
    Structured logger for pipeline events.

    Each entry carries the instance name and the step, so a run can be
    reconstructed from logs alone.
    """

    def __init__(self, instance: str, extra_labels: Optional[Dict[str, str]] = None):
        self.instance = instance
        self.extra_labels = extra_labels or {}
        self._logger = _step_logger

    def _emit(self, event: str, step: Optional[str] = None, level: str = "info", **extra_fields: Any) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "instance": self.instance,
        }
        if step:
            entry["step"] = step
        entry.update(extra_fields)
        if self.extra_labels:
            entry["labels"] = self.extra_labels

        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_step_started(self, step: str, index: int, total: int) -> None:
        self._emit("step.started", step, position=f"{index}/{total}")

    def log_step_skipped(self, step: str) -> None:
        """Step effect already recorded in the provisioning state."""
        self._emit("step.skipped", step, reason="already_completed")

    def log_step_completed(self, step: str, duration_ms: float, updated_fields: Optional[list] = None) -> None:
        self._emit(
            "step.completed",
            step,
            duration_ms=round(duration_ms, 1),
            updated_fields=updated_fields or [],
        )

    def log_step_failed(self, step: str, error: BaseException, duration_ms: float) -> None:
        self._emit(
            "step.failed",
            step,
            level="error",
            error_type=type(error).__name__,
            error=str(error),
            duration_ms=round(duration_ms, 1),
        )

    def log_pipeline_completed(self, executed: int, skipped: int) -> None:
        self._emit("pipeline.completed", executed=executed, skipped=skipped)
