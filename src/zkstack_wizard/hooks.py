"""
External step hooks.

Steps whose side effects are owned by other tooling (funding identities,
deploying contracts, running genesis) are delegated to operator-configured
shell commands. A hook receives the instance environment and may print a
JSON object on stdout, e.g. the addresses of the contracts it deployed::

    $ ZKSTACK_WIZARD_HOOK_COMMANDS='{"deploy-verifier": "./deploy_verifier.sh"}'
    $ ./deploy_verifier.sh
    {"verifier": "0x5FbDB2315678afecb367f032d93F642f64180aa3"}
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from zkstack_wizard.errors import HookFailedError, HookNotConfiguredError, HookOutputError
from zkstack_wizard.timeouts import HOOK_DEFAULT_TIMEOUT_S

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs the configured command for a step and parses its output."""

    def __init__(
        self,
        commands: Mapping[str, str],
        cwd: Optional[Path] = None,
        timeout: int = HOOK_DEFAULT_TIMEOUT_S,
    ):
        self.commands = dict(commands)
        self.cwd = cwd
        self.timeout = timeout

    def run(self, step: str, env: Mapping[str, str]) -> Dict[str, Any]:
        """
        Run the hook for ``step``.

        Args:
            step: Pipeline step name
            env: Extra environment variables for the command

        Returns:
            Parsed JSON object printed by the hook ({} for empty output)

        Raises:
            HookNotConfiguredError: If no command is configured
            HookFailedError: On non-zero exit or timeout
            HookOutputError: If stdout is not a JSON object
        """
        command = self.commands.get(step)
        if not command:
            raise HookNotConfiguredError(step)

        logger.info(f"Running hook for {step}: {command}")
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self.cwd,
                env={**os.environ, **env},
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise HookFailedError(step, command, None, f"timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise HookFailedError(step, command, result.returncode, result.stderr)

        if result.stderr:
            logger.debug(f"Hook {step} stderr: {result.stderr.strip()}")

        output = result.stdout.strip()
        if not output:
            return {}
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError as e:
            raise HookOutputError(f"Hook for step '{step}' printed invalid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise HookOutputError(
                f"Hook for step '{step}' must print a JSON object, got {type(parsed).__name__}"
            )
        return parsed
