"""
Bounded retry for external readiness.

Every step that depends on an external system becoming ready (the
relational store, the L1 RPC node) waits through ``wait_until`` instead of
carrying its own polling loop.

Usage::

    from zkstack_wizard.retry import wait_until

    wait_until(server.probe, max_attempts=30, interval=0.5, resource="postgres")
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from zkstack_wizard.errors import DependencyUnavailable

logger = logging.getLogger(__name__)


def wait_until(
    probe: Callable[[], bool],
    max_attempts: int,
    interval: float,
    resource: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Poll ``probe`` until it returns True or the attempts run out.

    Sleeps ``interval`` seconds after every failed attempt, including the
    last one, so a fully failed window lasts ``max_attempts * interval``.

    Args:
        probe: Readiness check; must not raise for "not ready yet"
        max_attempts: Maximum number of probe calls
        interval: Seconds to sleep after each failed probe
        resource: Identity of the probed dependency, used in diagnostics
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        Number of attempts it took to succeed

    Raises:
        DependencyUnavailable: If the probe never succeeded
        ValueError: If max_attempts < 1 or interval < 0
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if interval < 0:
        raise ValueError(f"interval must be >= 0, got {interval}")

    started = clock()
    for attempt in range(1, max_attempts + 1):
        if probe():
            if attempt > 1:
                logger.info(f"{resource} became available after {attempt} attempts")
            return attempt
        logger.debug(f"{resource} not ready (attempt {attempt}/{max_attempts})")
        sleep(interval)

    elapsed = clock() - started
    logger.error(f"{resource} unavailable after {max_attempts} attempts ({elapsed:.1f}s)")
    raise DependencyUnavailable(resource, max_attempts, elapsed)
