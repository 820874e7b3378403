"""
Tests for the bounded retry primitive.
"""

import pytest

from zkstack_wizard.errors import DependencyUnavailable
from zkstack_wizard.retry import wait_until

from conftest import FakeClock


def flaky_probe(failures):
    """Probe that fails ``failures`` times, then succeeds; records call count."""
    calls = {"count": 0}

    def probe():
        calls["count"] += 1
        return calls["count"] > failures

    return probe, calls


class TestWaitUntil:

    def test_returns_immediately_when_ready(self):
        clock = FakeClock()
        probe, calls = flaky_probe(0)

        attempts = wait_until(probe, 5, 0.5, "postgres", sleep=clock.sleep, clock=clock)

        assert attempts == 1
        assert calls["count"] == 1
        assert clock.sleeps == []

    def test_sleeps_between_failed_attempts(self):
        clock = FakeClock()
        probe, calls = flaky_probe(3)

        attempts = wait_until(probe, 10, 0.2, "l1", sleep=clock.sleep, clock=clock)

        assert attempts == 4
        assert calls["count"] == 4
        assert clock.sleeps == [0.2, 0.2, 0.2]

    def test_exhausted_window(self):
        """A store that never comes up fails after exactly max_attempts probes."""
        clock = FakeClock()
        probe, calls = flaky_probe(1000)

        with pytest.raises(DependencyUnavailable) as exc_info:
            wait_until(probe, 30, 0.5, "postgres at db:5432", sleep=clock.sleep, clock=clock)

        assert calls["count"] == 30
        assert exc_info.value.attempts == 30
        assert exc_info.value.elapsed >= 15.0
        assert exc_info.value.resource == "postgres at db:5432"
        assert "postgres at db:5432" in str(exc_info.value)

    def test_succeeds_on_last_attempt(self):
        clock = FakeClock()
        probe, calls = flaky_probe(4)

        assert wait_until(probe, 5, 0.1, "l1", sleep=clock.sleep, clock=clock) == 5

    @pytest.mark.parametrize("max_attempts,interval", [(0, 0.5), (-1, 0.5), (3, -0.1)])
    def test_invalid_arguments(self, max_attempts, interval):
        probe, calls = flaky_probe(0)
        with pytest.raises(ValueError):
            wait_until(probe, max_attempts, interval, "postgres")
        assert calls["count"] == 0
