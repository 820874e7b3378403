"""
Resumable provisioning workflow.

The orchestrator walks the pipeline in order. For every step it reloads the
persisted state, skips the step if its effect is already recorded, and
otherwise runs it and saves the resulting state before moving on. A failure
stops the run with the state exactly as the last completed step left it, so
rerunning the same command resumes from the failed step.

Usage::

    from zkstack_wizard.config import get_config
    from zkstack_wizard.l1 import L1Network
    from zkstack_wizard.orchestrator import create_orchestrator

    orchestrator = create_orchestrator(get_config(), "demo", L1Network.LOCALHOST, 270)
    report = orchestrator.run()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from zkstack_wizard.config import WizardConfig
from zkstack_wizard.errors import StepFailedError
from zkstack_wizard.l1 import L1Network, resolve_rpc_url
from zkstack_wizard.logger import ProvisioningLogger
from zkstack_wizard.state import StateStore, StorageType, get_state_store
from zkstack_wizard.steps import ProvisioningStep, StepContext, build_pipeline
from zkstack_wizard.telemetry import get_tracer

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Step names executed and skipped during one run."""
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def up_to_date(self) -> bool:
        return not self.executed


class Orchestrator:
    """
    Runs provisioning steps against persisted state.

    Args:
        instance: Hyperchain instance name (state record key)
        steps: Steps in execution order
        state_store: Durable state backend
        context: Collaborators handed to every step
        events: Structured event logger (defaults to one for ``instance``)
        tracer: OpenTelemetry tracer (defaults to the global provider's)
    """

    def __init__(
        self,
        instance: str,
        steps: Sequence[ProvisioningStep],
        state_store: StateStore,
        context: StepContext,
        events: Optional[ProvisioningLogger] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.instance = instance
        self.steps = list(steps)
        self.state_store = state_store
        self.context = context
        self.events = events or ProvisioningLogger(instance)
        self.tracer = tracer or get_tracer()

    def run(self) -> RunReport:
        """
        Run every incomplete step in order.

        Returns:
            RunReport listing executed and skipped steps

        Raises:
            StepFailedError: On the first failing step, chained to its cause
        """
        report = RunReport()
        total = len(self.steps)

        with self.tracer.start_as_current_span(
            "provisioning.run",
            attributes={
                "provisioning.instance": self.instance,
                "provisioning.l1_network": self.context.l1_network.value,
                "provisioning.chain_id": self.context.chain_id,
            },
        ) as run_span:
            for index, step in enumerate(self.steps, start=1):
                if self._run_step(step, index, total):
                    report.executed.append(step.name)
                else:
                    report.skipped.append(step.name)

            run_span.set_attribute("provisioning.steps.executed", len(report.executed))
            run_span.set_attribute("provisioning.steps.skipped", len(report.skipped))

        self.events.log_pipeline_completed(len(report.executed), len(report.skipped))
        return report

    def _run_step(self, step: ProvisioningStep, index: int, total: int) -> bool:
        """Run one step; returns False if it was skipped."""
        with self.tracer.start_as_current_span(
            f"provisioning.step {step.name}",
            attributes={
                "provisioning.step": step.name,
                "provisioning.step.index": index,
            },
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            started = time.monotonic()
            try:
                state = self.state_store.load(self.instance)
                step.check(self.context, state)

                if step.is_complete(state):
                    span.set_attribute("provisioning.step.outcome", "skipped")
                    self.events.log_step_skipped(step.name)
                    return False

                self.events.log_step_started(step.name, index, total)
                updates = step.run(self.context, state)
                if updates:
                    self.state_store.save(self.instance, state.apply(updates))
            except Exception as e:
                duration_ms = (time.monotonic() - started) * 1000
                span.set_attribute("provisioning.step.outcome", "failed")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                self.events.log_step_failed(step.name, e, duration_ms)
                raise StepFailedError(step.name) from e

            duration_ms = (time.monotonic() - started) * 1000
            span.set_attribute("provisioning.step.outcome", "completed")
            self.events.log_step_completed(step.name, duration_ms, sorted(updates))
            return True


def create_orchestrator(
    config: WizardConfig,
    instance: str,
    l1_network: L1Network,
    chain_id: int,
    rpc_url: Optional[str] = None,
    storage_type: StorageType = StorageType.FILE,
) -> Orchestrator:
    """
    Wire the canonical pipeline for ``instance`` from configuration.

    Raises:
        ValueError: If ``l1_network`` needs an explicit ``rpc_url``
    """
    l1_rpc_url = resolve_rpc_url(l1_network, rpc_url, config.localhost_rpc_url)
    context = StepContext.from_config(config, instance, l1_network, chain_id, l1_rpc_url)

    if storage_type == StorageType.FILE:
        store = get_state_store(storage_type, base_dir=config.get_data_path())
    else:
        store = get_state_store(storage_type)

    return Orchestrator(instance, build_pipeline(), store, context)
