"""
Step orchestration.

The orchestrator walks the step table in ascending id order. For each step
it asks (in interactive mode) whether to process it, runs the read-only
probe, and runs the action only when the probe does not report the effect
as already present. Every step ends in exactly one record in the
``RunReport``; a failed non-optional step halts the run and later steps are
never probed.

No exception escapes ``Orchestrator.run()``: installer errors keep their
kind and exit code, anything else is recorded as a failed action.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from commonsinstall import display
from commonsinstall.errors import EXIT_STEP_FAILED, InstallerError, StepActionFailed
from commonsinstall.logger import InstallLogger
from commonsinstall.models import RunConfig, StateResult, Step, StepOutcome, StepPhase
from commonsinstall.prompts import NonInteractivePrompter, Prompter
from commonsinstall.report import RunReport, StepRecord
from commonsinstall.state import CheckpointFile
from commonsinstall.telemetry import add_span_event, get_tracer, step_span

__all__ = ["Orchestrator", "validate_steps"]

logger = logging.getLogger(__name__)


def validate_steps(steps: Sequence[Step]) -> None:
    """Step ids must be unique and strictly ascending."""
    previous = 0
    for step in steps:
        if step.id <= previous:
            raise ValueError(
                f"Step ids must be unique and ascending: {step.id} follows {previous}"
            )
        previous = step.id


class Orchestrator:
    """Runs a step table against one ``RunConfig``."""

    def __init__(
        self,
        steps: Sequence[Step],
        prompter: Optional[Prompter] = None,
        tracer: Optional[trace.Tracer] = None,
        checkpoint: Optional[CheckpointFile] = None,
        events: Optional[InstallLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        validate_steps(steps)
        self.steps: List[Step] = list(steps)
        self.prompter = prompter or NonInteractivePrompter()
        self.tracer = tracer or get_tracer()
        self.checkpoint = checkpoint
        self.events = events
        self.clock = clock
        self.phases: Dict[int, StepPhase] = {}

    def run(self, config: RunConfig) -> RunReport:
        events = self.events or InstallLogger(instance=config.instance_name)
        report = RunReport(total_steps=len(self.steps))
        self.phases = {step.id: StepPhase.PENDING for step in self.steps}

        events.log_run_started(len(self.steps), str(config.project_dir), config.interactive)
        if config.resume and self.checkpoint is not None and self.checkpoint.exists():
            last = self.checkpoint.last_completed()
            if last is not None:
                display.print_status(f"Resuming: last recorded completed step was {last}")

        for step in self.steps:
            record = self._run_step(step, config, events)
            report.append(record)
            if record.halting:
                logger.info("Halting run after step %d failed", step.id)
                break

        events.log_run_finished(report.exit_code, report.counts())
        return report

    # Internals -----------------------------------------------------------

    def _enter(self, step: Step, phase: StepPhase) -> None:
        self.phases[step.id] = phase
        logger.debug("Step %d -> %s", step.id, phase.value)

    def _probe(self, step: Step, config: RunConfig) -> StateResult:
        try:
            state = step.probe(config)
        except Exception as e:
            logger.warning("Probe for step %d raised %s: %s", step.id, type(e).__name__, e)
            return StateResult.INDETERMINATE
        if not isinstance(state, StateResult):
            logger.warning("Probe for step %d returned %r", step.id, state)
            return StateResult.INDETERMINATE
        return state

    def _mark_done(self, step: Step) -> None:
        if self.checkpoint is None:
            return
        try:
            self.checkpoint.mark_done(step.id)
        except OSError as e:
            logger.warning("Could not record checkpoint for step %d: %s", step.id, e)

    def _run_step(self, step: Step, config: RunConfig, events: InstallLogger) -> StepRecord:
        start = self.clock()
        with step_span(self.tracer, step, config.instance_name) as span:
            record = self._decide(step, config, events)
            record.duration_seconds = self.clock() - start

            span.set_attribute("install.step.outcome", record.outcome.value)
            if record.probe_state is not None:
                span.set_attribute("install.step.probe_state", record.probe_state.value)
            if record.outcome is StepOutcome.FAILED:
                span.set_attribute("install.step.error_kind", record.error_kind or "")
                span.set_status(Status(StatusCode.ERROR, record.reason))
            return record

    def _decide(self, step: Step, config: RunConfig, events: InstallLogger) -> StepRecord:
        def finish(outcome: StepOutcome, phase: StepPhase, **kwargs) -> StepRecord:
            self._enter(step, phase)
            return StepRecord(
                step_id=step.id,
                label=step.label,
                outcome=outcome,
                optional=step.optional,
                **kwargs,
            )

        state: Optional[StateResult] = None
        try:
            if step.id in config.skip_steps:
                display.print_skip(f"Step {step.id}: {step.label} (requested)")
                events.log_step_skipped(step.id, step.label, by_request=True)
                return finish(StepOutcome.SKIPPED_BY_REQUEST, StepPhase.SKIPPED_BY_REQUEST,
                              reason="skipped on request")

            if config.interactive and not self.prompter.confirm_run(step):
                display.print_skip(f"Skipping step {step.id}: {step.label}")
                events.log_step_skipped(step.id, step.label, by_request=True)
                return finish(StepOutcome.SKIPPED_BY_REQUEST, StepPhase.SKIPPED_BY_REQUEST,
                              reason="declined by user")

            self._enter(step, StepPhase.PROBING)
            state = self._probe(step, config)
            add_span_event("install.step.probed", {"state": state.value})

            if (
                self.checkpoint is not None
                and not state.satisfied
                and self.checkpoint.is_done(step.id)
            ):
                display.print_warning(
                    f"Step {step.id} was completed before but its effect is no longer present"
                )
                events.log_drift(step.id, step.label)

            if state.satisfied:
                if not config.interactive:
                    display.print_skip(f"{step.label} already completed")
                    events.log_step_skipped(step.id, step.label)
                    self._mark_done(step)
                    return finish(StepOutcome.SKIPPED, StepPhase.SKIPPED, probe_state=state)
                if not self.prompter.confirm_redo(step):
                    display.print_skip(f"{step.label} already completed")
                    events.log_step_skipped(step.id, step.label, by_request=True)
                    self._mark_done(step)
                    return finish(StepOutcome.SKIPPED_BY_REQUEST, StepPhase.SKIPPED_BY_REQUEST,
                                  probe_state=state, reason="redo declined")

            if state is StateResult.INDETERMINATE:
                logger.warning("Could not determine state of step %d, running it", step.id)
                events.log_probe_indeterminate(step.id, step.label)

            self._enter(step, StepPhase.RUNNING)
            events.log_step_started(step.id, step.label, state.value)
            display.step_header(step.id, step.label, len(self.steps))
            started = self.clock()
            result = step.action(config)

            if result.ok:
                display.step_complete(step.id, step.label)
                events.log_step_completed(step.id, step.label, self.clock() - started)
                self._mark_done(step)
                return finish(StepOutcome.RAN, StepPhase.SUCCEEDED, probe_state=state)

            reason = result.reason or "action reported failure"
            error_kind = StepActionFailed.kind
            exit_code = EXIT_STEP_FAILED

        except InstallerError as e:
            reason, error_kind, exit_code = e.reason, e.kind, e.exit_code
        except Exception as e:
            logger.exception("Unexpected error in step %d", step.id)
            reason = f"{type(e).__name__}: {e}"
            error_kind, exit_code = StepActionFailed.kind, EXIT_STEP_FAILED

        if step.optional:
            display.print_warning(f"Optional step {step.id} failed: {reason}")
        else:
            display.print_error(f"Step {step.id} ({step.label}) failed: {reason}")
        events.log_step_failed(step.id, step.label, reason, error_kind, optional=step.optional)
        return finish(
            StepOutcome.FAILED,
            StepPhase.FAILED,
            probe_state=state,
            reason=reason,
            error_kind=error_kind,
            exit_code=exit_code,
        )
