"""
events.py - Observer interface for step-flow execution.

Decision logic (gate, router, validator, retry handler, runner) does not
write log lines itself. It reports events to a RunObserver; LoggingObserver
turns them into log records and callers can plug in their own observers to
react to handoffs or collect metrics.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

if TYPE_CHECKING:
    from stepflow.runtime.types import GateInterpretation, RoutingResult, RunResult
    from stepflow.validators.completion import ValidatorResult

logger = logging.getLogger(__name__)


class RunObserver:
    """Receives step-flow events. Every hook defaults to a no-op."""

    def on_run_start(self, agent_id: str, entry_step_id: str) -> None:
        pass

    def on_iteration_start(self, iteration: int, step_id: str) -> None:
        pass

    def on_gate_interpreted(self, step_id: str, interpretation: "GateInterpretation") -> None:
        pass

    def on_gate_fallback(self, step_id: str, reason: str, fallback_intent: str) -> None:
        """A gate with fail_fast disabled substituted a fallback intent."""

    def on_handoff(self, step_id: str, handoff: Dict[str, Any]) -> None:
        pass

    def on_routed(self, step_id: str, routing: "RoutingResult") -> None:
        pass

    def on_validator_skipped(self, step_id: str, validator_name: str, reason: str) -> None:
        pass

    def on_validation(self, step_id: str, result: "ValidatorResult") -> None:
        pass

    def on_retry_guidance(self, step_id: str, pattern: Optional[str], source: str) -> None:
        pass

    def on_boundary(self, step_id: str, payload: Dict[str, Any]) -> None:
        """A closure step's completion was accepted.

        This is the single point for external mutations such as closing an
        issue. ``payload`` carries ``intent``, ``reason`` and a
        copy of ``handoff_data``.
        """

    def on_run_end(self, result: "RunResult") -> None:
        pass


class LoggingObserver(RunObserver):
    """Maps events to log records. Contract violations log at WARNING."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def on_run_start(self, agent_id: str, entry_step_id: str) -> None:
        self.log.info("Starting run for %s at step %s", agent_id, entry_step_id)

    def on_iteration_start(self, iteration: int, step_id: str) -> None:
        self.log.debug("Iteration %d: executing step %s", iteration, step_id)

    def on_gate_interpreted(self, step_id: str, interpretation: "GateInterpretation") -> None:
        self.log.debug(
            "Step %s: intent=%s target=%s",
            step_id, interpretation.intent.value, interpretation.target,
        )

    def on_gate_fallback(self, step_id: str, reason: str, fallback_intent: str) -> None:
        self.log.warning(
            "[StepFlow][ContractViolation] Step %s: using fallback intent %s. Reason: %s. "
            "fail_fast=false is for debugging only.",
            step_id, fallback_intent, reason,
        )

    def on_handoff(self, step_id: str, handoff: Dict[str, Any]) -> None:
        self.log.debug("Step %s: handoff fields %s", step_id, sorted(handoff))

    def on_routed(self, step_id: str, routing: "RoutingResult") -> None:
        self.log.debug(
            "Step %s: %s -> %s (%s)",
            step_id, routing.intent.value, routing.next_step_id or "<terminal>", routing.source,
        )

    def on_validator_skipped(self, step_id: str, validator_name: str, reason: str) -> None:
        self.log.warning("Step %s: skipping validator %s: %s", step_id, validator_name, reason)

    def on_validation(self, step_id: str, result: "ValidatorResult") -> None:
        if result.valid:
            self.log.info("Step %s: completion conditions passed", step_id)
        else:
            self.log.info(
                "Step %s: completion failed (pattern=%s): %s",
                step_id, result.pattern, result.error,
            )

    def on_retry_guidance(self, step_id: str, pattern: Optional[str], source: str) -> None:
        self.log.debug("Step %s: retry guidance for %s from %s", step_id, pattern, source)

    def on_boundary(self, step_id: str, payload: Dict[str, Any]) -> None:
        self.log.info("Step %s: closure accepted, boundary reached", step_id)

    def on_run_end(self, result: "RunResult") -> None:
        if result.succeeded:
            self.log.info("Run succeeded after %d iteration(s)", result.iterations)
        else:
            self.log.warning(
                "Run ended with %s after %d iteration(s): %s",
                result.outcome.value, result.iterations, result.reason,
            )


class CompositeObserver(RunObserver):
    """Fans every event out to a list of observers, in order."""

    def __init__(self, observers: Iterable[RunObserver]):
        self.observers: List[RunObserver] = list(observers)

    def _emit(self, name: str, *args: Any) -> None:
        for observer in self.observers:
            getattr(observer, name)(*args)

    def on_run_start(self, agent_id: str, entry_step_id: str) -> None:
        self._emit("on_run_start", agent_id, entry_step_id)

    def on_iteration_start(self, iteration: int, step_id: str) -> None:
        self._emit("on_iteration_start", iteration, step_id)

    def on_gate_interpreted(self, step_id: str, interpretation: "GateInterpretation") -> None:
        self._emit("on_gate_interpreted", step_id, interpretation)

    def on_gate_fallback(self, step_id: str, reason: str, fallback_intent: str) -> None:
        self._emit("on_gate_fallback", step_id, reason, fallback_intent)

    def on_handoff(self, step_id: str, handoff: Dict[str, Any]) -> None:
        self._emit("on_handoff", step_id, handoff)

    def on_routed(self, step_id: str, routing: "RoutingResult") -> None:
        self._emit("on_routed", step_id, routing)

    def on_validator_skipped(self, step_id: str, validator_name: str, reason: str) -> None:
        self._emit("on_validator_skipped", step_id, validator_name, reason)

    def on_validation(self, step_id: str, result: "ValidatorResult") -> None:
        self._emit("on_validation", step_id, result)

    def on_retry_guidance(self, step_id: str, pattern: Optional[str], source: str) -> None:
        self._emit("on_retry_guidance", step_id, pattern, source)

    def on_boundary(self, step_id: str, payload: Dict[str, Any]) -> None:
        self._emit("on_boundary", step_id, payload)

    def on_run_end(self, result: "RunResult") -> None:
        self._emit("on_run_end", result)
