"""
types.py - Runtime data types for step-flow execution.

Types:
    GateInterpretation: What the gate extracted from one step output.
    RoutingResult: Where the router sends the run next.
    UsageMetrics / StepOutput: What a model invocation returns.
    StepRequest: What the runner hands to the model invoker.
    HistoryEntry / RunState: Mutable per-run cursor and log.
    RunOutcome / RunResult: Terminal result of a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from stepflow.prompts.resolver import PromptLocator
from stepflow.registry.types import GateIntent, StepDefinition

if TYPE_CHECKING:
    from stepflow.validators.completion import ValidatorResult

__all__ = [
    "GateInterpretation",
    "RoutingResult",
    "UsageMetrics",
    "StepOutput",
    "StepRequest",
    "HistoryEntry",
    "RunState",
    "RunOutcome",
    "RunResult",
]


@dataclass(frozen=True)
class GateInterpretation:
    """Result of interpreting a structured output through a step gate.

    Attributes:
        intent: Resolved intent.
        target: Target step id extracted for ``jump``.
        handoff: Fields extracted for the handoff bag (may be empty).
        used_fallback: True when the intent came from the fallback chain.
        reason: Free-text reason from the output, or why the fallback was used.
    """

    intent: GateIntent
    target: Optional[str] = None
    handoff: Dict[str, Any] = field(default_factory=dict)
    used_fallback: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "target": self.target,
            "handoff": dict(self.handoff),
            "used_fallback": self.used_fallback,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RoutingResult:
    """The next step chosen for an intent.

    ``next_step_id`` is None when the transition is terminal. ``source``
    records which rule produced the decision: ``transition``, ``fallback``,
    ``conditional``, ``conditional_default`` or ``jump``.
    """

    intent: GateIntent
    next_step_id: Optional[str]
    source: str = "transition"
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.next_step_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "next_step_id": self.next_step_id,
            "source": self.source,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class UsageMetrics:
    """Resource usage reported by a model invocation."""

    cost_usd: float = 0.0
    num_turns: int = 0
    duration_ms: int = 0


@dataclass
class StepOutput:
    """Structured result of one model invocation."""

    structured_output: Dict[str, Any]
    usage: UsageMetrics = field(default_factory=UsageMetrics)


@dataclass
class StepRequest:
    """Everything a model invoker needs to execute one step.

    Attributes:
        step: The step being executed.
        locator: Prompt locator for the step's prompt.
        handoff_data: Snapshot of accumulated handoff data.
        retry_guidance: Guidance produced by the previous failed validation.
        output_schema: Resolved output contract, when the step declares one.
        iteration: 1-based iteration number.
    """

    step: StepDefinition
    locator: PromptLocator
    handoff_data: Dict[str, Any] = field(default_factory=dict)
    retry_guidance: Optional[str] = None
    output_schema: Optional[Dict[str, Any]] = None
    iteration: int = 0


@dataclass(frozen=True)
class HistoryEntry:
    """One iteration in the run log."""

    iteration: int
    step_id: str
    intent: Optional[str]
    next_step_id: Optional[str] = None
    used_fallback: bool = False
    validation_passed: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "step_id": self.step_id,
            "intent": self.intent,
            "next_step_id": self.next_step_id,
            "used_fallback": self.used_fallback,
            "validation_passed": self.validation_passed,
        }


@dataclass
class RunState:
    """Mutable state of one run. Owned by a single runner."""

    current_step_id: str
    iteration_count: int = 0
    handoff_data: Dict[str, Any] = field(default_factory=dict)
    history: List[HistoryEntry] = field(default_factory=list)
    retry_guidance: Optional[str] = None
    last_validation: Optional["ValidatorResult"] = None

    def merge_handoff(self, handoff: Dict[str, Any]) -> None:
        """Merge handoff fields; later values overwrite earlier ones."""
        self.handoff_data.update(handoff)

    def record(self, entry: HistoryEntry) -> None:
        self.history.append(entry)


class RunOutcome(str, Enum):
    """Terminal outcome of a run."""

    SUCCESS = "success"
    MAX_ITERATIONS = "max-iterations"
    FATAL = "fatal"


@dataclass
class RunResult:
    """Terminal result returned by the runner.

    Attributes:
        outcome: success, max-iterations, or fatal.
        iterations: Number of iterations executed.
        history: Ordered log of executed steps.
        reason: Human-readable explanation.
        error_code: Machine-readable code for non-success outcomes.
        handoff_data: Handoff data accumulated by the end of the run.
        last_validation: Result of the most recent completion validation.
    """

    outcome: RunOutcome
    iterations: int
    history: List[HistoryEntry] = field(default_factory=list)
    reason: str = ""
    error_code: Optional[str] = None
    handoff_data: Dict[str, Any] = field(default_factory=dict)
    last_validation: Optional["ValidatorResult"] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.outcome.value,
            "iterations": self.iterations,
            "history": [h.to_dict() for h in self.history],
            "reason": self.reason,
            "error_code": self.error_code,
            "handoff_data": dict(self.handoff_data),
            "last_validation": self.last_validation.to_dict() if self.last_validation else None,
        }
