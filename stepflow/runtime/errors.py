"""
errors.py - Error taxonomy for step-flow execution.

Every fatal condition the runner can hit is represented by a StepFlowError
subclass carrying a machine-readable ``code`` and a ``recoverable`` flag.
The runner converts these into a RunResult so callers always receive both
a code and a human-readable explanation.

Taxonomy:
    ConfigurationError      - registry structurally invalid (load time)
    SchemaResolutionError   - an output contract / intent schema cannot be resolved
    GateInterpretationError - intent cannot be determined and failFast is set
    RoutingError            - no usable transition for a resolved intent
    MaxIterationsError      - iteration budget exhausted

Validation failures are deliberately absent: they are values
(see ``stepflow.validators.completion.ValidatorResult``) that drive the
retry loop and are never raised.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class StepFlowError(Exception):
    """Base class for all step-flow errors."""

    code: str = "STEPFLOW_ERROR"
    recoverable: bool = False

    def __init__(self, message: str, iteration: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.iteration = iteration

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "iteration": self.iteration,
            "cause": str(self.__cause__) if self.__cause__ else None,
        }


class ConfigurationError(StepFlowError):
    """Registry is structurally invalid. Raised before any iteration runs."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, errors: Optional[Sequence[str]] = None):
        self.errors: List[str] = list(errors or [])
        if self.errors:
            message = f"{message}:\n- " + "\n- ".join(self.errors)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = list(self.errors)
        return result


class SchemaResolutionError(StepFlowError):
    """An intent schema or output contract reference cannot be resolved."""

    code = "FAILED_SCHEMA_RESOLUTION"

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        schema_ref: Optional[str] = None,
        errors: Optional[Sequence[str]] = None,
    ):
        self.step_id = step_id
        self.schema_ref = schema_ref
        self.errors: List[str] = list(errors or [])
        if self.errors:
            message = f"{message}:\n- " + "\n- ".join(self.errors)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {"step_id": self.step_id, "schema_ref": self.schema_ref, "errors": list(self.errors)}
        )
        return result


class GateInterpretationError(StepFlowError):
    """Intent could not be extracted from a step's output (failFast mode)."""

    code = "GATE_INTERPRETATION_ERROR"

    def __init__(self, message: str, step_id: str, extracted_value: Any = None):
        super().__init__(message)
        self.step_id = step_id
        self.extracted_value = extracted_value

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"step_id": self.step_id, "extracted_value": self.extracted_value})
        return result


class RoutingError(StepFlowError):
    """No transition could be resolved for an intent."""

    code = "ROUTING_ERROR"

    def __init__(self, message: str, step_id: str, intent: str):
        super().__init__(message)
        self.step_id = step_id
        self.intent = intent

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"step_id": self.step_id, "intent": self.intent})
        return result


class MaxIterationsError(StepFlowError):
    """Iteration budget exhausted before a terminal state was reached."""

    code = "MAX_ITERATIONS_EXCEEDED"

    def __init__(self, max_iterations: int, step_id: Optional[str] = None):
        super().__init__(
            f"Maximum iterations ({max_iterations}) reached without completion"
            + (f" (last step: {step_id})" if step_id else ""),
            iteration=max_iterations,
        )
        self.max_iterations = max_iterations
        self.step_id = step_id

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"max_iterations": self.max_iterations, "step_id": self.step_id})
        return result


def is_stepflow_error(error: BaseException) -> bool:
    """Check whether an exception belongs to the step-flow taxonomy."""
    return isinstance(error, StepFlowError)
