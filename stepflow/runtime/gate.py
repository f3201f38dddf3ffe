"""
gate.py - Gate interpreter.

Turns a step's structured output into a GateInterpretation using the step's
gate configuration:

1. Read the raw intent at ``intent_field`` (dotted path)
2. Normalise it through the intent vocabulary
3. Check it against ``allowed_intents``
4. For ``jump``, read the target at ``target_field``
5. For ``handoff`` (or conditional gates), copy ``handoff_fields`` into a bag

An undeterminable intent is fatal when ``fail_fast`` is set (the default).
Otherwise the fallback chain applies: ``fallback_intent``, then ``next`` if
allowed, then the first allowed intent.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from stepflow.registry.types import GateIntent, StepDefinition, StepGate, StepKind, TargetMode

from .errors import GateInterpretationError
from .events import RunObserver
from .intents import normalize_intent
from .types import GateInterpretation

logger = logging.getLogger(__name__)

# Checked in order; first string value wins
REASON_PATHS = (
    "next_action.reason",
    "reason",
    "message",
    "next_action.details.reason",
)

_MISSING = object()


def get_value_at_path(obj: Any, path: str, default: Any = None) -> Any:
    """Read a value at a dotted path. Numeric segments index into lists.

    Example:
        get_value_at_path({"a": {"b": [1, 2]}}, "a.b.1")  # -> 2
    """
    current = obj
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
        if current is _MISSING:
            return default
    return current


class GateInterpreter:
    """Extracts intent, target and handoff data from structured output."""

    def __init__(self, observer: Optional[RunObserver] = None):
        self.observer = observer or RunObserver()

    def interpret(
        self, structured_output: Dict[str, Any], step: StepDefinition
    ) -> GateInterpretation:
        """Interpret one step output.

        Raises:
            GateInterpretationError: Intent is absent or not allowed and the
                gate has ``fail_fast`` set.
        """
        gate = step.gate
        if gate is None:
            default = GateIntent.CLOSING if step.kind is StepKind.CLOSURE else GateIntent.NEXT
            return GateInterpretation(
                intent=default,
                used_fallback=True,
                reason="No structured_gate configuration",
            )

        intent, used_fallback, fallback_reason = self._extract_intent(
            structured_output, gate, step.step_id
        )

        target = None
        if intent is GateIntent.JUMP and gate.target_field:
            value = get_value_at_path(structured_output, gate.target_field)
            if isinstance(value, str) and value:
                target = value

        handoff: Dict[str, Any] = {}
        if intent is GateIntent.HANDOFF or gate.target_mode is TargetMode.CONDITIONAL:
            handoff = self._extract_handoff(structured_output, gate)

        return GateInterpretation(
            intent=intent,
            target=target,
            handoff=handoff,
            used_fallback=used_fallback,
            reason=self._extract_reason(structured_output) or fallback_reason,
        )

    def _extract_intent(
        self, output: Dict[str, Any], gate: StepGate, step_id: str
    ) -> Tuple[GateIntent, bool, Optional[str]]:
        if not gate.intent_field:
            return self._use_fallback(gate, step_id, "intent_field is not configured", None)

        raw_value = get_value_at_path(output, gate.intent_field)
        if raw_value is None:
            return self._use_fallback(
                gate, step_id, f"No value at path: {gate.intent_field}", raw_value
            )

        intent = normalize_intent(raw_value)
        if intent is None:
            return self._use_fallback(gate, step_id, f"Unknown intent value: {raw_value}", raw_value)

        if not gate.allows(intent):
            return self._use_fallback(
                gate, step_id, f"Intent '{intent.value}' not in allowed_intents", raw_value
            )

        return intent, False, None

    def _use_fallback(
        self, gate: StepGate, step_id: str, reason: str, raw_value: Any
    ) -> Tuple[GateIntent, bool, Optional[str]]:
        if gate.fail_fast:
            raise GateInterpretationError(
                f"Cannot determine intent: {reason}. "
                f'Step "{step_id}" has fail_fast enabled, no fallback allowed.',
                step_id=step_id,
                extracted_value=raw_value,
            )

        if gate.fallback_intent is not None and gate.allows(gate.fallback_intent):
            intent = gate.fallback_intent
        elif gate.allows(GateIntent.NEXT):
            intent = GateIntent.NEXT
        elif gate.allowed_intents:
            intent = gate.allowed_intents[0]
        else:
            raise GateInterpretationError(
                f"Cannot determine intent: {reason}", step_id=step_id, extracted_value=raw_value
            )

        self.observer.on_gate_fallback(step_id, reason, intent.value)
        return intent, True, reason

    @staticmethod
    def _extract_handoff(output: Dict[str, Any], gate: StepGate) -> Dict[str, Any]:
        handoff: Dict[str, Any] = {}
        for field_path in gate.handoff_fields:
            value = get_value_at_path(output, field_path, _MISSING)
            if value is not _MISSING:
                handoff[field_path.split(".")[-1]] = value
        return handoff

    @staticmethod
    def _extract_reason(output: Dict[str, Any]) -> Optional[str]:
        for path in REASON_PATHS:
            value = get_value_at_path(output, path)
            if isinstance(value, str):
                return value
        return None
