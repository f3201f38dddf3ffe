"""
router.py - Workflow router.

Computes the next step id from a resolved intent using the current step's
declarative ``transitions`` mapping. There is no implicit routing: an intent
without a transition rule is a configuration omission and raises
RoutingError.

Rule shapes:
    DirectTransition       -> target (None = terminal), fallback only when
                              target is not a known step
    ConditionalTransition  -> targets_by_value[handoff[condition_key]],
                              else targets_by_value["default"]

A ``jump`` that carries an extracted target goes straight to that step.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from stepflow.registry.types import (
    STEP_KIND_ALLOWED_INTENTS,
    ConditionalTransition,
    DirectTransition,
    GateIntent,
    StepDefinition,
    StepRegistry,
)

from .errors import RoutingError
from .types import RoutingResult

logger = logging.getLogger(__name__)

DEFAULT_CONDITION_VALUE = "default"


def condition_value(handoff_data: Mapping[str, Any], condition_key: str) -> Optional[str]:
    """Stringify the handoff value used by a conditional transition.

    Booleans become ``"true"``/``"false"``. Returns None when the key is
    absent or null.
    """
    value = handoff_data.get(condition_key)
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class WorkflowRouter:
    """Resolves transitions against a registry."""

    def __init__(self, registry: StepRegistry):
        self.registry = registry

    def route(
        self,
        step_id: str,
        intent: GateIntent,
        handoff_data: Optional[Mapping[str, Any]] = None,
        target: Optional[str] = None,
    ) -> RoutingResult:
        """Compute the next step for an intent emitted by ``step_id``.

        Args:
            step_id: The step that emitted the intent.
            intent: The resolved intent.
            handoff_data: Accumulated handoff data, read by conditional rules.
            target: Target extracted by the gate for ``jump``.

        Raises:
            RoutingError: Unknown step, intent not valid for the step kind,
                no rule for the intent, or an unresolvable target.
        """
        step = self.registry.get_step(step_id)
        if step is None:
            raise RoutingError(
                f"Step '{step_id}' does not exist in registry", step_id, intent.value
            )
        self._check_intent_for_kind(step, intent)

        if intent is GateIntent.JUMP and target:
            self._require_step(target, step_id, intent, "Jump target")
            return RoutingResult(intent, target, source="jump", reason=f"Jump to: {target}")

        rule = step.transition_for(intent)
        if rule is None:
            raise RoutingError(
                f"No '{intent.value}' transition defined for step '{step_id}'",
                step_id,
                intent.value,
            )

        if isinstance(rule, DirectTransition):
            return self._resolve_direct(step_id, intent, rule)
        if isinstance(rule, ConditionalTransition):
            return self._resolve_conditional(step_id, intent, rule, handoff_data or {})

        raise RoutingError(
            f"Unsupported transition rule {type(rule).__name__} on step '{step_id}'",
            step_id,
            intent.value,
        )

    def _resolve_direct(
        self, step_id: str, intent: GateIntent, rule: DirectTransition
    ) -> RoutingResult:
        if rule.target is None:
            return RoutingResult(
                intent, None, source="transition",
                reason=f"Terminal transition: {intent.value} -> completion",
            )

        if self.registry.has_step(rule.target):
            return RoutingResult(
                intent, rule.target, source="transition",
                reason=f"Transition: {intent.value} -> {rule.target}",
            )

        if rule.fallback is not None and self.registry.has_step(rule.fallback):
            logger.debug(
                "Step %s: target %s not found, using fallback %s",
                step_id, rule.target, rule.fallback,
            )
            return RoutingResult(
                intent, rule.fallback, source="fallback",
                reason=f"Fallback: {intent.value} -> {rule.fallback} "
                f"(target '{rule.target}' not found)",
            )

        raise RoutingError(
            f"Transition target '{rule.target}' does not exist in registry",
            step_id,
            intent.value,
        )

    def _resolve_conditional(
        self,
        step_id: str,
        intent: GateIntent,
        rule: ConditionalTransition,
        handoff_data: Mapping[str, Any],
    ) -> RoutingResult:
        value = condition_value(handoff_data, rule.condition_key)
        targets = rule.targets_by_value

        if value is not None and value in targets:
            next_step, source = targets[value], "conditional"
        elif DEFAULT_CONDITION_VALUE in targets:
            next_step, source = targets[DEFAULT_CONDITION_VALUE], "conditional_default"
        else:
            raise RoutingError(
                f"No conditional target for {rule.condition_key}={value!r} "
                f"on step '{step_id}' and no default",
                step_id,
                intent.value,
            )

        if next_step is not None:
            self._require_step(next_step, step_id, intent, "Conditional target")
        return RoutingResult(
            intent, next_step, source=source,
            reason=f"Condition {rule.condition_key}={value!r} -> {next_step or 'completion'}",
        )

    def _require_step(self, target: str, step_id: str, intent: GateIntent, label: str) -> None:
        if not self.registry.has_step(target):
            raise RoutingError(
                f"{label} '{target}' does not exist in registry", step_id, intent.value
            )

    @staticmethod
    def _check_intent_for_kind(step: StepDefinition, intent: GateIntent) -> None:
        kind = step.kind
        if kind is None:
            return
        allowed = STEP_KIND_ALLOWED_INTENTS[kind]
        if intent not in allowed:
            raise RoutingError(
                f"Intent '{intent.value}' not allowed for {kind.value} step '{step.step_id}'. "
                f"Allowed intents: {', '.join(i.value for i in allowed)}",
                step.step_id,
                intent.value,
            )

