"""
types.py - Dataclasses for the step registry.

These types are the machine-readable contract that drives step-flow
execution. A registry document (YAML or JSON) is parsed into these frozen
dataclasses once at load time and shared read-only by every component.

Variants that the document distinguishes with a string discriminator are
modelled as enums (StepKind, ValidatorType, TargetMode) or as separate
dataclasses (DirectTransition / ConditionalTransition).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class StepKind(Enum):
    """Flow taxonomy for a step."""
    WORK = "work"
    VERIFICATION = "verification"
    CLOSURE = "closure"


class GateIntent(Enum):
    """Routing signals a step can emit through its gate."""
    NEXT = "next"
    REPEAT = "repeat"
    JUMP = "jump"
    CLOSING = "closing"
    ESCALATE = "escalate"
    HANDOFF = "handoff"


class TargetMode(Enum):
    """How target step ids are determined for a gate."""
    EXPLICIT = "explicit"
    DYNAMIC = "dynamic"
    CONDITIONAL = "conditional"


class ValidatorType(Enum):
    """Completion validator variants."""
    COMMAND = "command"
    FILE = "file"
    CUSTOM = "custom"


# Work steps use 'handoff' to move towards closure; closure steps use 'closing'.
STEP_KIND_ALLOWED_INTENTS: Dict[StepKind, Tuple[GateIntent, ...]] = {
    StepKind.WORK: (GateIntent.NEXT, GateIntent.REPEAT, GateIntent.JUMP, GateIntent.HANDOFF),
    StepKind.VERIFICATION: (
        GateIntent.NEXT, GateIntent.REPEAT, GateIntent.JUMP, GateIntent.ESCALATE
    ),
    StepKind.CLOSURE: (GateIntent.CLOSING, GateIntent.REPEAT),
}

# c2 prompt category -> step kind, used when a non-gated step omits step_kind
_C2_KIND_MAP: Dict[str, StepKind] = {
    "initial": StepKind.WORK,
    "continuation": StepKind.WORK,
    "verification": StepKind.VERIFICATION,
    "closure": StepKind.CLOSURE,
}


def _frozen(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


# =============================================================================
# Gate and Transitions
# =============================================================================


@dataclass(frozen=True)
class StepGate:
    """Structured gate configuration for intent/target routing.

    Attributes:
        allowed_intents: Intents this step may emit.
        intent_schema_ref: Internal JSON pointer (``#/...``) to the intent enum
            inside the step's output contract.
        intent_field: Dotted path of the intent in the structured output
            (e.g. ``next_action.action``).
        target_field: Dotted path of the target step id for ``jump``.
        handoff_fields: Dotted paths copied into handoff data on ``handoff``.
            Each value is stored under the last path segment, so ``a.id``
            and ``b.id`` share the key ``id`` and the later path wins.
        target_mode: How target step ids are determined.
        fail_fast: Raise instead of falling back when intent is undeterminable.
        fallback_intent: Intent substituted when ``fail_fast`` is False.
    """
    allowed_intents: Tuple[GateIntent, ...]
    intent_schema_ref: str = ""
    intent_field: str = ""
    target_field: Optional[str] = None
    handoff_fields: Tuple[str, ...] = ()
    target_mode: TargetMode = TargetMode.EXPLICIT
    fail_fast: bool = True
    fallback_intent: Optional[GateIntent] = None

    def allows(self, intent: GateIntent) -> bool:
        return intent in self.allowed_intents


@dataclass(frozen=True)
class DirectTransition:
    """Transition to a fixed step. ``target=None`` marks a terminal transition."""
    target: Optional[str]
    fallback: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.target is None


@dataclass(frozen=True)
class ConditionalTransition:
    """Transition selected by the handoff value stored under ``condition_key``."""
    condition_key: str
    targets_by_value: Mapping[str, Optional[str]] = field(default_factory=lambda: _frozen({}))


TransitionRule = Union[DirectTransition, ConditionalTransition]


# =============================================================================
# Completion
# =============================================================================


@dataclass(frozen=True)
class ValidatorDefinition:
    """A named completion check declared in the registry."""
    name: str
    type: ValidatorType
    success_when: str = "exitCode:0"
    failure_pattern: str = ""
    command: Optional[str] = None
    path: Optional[str] = None
    extract_params: Mapping[str, str] = field(default_factory=lambda: _frozen({}))


@dataclass(frozen=True)
class CompletionCondition:
    """Reference from a closure step to a validator, plus inline parameters."""
    validator: str
    params: Mapping[str, Any] = field(default_factory=lambda: _frozen({}))


@dataclass(frozen=True)
class CompletionPattern:
    """Failure pattern used to locate a tailored retry prompt."""
    name: str
    edition: str
    adaptation: Optional[str] = None
    expected_params: Tuple[str, ...] = ()
    description: str = ""


# =============================================================================
# Steps and Registry
# =============================================================================


@dataclass(frozen=True)
class OutputSchemaRef:
    """Location of a step's output contract: a schema file and a name/pointer in it."""
    file: str
    schema: str


@dataclass(frozen=True)
class StepDefinition:
    """A single step in the registry.

    ``c2``/``c3``/``edition``/``adaptation`` are prompt path hints used to
    build locators for the external prompt resolver.
    """
    step_id: str
    name: str = ""
    step_kind: Optional[StepKind] = None
    c2: str = ""
    c3: str = ""
    edition: str = "default"
    adaptation: Optional[str] = None
    gate: Optional[StepGate] = None
    transitions: Mapping[str, TransitionRule] = field(default_factory=lambda: _frozen({}))
    completion_conditions: Tuple[CompletionCondition, ...] = ()
    output_schema_ref: Optional[OutputSchemaRef] = None
    retry_step: Optional[str] = None
    description: str = ""
    has_transitions: bool = False

    @property
    def kind(self) -> Optional[StepKind]:
        """Explicit step kind, or the kind inferred from ``c2``."""
        if self.step_kind is not None:
            return self.step_kind
        return _C2_KIND_MAP.get(self.c2)

    def transition_for(self, intent: GateIntent) -> Optional[TransitionRule]:
        return self.transitions.get(intent.value)


@dataclass(frozen=True)
class StepRegistry:
    """Immutable registry of steps, validators and failure patterns for one agent."""
    agent_id: str
    version: str
    steps: Mapping[str, StepDefinition]
    c1: str = "steps"
    entry_step: Optional[str] = None
    entry_step_mapping: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    validators: Mapping[str, ValidatorDefinition] = field(default_factory=lambda: _frozen({}))
    completion_patterns: Mapping[str, CompletionPattern] = field(
        default_factory=lambda: _frozen({})
    )

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        return self.steps.get(step_id)

    def has_step(self, step_id: str) -> bool:
        return step_id in self.steps

    @property
    def step_ids(self) -> Tuple[str, ...]:
        return tuple(self.steps)

    def resolve_entry_step(self, mode: Optional[str] = None) -> Optional[str]:
        """Resolve the entry step: ``entry_step_mapping[mode]`` first, then ``entry_step``."""
        if mode is not None and mode in self.entry_step_mapping:
            return self.entry_step_mapping[mode]
        return self.entry_step


# =============================================================================
# Parsers
# =============================================================================


def step_gate_from_dict(data: Dict[str, Any]) -> StepGate:
    """Parse a StepGate from a dictionary (e.g., YAML load)."""
    fallback = data.get("fallback_intent")
    return StepGate(
        allowed_intents=tuple(GateIntent(i) for i in data.get("allowed_intents", [])),
        intent_schema_ref=data.get("intent_schema_ref", "") or "",
        intent_field=data.get("intent_field", "") or "",
        target_field=data.get("target_field"),
        handoff_fields=tuple(data.get("handoff_fields", [])),
        target_mode=TargetMode(data.get("target_mode", "explicit")),
        fail_fast=data.get("fail_fast", True),
        fallback_intent=GateIntent(fallback) if fallback else None,
    )


def transition_rule_from_dict(data: Dict[str, Any]) -> TransitionRule:
    """Parse either transition shape: ``{target, fallback?}`` or ``{condition, targets}``."""
    if "condition" in data:
        return ConditionalTransition(
            condition_key=data["condition"],
            targets_by_value=_frozen(data.get("targets", {})),
        )
    return DirectTransition(target=data.get("target"), fallback=data.get("fallback"))


def step_definition_from_dict(step_id: str, data: Dict[str, Any]) -> StepDefinition:
    """Parse a StepDefinition from a dictionary (e.g., YAML load)."""
    kind = data.get("step_kind")
    gate_data = data.get("structured_gate")
    schema_ref = data.get("output_schema_ref")
    transitions = data.get("transitions")

    return StepDefinition(
        step_id=step_id,
        name=data.get("name", step_id),
        step_kind=StepKind(kind) if kind else None,
        c2=data.get("c2", ""),
        c3=data.get("c3", ""),
        edition=data.get("edition", "default"),
        adaptation=data.get("adaptation"),
        gate=step_gate_from_dict(gate_data) if gate_data else None,
        transitions=_frozen(
            {intent: transition_rule_from_dict(rule) for intent, rule in (transitions or {}).items()}
        ),
        completion_conditions=tuple(
            CompletionCondition(validator=c["validator"], params=_frozen(c.get("params")))
            for c in data.get("completion_conditions", [])
        ),
        output_schema_ref=(
            OutputSchemaRef(file=schema_ref["file"], schema=schema_ref["schema"])
            if schema_ref else None
        ),
        retry_step=data.get("retry_step"),
        description=data.get("description", ""),
        has_transitions=transitions is not None,
    )


def validator_definition_from_dict(name: str, data: Dict[str, Any]) -> ValidatorDefinition:
    """Parse a ValidatorDefinition from a dictionary."""
    return ValidatorDefinition(
        name=name,
        type=ValidatorType(data.get("type", "command")),
        success_when=data.get("success_when", "exitCode:0"),
        failure_pattern=data.get("failure_pattern", ""),
        command=data.get("command"),
        path=data.get("path"),
        extract_params=_frozen(data.get("extract_params", {})),
    )


def completion_pattern_from_dict(name: str, data: Dict[str, Any]) -> CompletionPattern:
    """Parse a CompletionPattern from a dictionary."""
    return CompletionPattern(
        name=name,
        edition=data.get("edition", "failed"),
        adaptation=data.get("adaptation"),
        expected_params=tuple(data.get("params", [])),
        description=data.get("description", ""),
    )


def step_registry_from_dict(data: Dict[str, Any]) -> StepRegistry:
    """Parse a StepRegistry from a dictionary (e.g., YAML load).

    Structural validation happens in ``stepflow.registry.validator``; this
    function only converts shapes.
    """
    steps = {
        step_id: step_definition_from_dict(step_id, step_data or {})
        for step_id, step_data in (data.get("steps") or {}).items()
    }
    validators = {
        name: validator_definition_from_dict(name, v)
        for name, v in (data.get("validators") or {}).items()
    }
    patterns = {
        name: completion_pattern_from_dict(name, p)
        for name, p in (data.get("completion_patterns") or {}).items()
    }

    return StepRegistry(
        agent_id=str(data.get("agent_id", "")),
        version=str(data.get("version", "")),
        steps=_frozen(steps),
        c1=data.get("c1", "steps"),
        entry_step=data.get("entry_step"),
        entry_step_mapping=_frozen(data.get("entry_step_mapping")),
        validators=_frozen(validators),
        completion_patterns=_frozen(patterns),
    )
