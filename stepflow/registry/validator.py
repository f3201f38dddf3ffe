"""
validator.py - Structural and consistency checks for a step registry.

Checks run in this order and collect every problem before reporting:

    1. Document shape against the bundled JSON Schema (jsonschema)
    2. Step kind / allowed intent consistency for gated steps
    3. Entry configuration resolvable
    4. intent_schema_ref / intent_field presence and format
    5. Transition exhaustiveness and target existence (strict mode)
    6. Contract intent enum equals allowed_intents (when schemas are supplied)

Check 6 loads one output contract per gated step; those loads fan out
concurrently with asyncio.gather.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema

from stepflow.runtime.errors import SchemaResolutionError

from .schema_resolver import SchemaResolver, extract_intent_enum
from .types import (
    STEP_KIND_ALLOWED_INTENTS,
    ConditionalTransition,
    DirectTransition,
    GateIntent,
    StepDefinition,
    StepKind,
    StepRegistry,
    ValidatorType,
)

logger = logging.getLogger(__name__)

REGISTRY_SCHEMA_PATH = Path(__file__).parent / "schemas" / "registry.schema.json"

# Error types. ENUM_MISMATCH and SCHEMA_RESOLUTION come from check 6.
SCHEMA = "SCHEMA"
STEP_KIND = "STEP_KIND"
ENTRY = "ENTRY"
INTENT_REF = "INTENT_REF"
TRANSITION = "TRANSITION"
REFERENCE = "REFERENCE"
ENUM_MISMATCH = "ENUM_MISMATCH"
SCHEMA_RESOLUTION = "SCHEMA_RESOLUTION"

# Error message template: [FAIL] TYPE: location problem -> Fix: action
ERROR_TEMPLATE = "[FAIL] {error_type}: {location} {problem}\n  Fix: {fix_action}"


class RegistryIssue:
    """A single registry problem with a location and a suggested fix."""

    def __init__(self, error_type: str, location: str, problem: str, fix_action: str = ""):
        self.error_type = error_type
        self.location = location
        self.problem = problem
        self.fix_action = fix_action

    def format(self) -> str:
        return ERROR_TEMPLATE.format(
            error_type=self.error_type,
            location=self.location,
            problem=self.problem,
            fix_action=self.fix_action or "see registry documentation",
        )

    def __str__(self) -> str:
        return f"{self.location} {self.problem}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "location": self.location,
            "problem": self.problem,
            "fix_action": self.fix_action,
        }


class RegistryValidationResult:
    """Collects registry errors and warnings."""

    def __init__(self):
        self.errors: List[RegistryIssue] = []
        self.warnings: List[RegistryIssue] = []

    def add_error(self, error_type: str, location: str, problem: str, fix_action: str = ""):
        self.errors.append(RegistryIssue(error_type, location, problem, fix_action))

    def add_warning(self, error_type: str, location: str, problem: str, fix_action: str = ""):
        self.warnings.append(RegistryIssue(error_type, location, problem, fix_action))

    def extend(self, other: "RegistryValidationResult"):
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def errors_of(self, *error_types: str) -> List[RegistryIssue]:
        return [e for e in self.errors if e.error_type in error_types]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "status": "FAIL" if self.has_errors() else "PASS",
        }


def _step_location(step_id: str) -> str:
    return f'step "{step_id}":'


# =============================================================================
# Document shape
# =============================================================================


_registry_schema: Optional[Dict[str, Any]] = None


def _load_registry_schema() -> Dict[str, Any]:
    global _registry_schema
    if _registry_schema is None:
        with open(REGISTRY_SCHEMA_PATH, "r", encoding="utf-8") as f:
            _registry_schema = json.load(f)
    return _registry_schema


def validate_document(data: Any) -> RegistryValidationResult:
    """Validate a raw registry document against the bundled JSON Schema."""
    result = RegistryValidationResult()
    validator = jsonschema.Draft7Validator(_load_registry_schema())
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    for error in errors:
        path = "/".join(str(p) for p in error.absolute_path) or "<root>"
        result.add_error(
            SCHEMA,
            f"{path}:",
            error.message,
            "Correct the field to match registry.schema.json",
        )
    return result


# =============================================================================
# Registry consistency
# =============================================================================


def validate_step_kind_intents(registry: StepRegistry) -> RegistryValidationResult:
    """Gated steps declare a kind and transitions, and only emit intents that kind allows.

    Completion conditions belong on closure steps; elsewhere they still run
    on a terminal transition but are reported as a warning.
    """
    result = RegistryValidationResult()

    for step_id, step in registry.steps.items():
        loc = _step_location(step_id)
        if step.completion_conditions and step.kind is not StepKind.CLOSURE:
            kind = step.kind.value if step.kind is not None else "unclassified"
            result.add_warning(
                STEP_KIND, loc,
                f"{kind} step declares completion_conditions",
                "Move completion_conditions to a closure step",
            )

        gate = step.gate
        if gate is None:
            continue

        if step.step_kind is None:
            result.add_error(
                STEP_KIND, loc, "has structured_gate but no explicit step_kind",
                "Add step_kind: work | verification | closure",
            )
            continue

        if not step.has_transitions:
            result.add_error(
                TRANSITION, loc, "has structured_gate but no transitions",
                "Declare a transitions mapping for every allowed intent",
            )

        kind_intents = STEP_KIND_ALLOWED_INTENTS[step.step_kind]
        invalid = [i.value for i in gate.allowed_intents if i not in kind_intents]
        if invalid:
            result.add_error(
                STEP_KIND, loc,
                f"{step.step_kind.value} step cannot emit [{', '.join(invalid)}]",
                f"Allowed for {step.step_kind.value}: "
                f"[{', '.join(i.value for i in kind_intents)}]",
            )

        if gate.fallback_intent is not None and not gate.allows(gate.fallback_intent):
            result.add_error(
                STEP_KIND, loc,
                f'fallback_intent "{gate.fallback_intent.value}" is not in allowed_intents',
                "Use one of the step's allowed intents as fallback_intent",
            )

    return result


def validate_entry_config(registry: StepRegistry) -> RegistryValidationResult:
    """An entry step is configured and every referenced entry step exists."""
    result = RegistryValidationResult()

    if not registry.entry_step and not registry.entry_step_mapping:
        result.add_error(
            ENTRY, "registry:", "has neither entry_step nor entry_step_mapping",
            "Declare entry_step or entry_step_mapping",
        )
        return result

    if registry.entry_step and not registry.has_step(registry.entry_step):
        result.add_error(
            ENTRY, "entry_step:", f'references unknown step "{registry.entry_step}"',
            "Point entry_step at an existing step id",
        )

    for mode, step_id in registry.entry_step_mapping.items():
        if not registry.has_step(step_id):
            result.add_error(
                ENTRY, f'entry_step_mapping["{mode}"]:',
                f'references unknown step "{step_id}"',
                "Point the mode at an existing step id",
            )

    return result


def validate_intent_schema_refs(registry: StepRegistry) -> RegistryValidationResult:
    """Gated steps carry an internal intent_schema_ref and an intent_field.

    handoff_fields that collapse to the same key are reported as warnings.
    """
    result = RegistryValidationResult()

    for step_id, step in registry.steps.items():
        gate = step.gate
        if gate is None:
            continue
        loc = _step_location(step_id)

        if not gate.intent_schema_ref:
            result.add_error(
                INTENT_REF, loc, "has structured_gate but no intent_schema_ref",
                'Add intent_schema_ref: "#/properties/next_action/properties/action"',
            )
        elif not gate.intent_schema_ref.startswith("#/"):
            result.add_error(
                INTENT_REF, loc,
                f'intent_schema_ref "{gate.intent_schema_ref}" must be an internal '
                'pointer starting with "#/"',
                "Use a JSON Pointer into the step's own output schema",
            )

        if not gate.intent_field:
            result.add_error(
                INTENT_REF, loc, "has structured_gate but no intent_field",
                'Add intent_field, e.g. "next_action.action"',
            )

        seen: Dict[str, str] = {}
        for field_path in gate.handoff_fields:
            key = field_path.split(".")[-1]
            if key in seen:
                result.add_warning(
                    INTENT_REF, loc,
                    f'handoff_fields "{seen[key]}" and "{field_path}" both write key "{key}"',
                    "Rename one of the output fields so handoff keys stay distinct",
                )
            seen[key] = field_path

    return result


def _transition_targets(step: StepDefinition) -> List[Tuple[str, Optional[str]]]:
    targets: List[Tuple[str, Optional[str]]] = []
    for intent, rule in step.transitions.items():
        if isinstance(rule, DirectTransition):
            targets.append((f"transitions.{intent}.target", rule.target))
            if rule.fallback is not None:
                targets.append((f"transitions.{intent}.fallback", rule.fallback))
        elif isinstance(rule, ConditionalTransition):
            for value, target in rule.targets_by_value.items():
                targets.append((f"transitions.{intent}.targets.{value}", target))
    if step.retry_step is not None:
        targets.append(("retry_step", step.retry_step))
    return targets


def _has_usable_fallback(registry: StepRegistry, step: StepDefinition, field_path: str) -> bool:
    """A direct ``.target`` may dangle when its ``fallback`` resolves."""
    prefix, _, leaf = field_path.rpartition(".")
    if leaf != "target" or not prefix.startswith("transitions."):
        return False
    rule = step.transitions.get(prefix[len("transitions."):])
    return (
        isinstance(rule, DirectTransition)
        and rule.fallback is not None
        and registry.has_step(rule.fallback)
    )


def validate_transitions(registry: StepRegistry) -> RegistryValidationResult:
    """Every allowed intent has a rule and every rule points at a real step.

    ``jump`` is exempt from the rule requirement when the gate extracts its
    target from the step output.
    """
    result = RegistryValidationResult()

    for step_id, step in registry.steps.items():
        loc = _step_location(step_id)
        gate = step.gate

        if gate is not None and step.has_transitions:
            for intent in gate.allowed_intents:
                if intent.value in step.transitions:
                    continue
                if intent is GateIntent.JUMP and gate.target_field:
                    continue
                result.add_error(
                    TRANSITION, loc, f'allowed intent "{intent.value}" has no transition',
                    f"Add transitions.{intent.value} (use target: null for terminal)",
                )

        for field_path, target in _transition_targets(step):
            if target is None or registry.has_step(target):
                continue
            if _has_usable_fallback(registry, step, field_path):
                result.add_warning(
                    TRANSITION, loc,
                    f'{field_path} references unknown step "{target}"; its fallback is used',
                    "Point the transition at an existing step id or drop the fallback",
                )
            else:
                result.add_error(
                    TRANSITION, loc, f'{field_path} references unknown step "{target}"',
                    "Point the transition at an existing step id",
                )

    return result


def validate_references(registry: StepRegistry) -> RegistryValidationResult:
    """Check validator definitions and the names that point at them.

    Unknown validator and failure-pattern names are tolerated at run time
    (the condition is skipped, or the retry falls back to a generic prompt)
    so they are warnings. A command validator without a command is an error.
    """
    result = RegistryValidationResult()

    for step_id, step in registry.steps.items():
        for condition in step.completion_conditions:
            if condition.validator not in registry.validators:
                result.add_warning(
                    REFERENCE, _step_location(step_id),
                    f'completion condition references unknown validator "{condition.validator}"',
                    "Declare the validator under validators",
                )

    for name, definition in registry.validators.items():
        if definition.type is ValidatorType.COMMAND and not definition.command:
            result.add_error(
                REFERENCE, f'validator "{name}":', "is of type command but has no command",
                "Add a command or change the validator type",
            )
        pattern = definition.failure_pattern
        if pattern and pattern not in registry.completion_patterns:
            result.add_warning(
                REFERENCE, f'validator "{name}":',
                f'failure_pattern "{pattern}" is not declared',
                "Declare the pattern under completion_patterns",
            )

    return result


# =============================================================================
# Contract intent enums
# =============================================================================


async def _check_step_enum(
    resolver: SchemaResolver, step: StepDefinition
) -> Optional[RegistryIssue]:
    gate = step.gate
    ref = step.output_schema_ref
    if gate is None or ref is None:
        return None
    loc = _step_location(step.step_id)

    try:
        schema = await resolver.resolve_async(ref.file, ref.schema)
    except (SchemaResolutionError, OSError) as e:
        return RegistryIssue(
            SCHEMA_RESOLUTION, loc,
            f"failed to load schema {ref.file}#{ref.schema} for enum validation: {e}",
            "Fix output_schema_ref or the schema file",
        )

    schema_enum = extract_intent_enum(schema, gate.intent_schema_ref)
    if schema_enum is None:
        return RegistryIssue(
            ENUM_MISMATCH, loc,
            f'intent_schema_ref "{gate.intent_schema_ref}" does not point to an enum '
            f"in schema {ref.file}#{ref.schema}",
            "Point intent_schema_ref at the intent enum",
        )

    allowed = [i.value for i in gate.allowed_intents]
    missing = [i for i in allowed if i not in schema_enum]
    extra = [i for i in schema_enum if i not in allowed]
    if not missing and not extra:
        return None

    problems = []
    if missing:
        problems.append(f"allowed_intents [{', '.join(missing)}] not in schema")
    if extra:
        problems.append(f"schema has extra [{', '.join(extra)}] not in allowed_intents")
    return RegistryIssue(
        ENUM_MISMATCH, loc,
        f"enum mismatch - {'; '.join(problems)}. Expected exact match: "
        f"allowed_intents=[{', '.join(allowed)}], schema enum=[{', '.join(schema_enum)}]",
        "Make the contract enum and allowed_intents identical",
    )


async def validate_intent_schema_enums(
    registry: StepRegistry, schemas_dir: Path
) -> RegistryValidationResult:
    """Check each gated step's contract enum against its allowed_intents.

    Steps without an output_schema_ref, or with a malformed intent_schema_ref
    (reported by validate_intent_schema_refs), are skipped.
    """
    resolver = SchemaResolver(schemas_dir)
    steps = [
        step for step in registry.steps.values()
        if step.gate is not None
        and step.output_schema_ref is not None
        and step.gate.intent_schema_ref.startswith("#/")
    ]

    issues = await asyncio.gather(*(_check_step_enum(resolver, s) for s in steps))

    result = RegistryValidationResult()
    result.errors.extend(issue for issue in issues if issue is not None)
    return result


def validate_registry(
    registry: StepRegistry, strict_transitions: bool = True
) -> RegistryValidationResult:
    """Run every synchronous consistency check on a parsed registry."""
    result = RegistryValidationResult()
    result.extend(validate_step_kind_intents(registry))
    result.extend(validate_entry_config(registry))
    result.extend(validate_intent_schema_refs(registry))
    if strict_transitions:
        result.extend(validate_transitions(registry))
    result.extend(validate_references(registry))
    return result
