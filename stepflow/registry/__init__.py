"""Step registry: data model, loading, and validation."""

from .loader import load_registry, read_registry_document, registry_from_data
from .schema_resolver import SchemaResolver, extract_intent_enum
from .types import (
    STEP_KIND_ALLOWED_INTENTS,
    CompletionCondition,
    CompletionPattern,
    ConditionalTransition,
    DirectTransition,
    GateIntent,
    OutputSchemaRef,
    StepDefinition,
    StepGate,
    StepKind,
    StepRegistry,
    TargetMode,
    TransitionRule,
    ValidatorDefinition,
    ValidatorType,
    step_registry_from_dict,
)

__all__ = [
    "STEP_KIND_ALLOWED_INTENTS",
    "CompletionCondition",
    "CompletionPattern",
    "ConditionalTransition",
    "DirectTransition",
    "GateIntent",
    "OutputSchemaRef",
    "SchemaResolver",
    "StepDefinition",
    "StepGate",
    "StepKind",
    "StepRegistry",
    "TargetMode",
    "TransitionRule",
    "ValidatorDefinition",
    "ValidatorType",
    "extract_intent_enum",
    "load_registry",
    "read_registry_document",
    "registry_from_data",
    "step_registry_from_dict",
]
