"""
loader.py - Load and validate step registries from YAML or JSON files.

``yaml.safe_load`` parses both formats. A loaded registry has passed every
check in ``stepflow.registry.validator``; problems are reported together in
one ConfigurationError (or SchemaResolutionError when output contracts
cannot be loaded at all).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from stepflow.config.runtime_config import get_strict_transitions
from stepflow.runtime.async_utils import run_async_safely
from stepflow.runtime.errors import ConfigurationError, SchemaResolutionError

from .types import StepRegistry, step_registry_from_dict
from .validator import (
    ENUM_MISMATCH,
    SCHEMA_RESOLUTION,
    RegistryValidationResult,
    validate_document,
    validate_intent_schema_enums,
    validate_registry,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_registry_document(path: PathLike) -> Dict[str, Any]:
    """Read a raw registry document.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML/JSON or is empty.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Step registry not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML/JSON in step registry {path}: {e}") from e

    if not data:
        raise ConfigurationError(f"Empty step registry: {path}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Step registry {path} must be a mapping at the top level")
    return data


def check_registry_data(
    data: Dict[str, Any],
    agent_id: Optional[str] = None,
    schemas_dir: Optional[PathLike] = None,
    strict_transitions: Optional[bool] = None,
) -> RegistryValidationResult:
    """Run every check on a raw document without raising.

    Later checks only run once the document shape is valid, since they need
    a parsed registry.
    """
    result = validate_document(data)
    if result.has_errors():
        return result

    if agent_id is not None and data.get("agent_id") != agent_id:
        result.add_error(
            "AGENT_ID", "agent_id:",
            f'registry declares "{data.get("agent_id")}" but "{agent_id}" was requested',
            "Load the registry that belongs to this agent",
        )
        return result

    if strict_transitions is None:
        strict_transitions = get_strict_transitions()

    registry = step_registry_from_dict(data)
    result.extend(validate_registry(registry, strict_transitions=strict_transitions))

    if schemas_dir is not None:
        result.extend(
            run_async_safely(validate_intent_schema_enums(registry, Path(schemas_dir)))
        )
    return result


def registry_from_data(
    data: Dict[str, Any],
    agent_id: Optional[str] = None,
    schemas_dir: Optional[PathLike] = None,
    strict_transitions: Optional[bool] = None,
) -> StepRegistry:
    """Validate a raw document and return the immutable registry.

    Args:
        data: Parsed registry document.
        agent_id: When given, must equal the document's agent_id.
        schemas_dir: Directory holding output contracts. When given, each
            gated step's contract enum is compared with its allowed intents.
        strict_transitions: Require a transition for every allowed intent
            and existing targets for every transition. None reads the
            runtime config (STEPFLOW_STRICT_TRANSITIONS).

    Raises:
        ConfigurationError: Registry is structurally invalid.
        SchemaResolutionError: Contracts could not be loaded (and nothing
            else was wrong).
    """
    result = check_registry_data(data, agent_id, schemas_dir, strict_transitions)

    for warning in result.warnings:
        logger.warning("Step registry: %s", warning)

    if result.has_errors():
        resolution = result.errors_of(SCHEMA_RESOLUTION)
        if resolution and len(resolution) == len(result.errors):
            raise SchemaResolutionError(
                "Step registry validation failed (schema resolution)",
                errors=[str(e) for e in resolution],
            )
        label = "intent schema enum mismatch" if result.errors_of(ENUM_MISMATCH) else "structure"
        raise ConfigurationError(
            f"Step registry validation failed ({label})",
            errors=[str(e) for e in result.errors],
        )

    registry = step_registry_from_dict(data)
    logger.debug(
        "Loaded step registry %s v%s (%d steps)",
        registry.agent_id, registry.version, len(registry.steps),
    )
    return registry


def load_registry(
    path: PathLike,
    agent_id: Optional[str] = None,
    schemas_dir: Optional[PathLike] = None,
    strict_transitions: Optional[bool] = None,
) -> StepRegistry:
    """Load a step registry from disk.

    Example:
        registry = load_registry(
            ".agent/iterator/steps_registry.yaml",
            agent_id="iterator",
            schemas_dir=".agent/iterator/schemas",
        )

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the document is unparseable or invalid.
        SchemaResolutionError: If output contracts cannot be loaded.
    """
    data = read_registry_document(path)
    return registry_from_data(data, agent_id, schemas_dir, strict_transitions)
