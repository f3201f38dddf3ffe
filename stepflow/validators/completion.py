"""
completion.py - Completion validator.

Runs a closure step's completion conditions in order and stops at the first
failure. A failure is a value, not an exception: the returned
ValidatorResult names the failure pattern and carries the parameters the
retry handler injects into its prompt.

Validator types:
    command  run a shell command and evaluate ``success_when``
    file     every path (definition ``path`` plus ``params.paths``) exists
    custom   run ``command`` if configured, otherwise pass with a warning
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from stepflow.registry.types import (
    CompletionCondition,
    StepRegistry,
    ValidatorDefinition,
    ValidatorType,
)
from stepflow.runtime.errors import ConfigurationError
from stepflow.runtime.events import RunObserver

from .command_runner import DEFAULT_TIMEOUT_SECONDS, CommandRunner, check_success_condition
from .param_extractors import ExtractorRegistry

logger = logging.getLogger(__name__)

# Detail lines kept before the "+N more" line
MAX_DETAILS = 10


@dataclass
class ValidatorResult:
    """Outcome of validating a step's completion conditions.

    Attributes:
        valid: True when every condition passed.
        pattern: Failure pattern of the failing validator.
        params: Parameters extracted for the retry prompt.
        error: Raw error text of the failing validator.
        errors: One ``validator: error`` line per failing validator.
        details: Itemised findings (files, tests, ...), capped.
        validator: Name of the failing validator.
    """

    valid: bool
    pattern: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    details: List[str] = field(default_factory=list)
    validator: Optional[str] = None

    @classmethod
    def passed(cls) -> "ValidatorResult":
        return cls(valid=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "pattern": self.pattern,
            "params": self.params,
            "error": self.error,
            "errors": list(self.errors),
            "details": list(self.details),
            "validator": self.validator,
        }


@dataclass
class _RunOutcome:
    valid: bool
    params: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def _detail_line(item: Any) -> str:
    if isinstance(item, dict):
        message = item.get("message") or item.get("error") or item.get("rule") or ""
        first_line = str(message).splitlines()[0] if message else ""
        if item.get("file") and item.get("line"):
            return f"{item['file']}:{item['line']}: {first_line}".rstrip(": ")
        if item.get("name"):
            return f"{item['name']}: {first_line}".rstrip(": ")
        return json.dumps(item, separators=(",", ":"), default=str)
    return str(item)


def build_details(params: Mapping[str, Any], limit: int = MAX_DETAILS) -> List[str]:
    """Flatten list-valued params into detail lines, capped at ``limit``."""
    lines: List[str] = []
    for value in params.values():
        if isinstance(value, list):
            lines.extend(_detail_line(item) for item in value)
    if len(lines) > limit:
        return lines[:limit] + [f"+{len(lines) - limit} more"]
    return lines


class CompletionValidator:
    """Evaluates completion conditions against a registry's validators."""

    def __init__(
        self,
        registry: StepRegistry,
        working_dir: Union[str, Path],
        extractors: Optional[ExtractorRegistry] = None,
        observer: Optional[RunObserver] = None,
        command_timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.validators: Mapping[str, ValidatorDefinition] = registry.validators
        self.working_dir = Path(working_dir)
        self.extractors = extractors or ExtractorRegistry()
        self.observer = observer or RunObserver()
        self.runner = CommandRunner(self.working_dir, timeout=command_timeout)

    async def validate(
        self, step_id: str, conditions: Sequence[CompletionCondition]
    ) -> ValidatorResult:
        """Run conditions sequentially; return on the first failure.

        Conditions naming an unknown validator are skipped.
        """
        for condition in conditions:
            definition = self.validators.get(condition.validator)
            if definition is None:
                self.observer.on_validator_skipped(
                    step_id, condition.validator, "validator not defined in registry"
                )
                continue

            outcome = await self._run_validator(step_id, definition, condition.params)
            if not outcome.valid:
                return ValidatorResult(
                    valid=False,
                    pattern=definition.failure_pattern or None,
                    params=outcome.params,
                    error=outcome.error,
                    errors=[f"{definition.name}: {outcome.error}"],
                    details=build_details(outcome.params),
                    validator=definition.name,
                )

        return ValidatorResult.passed()

    async def _run_validator(
        self, step_id: str, definition: ValidatorDefinition, params: Mapping[str, Any]
    ) -> _RunOutcome:
        if definition.type is ValidatorType.COMMAND:
            return await self._run_command(definition)
        if definition.type is ValidatorType.FILE:
            return self._run_file(definition, params)
        if definition.type is ValidatorType.CUSTOM:
            if definition.command:
                return await self._run_command(definition)
            self.observer.on_validator_skipped(
                step_id, definition.name, "custom validator has no command; treated as passed"
            )
            return _RunOutcome(valid=True)
        raise ConfigurationError(f"Unknown validator type: {definition.type}")

    async def _run_command(self, definition: ValidatorDefinition) -> _RunOutcome:
        if not definition.command:
            raise ConfigurationError(
                f"Validator '{definition.name}' of type command has no command"
            )

        result = await self.runner.run(definition.command)
        if check_success_condition(definition.success_when, result):
            return _RunOutcome(valid=True)

        return _RunOutcome(
            valid=False,
            params=self.extractors.extract(definition.extract_params, result),
            error=(result.stderr or result.stdout).strip()
            or f"Command exited with code {result.exit_code}",
        )

    def _run_file(
        self, definition: ValidatorDefinition, params: Mapping[str, Any]
    ) -> _RunOutcome:
        paths: List[str] = []
        if definition.path:
            paths.append(definition.path)
        paths.extend(str(p) for p in params.get("paths", []) or [])

        missing = [p for p in paths if not (self.working_dir / p).exists()]
        if not missing:
            return _RunOutcome(valid=True)

        return _RunOutcome(
            valid=False,
            params={"missing_files": missing, "expected_path": paths[0]},
            error=f"Missing files: {', '.join(missing)}",
        )
