"""
handler.py - Retry guidance for failed completion checks.

Guidance is looked up in three stages, first hit wins:

1. The failure pattern's own prompt: locator ``{c1, c2, c3}`` of the step
   with the pattern's edition and adaptation.
2. The step's generic failure prompt: same c2/c3, edition ``failed``.
3. A built-in markdown message listing the pattern, the raw error and the
   extracted parameters.

Prompts found in stages 1 and 2 are rendered with the validator's params
(plus ``error`` and ``pattern``) through the template injector.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from stepflow.prompts.resolver import PromptLocator, PromptResolver
from stepflow.registry.types import StepDefinition, StepRegistry
from stepflow.runtime.events import RunObserver
from stepflow.validators.completion import ValidatorResult

from .param_injector import inject_params

logger = logging.getLogger(__name__)

FAILED_EDITION = "failed"

# Bullets listed per array param in the generic message
MAX_LIST_ITEMS = 10


def step_locator(c1: str, step: StepDefinition) -> PromptLocator:
    """Locator of a step's own prompt."""
    return PromptLocator(
        c1=c1, c2=step.c2, c3=step.c3, edition=step.edition, adaptation=step.adaptation
    )


def _format_item(item: Any) -> str:
    if isinstance(item, (dict, list)):
        return json.dumps(item, separators=(",", ":"), default=str)
    return str(item)


def build_generic_message(
    pattern: Optional[str], error: Optional[str], params: Mapping[str, Any]
) -> str:
    """Last-resort retry message when no prompt could be resolved."""
    lines: List[str] = ["## Completion conditions not met", ""]
    if pattern:
        lines += [f"**Pattern:** {pattern}", ""]
    if error:
        lines += ["**Error:**", "```", error, "```", ""]

    detail_lines: List[str] = []
    for key, value in params.items():
        if isinstance(value, list):
            if not value:
                continue
            detail_lines.append(f"**{key}:**")
            detail_lines.extend(f"- {_format_item(item)}" for item in value[:MAX_LIST_ITEMS])
            if len(value) > MAX_LIST_ITEMS:
                detail_lines.append(f"- +{len(value) - MAX_LIST_ITEMS} more")
        elif isinstance(value, dict):
            detail_lines.append(f"**{key}:** {_format_item(value)}")
        elif isinstance(value, str):
            if value.strip():
                detail_lines.append(f"**{key}:** {value}")
        elif value is not None:
            detail_lines.append(f"**{key}:** {value}")

    if detail_lines:
        lines += ["### Details", ""] + detail_lines + [""]

    lines.append("Please resolve this issue and try completing again.")
    return "\n".join(lines)


class RetryHandler:
    """Builds retry prompts from failure patterns."""

    def __init__(
        self,
        registry: StepRegistry,
        resolver: PromptResolver,
        observer: Optional[RunObserver] = None,
    ):
        self.registry = registry
        self.resolver = resolver
        self.observer = observer or RunObserver()

    def _template_params(self, result: ValidatorResult) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(result.params)
        params.setdefault("error", result.error or "")
        params.setdefault("pattern", result.pattern or "")
        params.setdefault("details", list(result.details))
        return params

    def _render(self, locator: PromptLocator, params: Mapping[str, Any]) -> Optional[str]:
        resolution = self.resolver.resolve(locator)
        if not resolution.ok or resolution.content is None:
            logger.debug("Retry prompt not available at %s: %s", locator, resolution.error)
            return None
        return inject_params(resolution.content, params)

    def build_retry_prompt(self, step: StepDefinition, result: ValidatorResult) -> str:
        """Return guidance for re-running ``step`` after a failed validation."""
        params = self._template_params(result)
        base = step_locator(self.registry.c1, step)

        pattern = self.registry.completion_patterns.get(result.pattern) if result.pattern else None
        if pattern is not None:
            prompt = self._render(base.with_edition(pattern.edition, pattern.adaptation), params)
            if prompt is not None:
                self.observer.on_retry_guidance(step.step_id, result.pattern, "pattern")
                return prompt
        elif result.pattern:
            logger.debug("Unknown failure pattern '%s' for step %s", result.pattern, step.step_id)

        prompt = self._render(base.with_edition(FAILED_EDITION), params)
        if prompt is not None:
            self.observer.on_retry_guidance(step.step_id, result.pattern, FAILED_EDITION)
            return prompt

        self.observer.on_retry_guidance(step.step_id, result.pattern, "generic")
        return build_generic_message(result.pattern, result.error, result.params)
