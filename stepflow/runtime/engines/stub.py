"""
stub.py - Scripted invoker for tests and dry runs.

Replays canned structured outputs in order and records every request it
receives, so tests can assert on handoff data and retry guidance.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from stepflow.runtime.types import StepOutput, StepRequest, UsageMetrics

from .base import ModelInvoker

logger = logging.getLogger(__name__)

ScriptEntry = Union[Mapping[str, Any], Callable[[StepRequest], Mapping[str, Any]]]


class ScriptExhaustedError(RuntimeError):
    """The scripted invoker was called more times than it has outputs."""


class ScriptedInvoker(ModelInvoker):
    """Returns scripted outputs one per call.

    Entries are either structured-output mappings or callables that build
    one from the request.
    """

    def __init__(self, outputs: Iterable[ScriptEntry], repeat_last: bool = False):
        self.outputs: List[ScriptEntry] = list(outputs)
        self.repeat_last = repeat_last
        self.requests: List[StepRequest] = []

    @property
    def invoker_id(self) -> str:
        return "scripted"

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def step_sequence(self) -> List[str]:
        return [r.step.step_id for r in self.requests]

    def _next_entry(self) -> ScriptEntry:
        index = len(self.requests) - 1
        if index < len(self.outputs):
            return self.outputs[index]
        if self.repeat_last and self.outputs:
            return self.outputs[-1]
        raise ScriptExhaustedError(
            f"No scripted output for call {index + 1} ({len(self.outputs)} scripted)"
        )

    async def invoke(self, request: StepRequest) -> StepOutput:
        self.requests.append(request)
        entry = self._next_entry()
        output: Optional[Mapping[str, Any]] = entry(request) if callable(entry) else entry
        logger.debug("Scripted output for %s: %s", request.step.step_id, output)
        structured: Dict[str, Any] = dict(output or {})
        return StepOutput(structured_output=structured, usage=UsageMetrics(num_turns=1))
