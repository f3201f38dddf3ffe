"""
base.py - Abstract model invoker.

The runner owns flow traversal, gating, routing and validation. An invoker
only executes one step: it receives a StepRequest (step, prompt locator,
handoff data, retry guidance, output schema) and returns the model's
structured output with usage metrics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from stepflow.runtime.types import StepOutput, StepRequest


class ModelInvoker(ABC):
    """Interface for pluggable model backends."""

    @property
    def invoker_id(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def invoke(self, request: StepRequest) -> StepOutput:
        """Execute one step and return its structured output.

        Exceptions raised here are not caught by the runner.
        """
        ...
