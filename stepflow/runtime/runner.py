"""
runner.py - Dual-loop step-flow runner.

The flow loop executes one step per iteration: invoke the model, interpret
the output through the step's gate, merge handoff data and route. When a
step claims completion (``closing``, or a terminal transition on a step with
completion conditions) the completion loop runs the step's validators. A
failed check produces retry guidance and sends the run back through the
step's ``repeat`` transition; the guidance is handed to the next invocation.

States:
    Running -> Succeeded | Failed-MaxIterations | Failed-Fatal

Every StepFlowError ends the run with a RunResult carrying the error code.
Exceptions raised by the model invoker itself propagate to the caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from stepflow.config.runtime_config import RunnerConfig, get_runner_config
from stepflow.prompts.resolver import FileSystemPromptResolver, PromptResolver
from stepflow.registry.schema_resolver import SchemaResolver
from stepflow.registry.types import GateIntent, StepDefinition, StepKind, StepRegistry
from stepflow.retry.handler import RetryHandler, step_locator
from stepflow.validators.completion import CompletionValidator, ValidatorResult
from stepflow.validators.param_extractors import ExtractorRegistry

from .async_utils import run_async_safely
from .engines.base import ModelInvoker
from .errors import (
    ConfigurationError,
    MaxIterationsError,
    SchemaResolutionError,
    StepFlowError,
)
from .events import LoggingObserver, RunObserver
from .gate import GateInterpreter
from .router import WorkflowRouter
from .types import (
    GateInterpretation,
    HistoryEntry,
    RunOutcome,
    RunResult,
    RunState,
    StepRequest,
)

logger = logging.getLogger(__name__)


class StepFlowRunner:
    """Drives one registry to completion with a model invoker.

    Args:
        registry: Loaded, validated step registry.
        invoker: Backend that executes individual steps.
        config: Runner settings; defaults to ``get_runner_config()``.
        prompt_resolver: Source of retry prompts; defaults to the file-system
            resolver rooted at ``config.prompts_dir``.
        schemas_dir: Directory output-schema references are relative to;
            defaults to the working directory.
        observer: Event sink; defaults to LoggingObserver.
        extractors: Parameter extractors for failed checks.
        max_iterations: Overrides ``config.max_iterations``.
        working_dir: Overrides ``config.working_dir``.
    """

    def __init__(
        self,
        registry: StepRegistry,
        invoker: ModelInvoker,
        config: Optional[RunnerConfig] = None,
        prompt_resolver: Optional[PromptResolver] = None,
        schemas_dir: Optional[Union[str, Path]] = None,
        observer: Optional[RunObserver] = None,
        extractors: Optional[ExtractorRegistry] = None,
        max_iterations: Optional[int] = None,
        working_dir: Optional[Union[str, Path]] = None,
    ):
        self.registry = registry
        self.invoker = invoker
        self.config = config or get_runner_config()
        self.max_iterations = (
            max_iterations if max_iterations is not None else self.config.max_iterations
        )
        self.working_dir = Path(working_dir) if working_dir is not None else self.config.working_dir
        self.observer = observer or LoggingObserver()

        self.gate = GateInterpreter(self.observer)
        self.router = WorkflowRouter(registry)
        self.validator = CompletionValidator(
            registry,
            self.working_dir,
            extractors=extractors,
            observer=self.observer,
            command_timeout=self.config.command_timeout,
        )
        self.retry_handler = RetryHandler(
            registry,
            prompt_resolver or FileSystemPromptResolver(self.config.prompts_dir),
            observer=self.observer,
        )
        self.schema_resolver = SchemaResolver(
            Path(schemas_dir) if schemas_dir is not None else self.working_dir
        )

    def run_sync(self, mode: Optional[str] = None) -> RunResult:
        """Blocking wrapper around :meth:`run`."""
        return run_async_safely(self.run(mode))

    async def run(self, mode: Optional[str] = None) -> RunResult:
        """Execute the registry from its entry step until a terminal state."""
        entry_step_id = self.registry.resolve_entry_step(mode)
        if entry_step_id is None or not self.registry.has_step(entry_step_id):
            error = ConfigurationError(
                f"No entry step for mode {mode!r}"
                if entry_step_id is None
                else f"Entry step '{entry_step_id}' does not exist in registry"
            )
            result = RunResult(
                outcome=RunOutcome.FATAL, iterations=0, reason=str(error), error_code=error.code
            )
            self.observer.on_run_end(result)
            return result

        state = RunState(current_step_id=entry_step_id)
        self.observer.on_run_start(self.registry.agent_id, entry_step_id)

        try:
            result = await self._flow_loop(state)
        except MaxIterationsError as e:
            result = self._result(state, RunOutcome.MAX_ITERATIONS, str(e), e.code)
        except StepFlowError as e:
            if e.iteration is None:
                e.iteration = state.iteration_count
            result = self._result(state, RunOutcome.FATAL, str(e), e.code)

        self.observer.on_run_end(result)
        return result

    async def _flow_loop(self, state: RunState) -> RunResult:
        while True:
            if state.iteration_count >= self.max_iterations:
                raise MaxIterationsError(self.max_iterations, state.current_step_id)
            state.iteration_count += 1

            step = self.registry.get_step(state.current_step_id)
            if step is None:
                raise ConfigurationError(
                    f"Step '{state.current_step_id}' does not exist in registry"
                )
            self.observer.on_iteration_start(state.iteration_count, step.step_id)

            interpretation = await self._execute_step(state, step)

            if interpretation.intent is GateIntent.CLOSING:
                completed = await self._completion_loop(state, step, interpretation)
                if completed is not None:
                    return completed
                continue

            routing = self.router.route(
                step.step_id, interpretation.intent, state.handoff_data, interpretation.target
            )
            self.observer.on_routed(step.step_id, routing)

            if routing.next_step_id is None:
                if step.completion_conditions:
                    completed = await self._completion_loop(state, step, interpretation)
                    if completed is not None:
                        return completed
                    continue
                self._record(state, step, interpretation, None)
                return self._result(
                    state, RunOutcome.SUCCESS, f"Step '{step.step_id}' reached a terminal transition"
                )

            self._record(state, step, interpretation, routing.next_step_id)
            state.current_step_id = routing.next_step_id

    async def _execute_step(self, state: RunState, step: StepDefinition) -> GateInterpretation:
        request = StepRequest(
            step=step,
            locator=step_locator(self.registry.c1, step),
            handoff_data=dict(state.handoff_data),
            retry_guidance=state.retry_guidance,
            output_schema=await self._resolve_output_schema(step),
            iteration=state.iteration_count,
        )
        state.retry_guidance = None

        output = await self.invoker.invoke(request)
        interpretation = self.gate.interpret(output.structured_output, step)
        self.observer.on_gate_interpreted(step.step_id, interpretation)

        if interpretation.handoff:
            state.merge_handoff(interpretation.handoff)
            self.observer.on_handoff(step.step_id, dict(interpretation.handoff))
        return interpretation

    async def _resolve_output_schema(self, step: StepDefinition) -> Optional[Dict[str, Any]]:
        ref = step.output_schema_ref
        if ref is None:
            return None
        try:
            return await self.schema_resolver.resolve_async(ref.file, ref.schema)
        except SchemaResolutionError as e:
            e.step_id = e.step_id or step.step_id
            e.schema_ref = e.schema_ref or f"{ref.file}#{ref.schema}"
            raise

    async def _completion_loop(
        self, state: RunState, step: StepDefinition, interpretation: GateInterpretation
    ) -> Optional[RunResult]:
        """Validate a completion claim. Returns a result on success, else None."""
        validation = await self.validator.validate(step.step_id, step.completion_conditions)
        state.last_validation = validation
        self.observer.on_validation(step.step_id, validation)

        if validation.valid:
            self._record(state, step, interpretation, None, validation_passed=True)
            if step.kind is StepKind.CLOSURE:
                self.observer.on_boundary(step.step_id, {
                    "intent": interpretation.intent.value,
                    "reason": interpretation.reason,
                    "handoff_data": dict(state.handoff_data),
                })
            return self._result(
                state, RunOutcome.SUCCESS, f"Step '{step.step_id}' completed and validated"
            )

        state.retry_guidance = self.retry_handler.build_retry_prompt(step, validation)
        next_step_id = self._retry_target(state, step)
        self._record(state, step, interpretation, next_step_id, validation_passed=False)
        state.current_step_id = next_step_id
        return None

    def _retry_target(self, state: RunState, step: StepDefinition) -> str:
        if step.transition_for(GateIntent.REPEAT) is not None:
            routing = self.router.route(step.step_id, GateIntent.REPEAT, state.handoff_data)
            self.observer.on_routed(step.step_id, routing)
            return routing.next_step_id or step.step_id
        if step.retry_step:
            if not self.registry.has_step(step.retry_step):
                raise ConfigurationError(
                    f"retry_step '{step.retry_step}' of step '{step.step_id}' does not exist"
                )
            return step.retry_step
        return step.step_id

    @staticmethod
    def _record(
        state: RunState,
        step: StepDefinition,
        interpretation: GateInterpretation,
        next_step_id: Optional[str],
        validation_passed: Optional[bool] = None,
    ) -> None:
        state.record(
            HistoryEntry(
                iteration=state.iteration_count,
                step_id=step.step_id,
                intent=interpretation.intent.value,
                next_step_id=next_step_id,
                used_fallback=interpretation.used_fallback,
                validation_passed=validation_passed,
            )
        )

    @staticmethod
    def _result(
        state: RunState, outcome: RunOutcome, reason: str, error_code: Optional[str] = None
    ) -> RunResult:
        validation: Optional[ValidatorResult] = state.last_validation
        return RunResult(
            outcome=outcome,
            iterations=state.iteration_count,
            history=list(state.history),
            reason=reason,
            error_code=error_code,
            handoff_data=dict(state.handoff_data),
            last_validation=validation,
        )
