"""End-to-end tests for the dual-loop runner with a scripted invoker.

Registry flow: initial.issue -> verification.issue -> closure.issue, where
closure.issue requires ``done.marker`` to exist in the working directory.
"""

import asyncio

import pytest

from conftest import intent
from stepflow.registry.loader import registry_from_data
from stepflow.runtime.engines.stub import ScriptExhaustedError
from stepflow.runtime.types import RunOutcome

RETRY_PROMPT = "steps/closure/issue/f_failed_marker.md"


def write_marker(workdir):
    (workdir / "done.marker").write_text("ok")


class TestHappyPath:
    def test_three_iterations_to_success(self, registry, make_runner, workdir, observer):
        write_marker(workdir)
        runner, invoker = make_runner(
            registry, [intent("next"), intent("next"), intent("closing")]
        )

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.SUCCESS
        assert result.succeeded
        assert result.iterations == 3
        assert [h.step_id for h in result.history] == [
            "initial.issue", "verification.issue", "closure.issue"
        ]
        assert result.history[-1].validation_passed is True
        assert result.last_validation.valid
        assert invoker.step_sequence() == [h.step_id for h in result.history]
        assert observer.names()[0] == "on_run_start"
        assert observer.names()[-1] == "on_run_end"

    def test_requests_carry_locator_and_schema(self, registry, make_runner, workdir):
        write_marker(workdir)
        runner, invoker = make_runner(
            registry, [intent("next"), intent("next"), intent("closing")]
        )

        asyncio.run(runner.run())
        first = invoker.requests[0]

        assert str(first.locator) == "steps/initial/issue/f_default.md"
        assert first.iteration == 1
        assert first.retry_guidance is None
        action = first.output_schema["properties"]["next_action"]["properties"]["action"]
        assert action["enum"] == ["next", "repeat"]
        assert first.output_schema["additionalProperties"] is False

    def test_boundary_fires_once_for_accepted_closure(
        self, registry, make_runner, workdir, observer
    ):
        write_marker(workdir)
        runner, _ = make_runner(
            registry,
            [intent("next"), intent("next"), intent("closing", reason="marker written")],
        )

        asyncio.run(runner.run())

        assert observer.of("on_boundary") == [
            ("closure.issue", {
                "intent": "closing",
                "reason": "marker written",
                "handoff_data": {},
            })
        ]
        assert observer.names().index("on_boundary") > observer.names().index("on_validation")

    def test_run_sync(self, registry, make_runner, workdir):
        write_marker(workdir)
        runner, _ = make_runner(registry, [intent("next"), intent("next"), intent("closing")])

        assert runner.run_sync().iterations == 3


class TestRetryLoop:
    def test_failed_check_retries_through_repeat_transition(
        self, registry, make_runner, workdir, observer
    ):
        def verify_and_write_marker(request):
            write_marker(workdir)
            return intent("next")

        runner, invoker = make_runner(
            registry,
            [
                intent("next"),
                intent("next"),
                intent("closing"),
                verify_and_write_marker,
                intent("closing"),
            ],
            prompts={RETRY_PROMPT: "Write the marker. Error was: {{error}}"},
        )

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.SUCCESS
        assert result.iterations == 5
        assert invoker.step_sequence() == [
            "initial.issue",
            "verification.issue",
            "closure.issue",
            "verification.issue",
            "closure.issue",
        ]
        failed = result.history[2]
        assert failed.validation_passed is False
        assert failed.next_step_id == "verification.issue"
        assert invoker.requests[3].retry_guidance == (
            "Write the marker. Error was: Command exited with code 1"
        )
        assert invoker.requests[4].retry_guidance is None
        assert observer.of("on_retry_guidance") == [("closure.issue", "marker-missing", "pattern")]
        assert [args[0] for args in observer.of("on_boundary")] == ["closure.issue"]
        validations = [args[1].valid for args in observer.of("on_validation")]
        assert validations == [False, True]

    def test_retry_step_used_without_repeat_transition(
        self, registry_data, make_runner, workdir
    ):
        closure = registry_data["steps"]["closure.issue"]
        closure["structured_gate"]["allowed_intents"] = ["closing"]
        del closure["transitions"]["repeat"]
        closure["retry_step"] = "initial.issue"
        registry = registry_from_data(registry_data)

        runner, invoker = make_runner(
            registry, [intent("next"), intent("next"), intent("closing"), intent("next")],
            max_iterations=4,
        )

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.MAX_ITERATIONS
        assert invoker.step_sequence()[3] == "initial.issue"
        assert "## Completion conditions not met" in invoker.requests[3].retry_guidance

    def test_stays_on_step_without_repeat_or_retry_step(
        self, registry_data, make_runner
    ):
        closure = registry_data["steps"]["closure.issue"]
        closure["structured_gate"]["allowed_intents"] = ["closing"]
        del closure["transitions"]["repeat"]
        registry = registry_from_data(registry_data)

        runner, invoker = make_runner(
            registry, [intent("next"), intent("next"), intent("closing"), intent("closing")],
            max_iterations=4,
        )

        asyncio.run(runner.run())

        assert invoker.step_sequence()[3] == "closure.issue"


class TestBudget:
    def test_max_iterations(self, registry, make_runner):
        runner, invoker = make_runner(registry, [intent("repeat")], max_iterations=3)
        invoker.repeat_last = True

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.MAX_ITERATIONS
        assert result.iterations == 3
        assert result.error_code == "MAX_ITERATIONS_EXCEEDED"
        assert invoker.call_count == 3
        assert not result.succeeded

    def test_budget_counts_validation_retries(self, registry, make_runner):
        runner, _ = make_runner(
            registry,
            [intent("next"), intent("next"), intent("closing"), intent("next"), intent("closing")],
            max_iterations=5,
        )

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.MAX_ITERATIONS
        assert result.last_validation is not None
        assert not result.last_validation.valid


class TestFatalOutcomes:
    def test_gate_error_is_fatal(self, registry, make_runner):
        runner, _ = make_runner(registry, [intent("bogus")])

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.FATAL
        assert result.error_code == "GATE_INTERPRETATION_ERROR"
        assert result.iterations == 1

    def test_unknown_entry_mode_without_default(self, registry_data, make_runner):
        del registry_data["entry_step"]
        registry = registry_from_data(registry_data)
        runner, invoker = make_runner(registry, [])

        result = asyncio.run(runner.run(mode="missing"))

        assert result.outcome is RunOutcome.FATAL
        assert result.error_code == "CONFIGURATION_ERROR"
        assert invoker.call_count == 0

    def test_missing_output_schema_is_fatal(self, registry_data, make_runner):
        registry_data["steps"]["initial.issue"]["output_schema_ref"]["schema"] = "missing"
        registry = registry_from_data(registry_data)
        runner, invoker = make_runner(registry, [intent("next")])

        result = asyncio.run(runner.run())

        assert result.outcome is RunOutcome.FATAL
        assert result.error_code == "FAILED_SCHEMA_RESOLUTION"
        assert invoker.call_count == 0

    def test_invoker_errors_propagate(self, registry, make_runner):
        runner, _ = make_runner(registry, [intent("next")])

        with pytest.raises(ScriptExhaustedError):
            asyncio.run(runner.run())

    def test_result_serialises(self, registry, make_runner):
        runner, _ = make_runner(registry, [intent("bogus")])

        data = asyncio.run(runner.run()).to_dict()

        assert data["outcome"] == "fatal"
        assert data["history"] == []


class TestEntryAndRouting:
    def test_entry_mode_mapping(self, registry, make_runner, workdir):
        write_marker(workdir)
        runner, invoker = make_runner(registry, [intent("next"), intent("closing")])

        result = asyncio.run(runner.run(mode="review"))

        assert result.succeeded
        assert invoker.step_sequence() == ["verification.issue", "closure.issue"]

    def test_conditional_routing_uses_handoff(self, registry_data, make_runner, workdir, observer):
        verify = registry_data["steps"]["verification.issue"]
        verify["structured_gate"]["target_mode"] = "conditional"
        verify["structured_gate"]["handoff_fields"] = ["verdict.approved"]
        verify["transitions"]["next"] = {
            "condition": "approved",
            "targets": {"true": "closure.issue", "false": "initial.issue"},
        }
        registry = registry_from_data(registry_data)
        write_marker(workdir)

        runner, invoker = make_runner(
            registry,
            [
                intent("next"),
                {**intent("next"), "verdict": {"approved": False}},
                intent("next"),
                {**intent("next"), "verdict": {"approved": True}},
                intent("closing"),
            ],
        )

        result = asyncio.run(runner.run())

        assert result.succeeded
        assert invoker.step_sequence() == [
            "initial.issue",
            "verification.issue",
            "initial.issue",
            "verification.issue",
            "closure.issue",
        ]
        assert result.handoff_data == {"approved": True}
        assert invoker.requests[2].handoff_data == {"approved": False}
        assert len(observer.of("on_handoff")) == 2

    def test_terminal_transition_without_conditions_succeeds(self, make_runner):
        registry = registry_from_data({
            "agent_id": "single",
            "version": "1",
            "entry_step": "only",
            "steps": {
                "only": {
                    "step_kind": "work",
                    "structured_gate": {
                        "allowed_intents": ["next"],
                        "intent_schema_ref": "#/properties/next_action/properties/action",
                        "intent_field": "next_action.action",
                    },
                    "transitions": {"next": {"target": None}},
                },
            },
        })
        runner, _ = make_runner(registry, [intent("next")])

        result = asyncio.run(runner.run())

        assert result.succeeded
        assert result.iterations == 1
        assert result.last_validation is None

    def test_terminal_transition_with_conditions_validates(self, make_runner, workdir, observer):
        registry = registry_from_data({
            "agent_id": "single",
            "version": "1",
            "entry_step": "only",
            "steps": {
                "only": {
                    "c2": "initial",
                    "transitions": {"next": {"target": None}},
                    "completion_conditions": [{"validator": "marker"}],
                },
            },
            "validators": {"marker": {"type": "file", "path": "done.marker"}},
        })
        runner, _ = make_runner(registry, [{}, {}], max_iterations=2)

        first = asyncio.run(runner.run())
        write_marker(workdir)
        runner, _ = make_runner(registry, [{}])
        second = asyncio.run(runner.run())

        assert first.outcome is RunOutcome.MAX_ITERATIONS
        assert first.last_validation.params["missing_files"] == ["done.marker"]
        assert second.succeeded
        assert observer.of("on_boundary") == []
