"""Tests for the gate interpreter and the intent vocabulary."""

import pytest

from conftest import RecordingObserver, intent
from stepflow.registry.types import GateIntent, step_definition_from_dict
from stepflow.runtime.errors import GateInterpretationError
from stepflow.runtime.gate import GateInterpreter, get_value_at_path
from stepflow.runtime.intents import normalize_intent


def make_step(step_kind="work", **gate_overrides):
    gate = {
        "allowed_intents": ["next", "repeat", "handoff"],
        "intent_schema_ref": "#/properties/next_action/properties/action",
        "intent_field": "next_action.action",
    }
    gate.update(gate_overrides)
    return step_definition_from_dict(
        "initial.issue",
        {"step_kind": step_kind, "c2": "initial", "c3": "issue", "structured_gate": gate},
    )


class TestNormalizeIntent:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("next", GateIntent.NEXT),
            ("  NEXT ", GateIntent.NEXT),
            ("continue", GateIntent.NEXT),
            ("retry", GateIntent.REPEAT),
            ("done", GateIntent.CLOSING),
            ("escalate", GateIntent.ESCALATE),
        ],
    )
    def test_known_values(self, raw, expected):
        assert normalize_intent(raw) is expected

    def test_unknown_and_none(self):
        assert normalize_intent("maybe") is None
        assert normalize_intent(None) is None


class TestGetValueAtPath:
    def test_nested_dict_and_list_index(self):
        data = {"a": {"b": [{"c": 1}, {"c": 2}]}}

        assert get_value_at_path(data, "a.b.1.c") == 2
        assert get_value_at_path(data, "a.x", "dflt") == "dflt"
        assert get_value_at_path(data, "a.b.5") is None


class TestInterpret:
    def test_extracts_allowed_intent(self):
        result = GateInterpreter().interpret(intent("next"), make_step())

        assert result.intent is GateIntent.NEXT
        assert result.used_fallback is False
        assert result.handoff == {}

    def test_alias_is_normalised(self):
        result = GateInterpreter().interpret(intent("retry"), make_step())

        assert result.intent is GateIntent.REPEAT

    def test_reason_is_extracted(self):
        output = intent("next", reason="all checks green")

        result = GateInterpreter().interpret(output, make_step())

        assert result.reason == "all checks green"

    def test_jump_target_read_from_target_field(self):
        step = make_step(
            allowed_intents=["next", "jump"], target_field="next_action.target"
        )

        result = GateInterpreter().interpret(intent("jump", target="closure.issue"), step)

        assert result.intent is GateIntent.JUMP
        assert result.target == "closure.issue"

    def test_handoff_fields_keyed_by_last_segment(self):
        step = make_step(handoff_fields=["next_action.details.issue_id", "summary", "missing.x"])
        output = {"next_action": {"action": "handoff", "details": {"issue_id": 42}}, "summary": "ok"}

        result = GateInterpreter().interpret(output, step)

        assert result.intent is GateIntent.HANDOFF
        assert result.handoff == {"issue_id": 42, "summary": "ok"}

    def test_colliding_handoff_keys_keep_later_path(self):
        step = make_step(handoff_fields=["issue.id", "branch.id"])
        output = {**intent("handoff"), "issue": {"id": 7}, "branch": {"id": "fix-7"}}

        result = GateInterpreter().interpret(output, step)

        assert result.handoff == {"id": "fix-7"}

    def test_handoff_not_extracted_for_plain_next(self):
        step = make_step(handoff_fields=["summary"])

        result = GateInterpreter().interpret({**intent("next"), "summary": "ok"}, step)

        assert result.handoff == {}

    def test_conditional_gate_always_extracts_handoff(self):
        step = make_step(target_mode="conditional", handoff_fields=["verdict.approved"])
        output = {**intent("next"), "verdict": {"approved": False}}

        result = GateInterpreter().interpret(output, step)

        assert result.handoff == {"approved": False}

    def test_step_without_gate_defaults_by_kind(self):
        work = step_definition_from_dict("w", {"c2": "initial"})
        closure = step_definition_from_dict("c", {"c2": "closure"})

        assert GateInterpreter().interpret({}, work).intent is GateIntent.NEXT
        assert GateInterpreter().interpret({}, closure).intent is GateIntent.CLOSING


class TestFailFast:
    """fail_fast gates raise; others fall back with a reported violation."""

    def test_missing_intent_raises(self):
        with pytest.raises(GateInterpretationError) as exc_info:
            GateInterpreter().interpret({"summary": "no action"}, make_step())

        assert exc_info.value.step_id == "initial.issue"
        assert exc_info.value.code == "GATE_INTERPRETATION_ERROR"

    def test_disallowed_intent_raises_with_value(self):
        with pytest.raises(GateInterpretationError) as exc_info:
            GateInterpreter().interpret(intent("escalate"), make_step())

        assert exc_info.value.extracted_value == "escalate"
        assert "not in allowed_intents" in str(exc_info.value)

    def test_fallback_intent_used_when_not_fail_fast(self):
        observer = RecordingObserver()
        step = make_step(fail_fast=False, fallback_intent="repeat")

        result = GateInterpreter(observer).interpret(intent("bogus"), step)

        assert result.intent is GateIntent.REPEAT
        assert result.used_fallback is True
        assert observer.of("on_gate_fallback") == [
            ("initial.issue", "Unknown intent value: bogus", "repeat")
        ]

    def test_fallback_prefers_next_then_first_allowed(self):
        with_next = make_step(fail_fast=False)
        without_next = make_step(fail_fast=False, allowed_intents=["repeat", "handoff"])

        assert GateInterpreter().interpret({}, with_next).intent is GateIntent.NEXT
        assert GateInterpreter().interpret({}, without_next).intent is GateIntent.REPEAT
