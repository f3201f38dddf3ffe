"""
Test fixtures and utilities for step-flow tests.

Provides a three-step registry (work -> verification -> closure) matching
the canonical iterate-then-close flow, the output contracts its gates refer
to, a recording observer and a helper that wires a runner to a scripted
invoker.
"""

import copy
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest
import yaml

_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from stepflow.config.runtime_config import RunnerConfig
from stepflow.prompts.resolver import DictPromptResolver
from stepflow.registry.loader import registry_from_data
from stepflow.runtime.engines.stub import ScriptedInvoker
from stepflow.runtime.events import RunObserver
from stepflow.runtime.runner import StepFlowRunner

SCHEMA_FILE = "step_outputs.schema.json"
INTENT_POINTER = "#/properties/next_action/properties/action"

STEP_INTENTS = {
    "initial.issue": ["next", "repeat"],
    "verification.issue": ["next", "repeat"],
    "closure.issue": ["closing", "repeat"],
}


# ============================================================================
# Registry documents
# ============================================================================


def _gate(intents: List[str]) -> Dict[str, Any]:
    return {
        "allowed_intents": list(intents),
        "intent_schema_ref": INTENT_POINTER,
        "intent_field": "next_action.action",
    }


def _schema_ref(step_id: str) -> Dict[str, str]:
    return {"file": SCHEMA_FILE, "schema": step_id}


def build_registry_data() -> Dict[str, Any]:
    """Three-step registry: initial.issue -> verification.issue -> closure.issue."""
    return {
        "agent_id": "iterator",
        "version": "1.0.0",
        "entry_step": "initial.issue",
        "entry_step_mapping": {"review": "verification.issue"},
        "steps": {
            "initial.issue": {
                "name": "Work on issue",
                "step_kind": "work",
                "c2": "initial",
                "c3": "issue",
                "structured_gate": _gate(STEP_INTENTS["initial.issue"]),
                "output_schema_ref": _schema_ref("initial.issue"),
                "transitions": {
                    "next": {"target": "verification.issue"},
                    "repeat": {"target": "initial.issue"},
                },
            },
            "verification.issue": {
                "name": "Verify issue",
                "step_kind": "verification",
                "c2": "verification",
                "c3": "issue",
                "structured_gate": _gate(STEP_INTENTS["verification.issue"]),
                "output_schema_ref": _schema_ref("verification.issue"),
                "transitions": {
                    "next": {"target": "closure.issue"},
                    "repeat": {"target": "initial.issue"},
                },
            },
            "closure.issue": {
                "name": "Close issue",
                "step_kind": "closure",
                "c2": "closure",
                "c3": "issue",
                "structured_gate": _gate(STEP_INTENTS["closure.issue"]),
                "output_schema_ref": _schema_ref("closure.issue"),
                "transitions": {
                    "closing": {"target": None},
                    "repeat": {"target": "verification.issue"},
                },
                "completion_conditions": [{"validator": "marker_present"}],
            },
        },
        "validators": {
            "marker_present": {
                "type": "command",
                "command": "test -f done.marker",
                "success_when": "exitCode:0",
                "failure_pattern": "marker-missing",
            },
        },
        "completion_patterns": {
            "marker-missing": {
                "description": "The completion marker was not written",
                "edition": "failed",
                "adaptation": "marker",
                "params": ["error"],
            },
        },
    }


def output_schema(intents: Iterable[str]) -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["next_action"],
        "properties": {
            "summary": {"type": "string"},
            "next_action": {
                "type": "object",
                "required": ["action"],
                "properties": {
                    "action": {"type": "string", "enum": list(intents)},
                    "target": {"type": "string"},
                    "reason": {"type": "string"},
                },
            },
        },
    }


def write_schemas(directory: Path, overrides: Optional[Dict[str, List[str]]] = None) -> Path:
    """Write the output contracts for every step, optionally overriding enums."""
    intents = dict(STEP_INTENTS)
    intents.update(overrides or {})
    document = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "definitions": {step_id: output_schema(values) for step_id, values in intents.items()},
    }
    directory.mkdir(parents=True, exist_ok=True)
    (directory / SCHEMA_FILE).write_text(json.dumps(document, indent=2), encoding="utf-8")
    return directory


def write_registry(path: Path, data: Dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def intent(action: str, **extra: Any) -> Dict[str, Any]:
    """Structured output emitting ``action`` through ``next_action.action``."""
    next_action: Dict[str, Any] = {"action": action}
    next_action.update(extra)
    return {"next_action": next_action}


# ============================================================================
# Observers
# ============================================================================


class RecordingObserver(RunObserver):
    """Records every event as ``(hook_name, args)``."""

    def __init__(self):
        self.events: List[Tuple[str, Tuple[Any, ...]]] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Tuple[Any, ...]]:
        return [args for event, args in self.events if event == name]

    def on_run_start(self, *args):
        self.events.append(("on_run_start", args))

    def on_iteration_start(self, *args):
        self.events.append(("on_iteration_start", args))

    def on_gate_interpreted(self, *args):
        self.events.append(("on_gate_interpreted", args))

    def on_gate_fallback(self, *args):
        self.events.append(("on_gate_fallback", args))

    def on_handoff(self, *args):
        self.events.append(("on_handoff", args))

    def on_routed(self, *args):
        self.events.append(("on_routed", args))

    def on_validator_skipped(self, *args):
        self.events.append(("on_validator_skipped", args))

    def on_validation(self, *args):
        self.events.append(("on_validation", args))

    def on_retry_guidance(self, *args):
        self.events.append(("on_retry_guidance", args))

    def on_boundary(self, *args):
        self.events.append(("on_boundary", args))

    def on_run_end(self, *args):
        self.events.append(("on_run_end", args))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def default_strict_transitions(monkeypatch):
    """Registry checks run with the bundled strict default unless a test opts out."""
    monkeypatch.delenv("STEPFLOW_STRICT_TRANSITIONS", raising=False)


@pytest.fixture
def registry_data() -> Dict[str, Any]:
    """A fresh, mutable copy of the three-step registry document."""
    return copy.deepcopy(build_registry_data())


@pytest.fixture
def schemas_dir(tmp_path) -> Path:
    return write_schemas(tmp_path / "schemas")


@pytest.fixture
def registry(registry_data, schemas_dir):
    return registry_from_data(registry_data, agent_id="iterator", schemas_dir=schemas_dir)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def workdir(tmp_path) -> Path:
    directory = tmp_path / "work"
    directory.mkdir()
    return directory


@pytest.fixture
def make_runner(workdir, schemas_dir, observer):
    """Build a runner over a scripted invoker. Returns (runner, invoker)."""

    def _make(registry, outputs, prompts=None, max_iterations=10, **kwargs):
        invoker = ScriptedInvoker(outputs)
        runner = StepFlowRunner(
            registry,
            invoker,
            config=RunnerConfig(max_iterations=max_iterations, working_dir=workdir),
            prompt_resolver=DictPromptResolver(prompts or {}),
            schemas_dir=schemas_dir,
            observer=observer,
            **kwargs,
        )
        return runner, invoker

    return _make
