"""Runtime configuration for the step-flow runner.

Provides the iteration budget, working directory, prompt root, registry
strictness and command timeout. Environment variables take precedence over
YAML config.

Usage:
    from stepflow.config.runtime_config import get_runner_config

    config = get_runner_config()
    runner = StepFlowRunner(registry, invoker, config=config)

Environment variables:
    STEPFLOW_MAX_ITERATIONS       iteration budget (int)
    STEPFLOW_WORKING_DIR          directory completion checks run in
    STEPFLOW_PROMPTS_BASE         root of the prompt tree
    STEPFLOW_STRICT_TRANSITIONS   "0"/"false" disables load-time transition checks
    STEPFLOW_COMMAND_TIMEOUT      seconds per completion-check command
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

DEFAULT_MAX_ITERATIONS = 10
MAX_ITERATIONS_MIN = 1
MAX_ITERATIONS_MAX = 1000

DEFAULT_COMMAND_TIMEOUT = 300.0

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _clamp_max_iterations(value: int) -> int:
    """Clamp the iteration budget to sanity bounds with logging."""
    if value < MAX_ITERATIONS_MIN:
        logger.warning(
            "max_iterations value %d is below minimum %d. Clamping to %d.",
            value, MAX_ITERATIONS_MIN, MAX_ITERATIONS_MIN,
        )
        return MAX_ITERATIONS_MIN
    if value > MAX_ITERATIONS_MAX:
        logger.warning(
            "max_iterations value %d exceeds maximum %d. Clamping to %d.",
            value, MAX_ITERATIONS_MAX, MAX_ITERATIONS_MAX,
        )
        return MAX_ITERATIONS_MAX
    return value


@dataclass
class RunnerConfig:
    """Resolved runner settings.

    ``source`` records where ``max_iterations`` came from: ``default``,
    ``yaml`` or ``env``.
    """
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    working_dir: Path = Path(".")
    prompts_base: Optional[Path] = None
    strict_transitions: bool = True
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    source: str = "default"

    @property
    def prompts_dir(self) -> Path:
        return self.prompts_base if self.prompts_base is not None else self.working_dir / "prompts"


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            _cached_config = yaml.safe_load(f) or _default_config()
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "runner": {
            "max_iterations": DEFAULT_MAX_ITERATIONS,
            "working_dir": None,
            "prompts_base": None,
        },
        "registry": {"strict_transitions": True},
        "validators": {"command_timeout_seconds": DEFAULT_COMMAND_TIMEOUT},
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def _section(name: str) -> Dict[str, Any]:
    return _load_config().get(name) or {}


def _parse_bool(value: str, name: str, default: bool) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("Invalid boolean %r for %s, using %s", value, name, default)
    return default


def get_max_iterations() -> int:
    """Get the iteration budget.

    Priority:
    1. STEPFLOW_MAX_ITERATIONS env var
    2. runner.max_iterations in runtime.yaml
    3. Default (10)
    """
    env_value = os.environ.get("STEPFLOW_MAX_ITERATIONS")
    if env_value:
        try:
            return _clamp_max_iterations(int(env_value))
        except ValueError:
            logger.warning("Invalid STEPFLOW_MAX_ITERATIONS value %r, ignoring", env_value)

    value = _section("runner").get("max_iterations", DEFAULT_MAX_ITERATIONS)
    return _clamp_max_iterations(int(value))


def get_working_dir() -> Path:
    env_value = os.environ.get("STEPFLOW_WORKING_DIR")
    if env_value:
        return Path(env_value)
    value = _section("runner").get("working_dir")
    return Path(value) if value else Path.cwd()


def get_prompts_base() -> Optional[Path]:
    env_value = os.environ.get("STEPFLOW_PROMPTS_BASE")
    if env_value:
        return Path(env_value)
    value = _section("runner").get("prompts_base")
    return Path(value) if value else None


def get_strict_transitions() -> bool:
    default = bool(_section("registry").get("strict_transitions", True))
    env_value = os.environ.get("STEPFLOW_STRICT_TRANSITIONS")
    if env_value:
        return _parse_bool(env_value, "STEPFLOW_STRICT_TRANSITIONS", default)
    return default


def get_command_timeout() -> float:
    env_value = os.environ.get("STEPFLOW_COMMAND_TIMEOUT")
    if env_value:
        try:
            return float(env_value)
        except ValueError:
            logger.warning("Invalid STEPFLOW_COMMAND_TIMEOUT value %r, ignoring", env_value)
    return float(_section("validators").get("command_timeout_seconds", DEFAULT_COMMAND_TIMEOUT))


def get_runner_config() -> RunnerConfig:
    """Resolve the full runner configuration (env > YAML > defaults)."""
    if os.environ.get("STEPFLOW_MAX_ITERATIONS"):
        source = "env"
    elif "max_iterations" in _section("runner"):
        source = "yaml"
    else:
        source = "default"

    return RunnerConfig(
        max_iterations=get_max_iterations(),
        working_dir=get_working_dir(),
        prompts_base=get_prompts_base(),
        strict_transitions=get_strict_transitions(),
        command_timeout=get_command_timeout(),
        source=source,
    )
