"""Retry guidance: failure-pattern prompt lookup and template injection."""

from .handler import RetryHandler, build_generic_message, step_locator
from .param_injector import inject_params

__all__ = ["RetryHandler", "build_generic_message", "inject_params", "step_locator"]
