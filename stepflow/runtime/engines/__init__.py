"""Model invokers: the abstract interface and a scripted stub."""

from .base import ModelInvoker
from .stub import ScriptedInvoker, ScriptExhaustedError

__all__ = ["ModelInvoker", "ScriptedInvoker", "ScriptExhaustedError"]
