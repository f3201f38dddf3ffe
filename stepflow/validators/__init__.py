"""Completion validation: shell checks, file checks and parameter extraction."""

from .command_runner import CommandResult, CommandRunner, check_success_condition
from .completion import CompletionValidator, ValidatorResult, build_details
from .param_extractors import ExtractorRegistry

__all__ = [
    "CommandResult",
    "CommandRunner",
    "CompletionValidator",
    "ExtractorRegistry",
    "ValidatorResult",
    "build_details",
    "check_success_condition",
]
