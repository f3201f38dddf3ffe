"""
param_extractors.py - Named extractors that turn a CommandResult into
retry-prompt parameters.

A validator's ``extract_params`` maps parameter names to extractor names::

    extract_params:
      changedFiles: changed_files
      untrackedFiles: untracked_files

Extractors are held in an explicit ExtractorRegistry object handed to the
completion validator, so callers can add their own without touching module
state.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .command_runner import CommandResult
from .extractors import format_check, git_status, lint_errors, test_output, type_errors

logger = logging.getLogger(__name__)

ExtractorFunction = Callable[[CommandResult], Any]


def _records(items: Iterable[Any]) -> list:
    return [item.to_dict() for item in items]


def _builtin_extractors() -> Dict[str, ExtractorFunction]:
    return {
        # git status --porcelain
        "changed_files": lambda r: git_status.parse_changed_files(r.stdout),
        "untracked_files": lambda r: git_status.parse_untracked_files(r.stdout),
        "staged_files": lambda r: git_status.parse_staged_files(r.stdout),
        "unstaged_files": lambda r: git_status.parse_unstaged_files(r.stdout),
        # pytest
        "failed_tests": lambda r: _records(test_output.parse_test_output(r.stdout, r.stderr)),
        "test_error_output": lambda r: test_output.get_test_error_output(r.stdout, r.stderr),
        # mypy
        "type_errors": lambda r: _records(type_errors.parse_type_errors(r.stdout, r.stderr)),
        "error_files": lambda r: type_errors.extract_files(r.stdout, r.stderr),
        # ruff / flake8
        "lint_errors": lambda r: _records(lint_errors.parse_lint_errors(r.stdout, r.stderr)),
        "lint_files": lambda r: lint_errors.extract_lint_files(r.stdout, r.stderr),
        # black / ruff format
        "format_files": lambda r: format_check.parse_format_output(r.stdout, r.stderr),
        "format_diff": lambda r: format_check.generate_diff(r.stdout, r.stderr),
        "format_summary": lambda r: format_check.format_error_summary(r.stdout, r.stderr),
        # raw output
        "stdout": lambda r: r.stdout,
        "stderr": lambda r: r.stderr,
        "exit_code": lambda r: r.exit_code,
        "exitCode": lambda r: r.exit_code,
    }


class ExtractorRegistry:
    """Registry of named parameter extractors."""

    def __init__(self, extractors: Optional[Mapping[str, ExtractorFunction]] = None):
        self._extractors: Dict[str, ExtractorFunction] = _builtin_extractors()
        if extractors:
            self._extractors.update(extractors)

    def register(self, name: str, extractor: ExtractorFunction) -> None:
        self._extractors[name] = extractor

    def has(self, name: str) -> bool:
        return name in self._extractors

    @property
    def names(self) -> list:
        return sorted(self._extractors)

    def extract(self, config: Mapping[str, str], result: CommandResult) -> Dict[str, Any]:
        """Apply ``{param_name: extractor_name}`` to a command result.

        Unknown extractors yield None for their parameter.
        """
        params: Dict[str, Any] = {}
        for param_name, extractor_name in config.items():
            extractor = self._extractors.get(extractor_name)
            if extractor is None:
                logger.warning("Unknown extractor '%s' for param '%s'", extractor_name, param_name)
                params[param_name] = None
                continue
            params[param_name] = extractor(result)
        return params
