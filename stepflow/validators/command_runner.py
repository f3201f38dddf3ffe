"""
command_runner.py - Shell command execution for completion checks.

Commands run through the shell in the configured working directory. The
synchronous runner is wrapped for async callers with ``run_in_executor`` so
the event loop is never blocked while a check runs.

Success rules:
    empty           stdout is empty after trimming whitespace
    exitCode:N      exit code equals N
    contains:S      stdout contains S
    matches:REGEX   REGEX matches somewhere in stdout

Any other rule is treated as failure.
"""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0


@dataclass(frozen=True)
class CommandResult:
    """Captured output of one shell command. ``exit_code`` is -1 if it never ran."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Runs shell commands in a fixed working directory."""

    def __init__(
        self,
        working_dir: Union[str, Path],
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.working_dir = Path(working_dir)
        self.timeout = timeout

    def run_sync(self, command: str) -> CommandResult:
        logger.debug("Running command in %s: %s", self.working_dir, command)
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=str(self.working_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            return CommandResult(result.returncode, result.stdout, result.stderr)
        except subprocess.TimeoutExpired:
            return CommandResult(
                -1, "", f"Command timed out after {self.timeout}s: {command}", timed_out=True
            )
        except OSError as e:
            return CommandResult(-1, "", f"Command failed to start: {e}")

    async def run(self, command: str) -> CommandResult:
        """Run a command without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.run_sync, command)


def check_success_condition(rule: str, result: CommandResult) -> bool:
    """Evaluate a success rule against a command result."""
    if rule == "empty":
        return result.stdout.strip() == ""

    if rule.startswith("exitCode:"):
        try:
            expected = int(rule[len("exitCode:"):].strip())
        except ValueError:
            logger.warning("Invalid exitCode rule: %s", rule)
            return False
        return result.exit_code == expected

    if rule.startswith("contains:"):
        return rule[len("contains:"):] in result.stdout

    if rule.startswith("matches:"):
        try:
            return re.search(rule[len("matches:"):], result.stdout) is not None
        except re.error as e:
            logger.warning("Invalid regex in success rule %s: %s", rule, e)
            return False

    logger.warning("Unknown success rule '%s', treating as failure", rule)
    return False
