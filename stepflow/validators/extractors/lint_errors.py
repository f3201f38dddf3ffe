"""
lint_errors.py - Lint violations from ruff and flake8 output.

Both tools' concise format is ``path:line:col: CODE message``. ruff's
default full format puts the location on a following ``--> path:line:col``
line, which is also recognised.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

_CONCISE = re.compile(
    r"^(?P<file>[^:\s][^:]*):(?P<line>\d+):(?P<column>\d+):\s+(?P<rule>[A-Z]+\d+)\s+(?P<message>.+)$"
)
_FULL = re.compile(
    r"^(?P<rule>[A-Z]+\d+)\s+(?:\[\*\]\s+)?(?P<message>.+)\n\s*-->\s*"
    r"(?P<file>[^:\s][^:]*):(?P<line>\d+):(?P<column>\d+)",
    re.MULTILINE,
)


@dataclass
class LintError:
    file: str
    line: int
    rule: str
    message: str
    column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_lint_errors(stdout: str, stderr: str = "") -> List[LintError]:
    output = stdout + "\n" + stderr
    errors: List[LintError] = []

    for line in output.splitlines():
        match = _CONCISE.match(line.strip())
        if match:
            errors.append(
                LintError(
                    file=match.group("file"),
                    line=int(match.group("line")),
                    column=int(match.group("column")),
                    rule=match.group("rule"),
                    message=match.group("message").strip(),
                )
            )

    if not errors:
        for match in _FULL.finditer(output):
            errors.append(
                LintError(
                    file=match.group("file"),
                    line=int(match.group("line")),
                    column=int(match.group("column")),
                    rule=match.group("rule"),
                    message=match.group("message").strip(),
                )
            )

    return errors


def extract_lint_files(stdout: str, stderr: str = "") -> List[str]:
    files: List[str] = []
    for error in parse_lint_errors(stdout, stderr):
        if error.file not in files:
            files.append(error.file)
    return files
