"""
type_errors.py - Type errors from mypy output.

mypy reports one diagnostic per line::

    pkg/module.py:12: error: Incompatible return value type  [return-value]
    pkg/module.py:12:5: error: ...        (with --show-column-numbers)

Notes and warnings are ignored.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

_DIAGNOSTIC = re.compile(
    r"^(?P<file>[^:\s][^:]*):(?P<line>\d+):(?:(?P<column>\d+):)?\s*"
    r"(?P<severity>error|note|warning):\s*(?P<message>.*?)(?:\s+\[(?P<code>[\w-]+)\])?\s*$"
)
_FILE_REF = re.compile(r"([\w./\\-]+\.pyi?):(\d+)")


@dataclass
class TypeCheckError:
    """One type-checker error."""

    file: str
    line: int
    message: str
    column: Optional[int] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_type_errors(stdout: str, stderr: str = "") -> List[TypeCheckError]:
    errors: List[TypeCheckError] = []
    for line in (stdout + "\n" + stderr).splitlines():
        match = _DIAGNOSTIC.match(line.strip())
        if not match or match.group("severity") != "error":
            continue
        column = match.group("column")
        errors.append(
            TypeCheckError(
                file=match.group("file"),
                line=int(match.group("line")),
                column=int(column) if column else None,
                message=match.group("message"),
                code=match.group("code"),
            )
        )
    return errors


def extract_files(stdout: str, stderr: str = "") -> List[str]:
    """Python files referenced as ``path:line`` in the output, first-seen order."""
    files: List[str] = []
    for match in _FILE_REF.finditer(stdout + "\n" + stderr):
        path = match.group(1)
        if "site-packages" in path or path in files:
            continue
        files.append(path)
    return files
