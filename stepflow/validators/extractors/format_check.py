"""
format_check.py - Files needing formatting from black / ruff format output.

``--check`` runs print ``would reformat path`` (black, on stderr) or
``Would reformat: path`` (ruff). ``--diff`` runs print unified diffs whose
``+++ path`` headers name the files.
"""

from __future__ import annotations

import re
from typing import Dict, List, Tuple

_WOULD_REFORMAT = re.compile(r"^would reformat:?\s+(?P<path>\S.*?)\s*$", re.IGNORECASE)
_DIFF_NEW_FILE = re.compile(r"^\+\+\+\s+(?:b/)?(?P<path>[^\t]+?)(?:\t.*)?\s*$")

# Files listed in a summary before "... and N more"
MAX_SUMMARY_FILES = 5


def _diff_stats(output: str) -> Dict[str, Tuple[int, int]]:
    stats: Dict[str, Tuple[int, int]] = {}
    current = None
    for line in output.splitlines():
        header = _DIFF_NEW_FILE.match(line)
        if header:
            current = header.group("path")
            stats.setdefault(current, (0, 0))
            continue
        if current is None or line.startswith("---"):
            continue
        added, removed = stats[current]
        if line.startswith("+"):
            stats[current] = (added + 1, removed)
        elif line.startswith("-"):
            stats[current] = (added, removed + 1)
    return stats


def parse_format_output(stdout: str, stderr: str = "") -> List[str]:
    output = stdout + "\n" + stderr
    files: List[str] = []
    for line in output.splitlines():
        match = _WOULD_REFORMAT.match(line.strip())
        if match and match.group("path") not in files:
            files.append(match.group("path"))
    for path in _diff_stats(output):
        if path not in files:
            files.append(path)
    return files


def generate_diff(stdout: str, stderr: str = "") -> str:
    """Summarise formatter output as a file list with +/- line counts."""
    files = parse_format_output(stdout, stderr)
    if not files:
        return "No formatting issues found."

    stats = _diff_stats(stdout + "\n" + stderr)
    lines = ["Files needing format:"]
    for path in files:
        if path in stats:
            added, removed = stats[path]
            lines.append(f"  - {path} (+{added} -{removed})")
        else:
            lines.append(f"  - {path}")
    return "\n".join(lines)


def format_error_summary(stdout: str, stderr: str = "") -> str:
    files = parse_format_output(stdout, stderr)
    count = len(files)
    if count == 0:
        return "All files are properly formatted."

    noun = "file needs" if count == 1 else "files need"
    lines = [f"{count} {noun} formatting:"]
    lines.extend(f"  - {f}" for f in files[:MAX_SUMMARY_FILES])
    if count > MAX_SUMMARY_FILES:
        lines.append(f"  ... and {count - MAX_SUMMARY_FILES} more")
    return "\n".join(lines)
