"""
git_status.py - File lists from ``git status --porcelain`` output.

Each porcelain line is ``XY <path>`` where X is the index (staged) status
and Y the work-tree (unstaged) status. Untracked files are ``?? <path>``.
Renames are ``R  <old> -> <new>``; the new path is reported.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple


def _parse_status_line(line: str) -> Optional[Tuple[str, str]]:
    """Parse one porcelain line into (XY status, path)."""
    if len(line) < 4 or not line.strip():
        return None

    status = line[:2]
    path = line[3:] if line[2] == " " else line[2:].lstrip(" ")
    path = path.strip()
    if not path:
        return None

    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    return status, path


def _entries(stdout: str) -> Iterator[Tuple[str, str]]:
    for line in stdout.splitlines():
        parsed = _parse_status_line(line)
        if parsed is not None:
            yield parsed


def parse_changed_files(stdout: str) -> List[str]:
    """Tracked files with any change, staged or not."""
    return [path for status, path in _entries(stdout) if "?" not in status]


def parse_untracked_files(stdout: str) -> List[str]:
    return [path for status, path in _entries(stdout) if status == "??"]


def parse_staged_files(stdout: str) -> List[str]:
    return [path for status, path in _entries(stdout) if status[0] not in (" ", "?")]


def parse_unstaged_files(stdout: str) -> List[str]:
    return [path for status, path in _entries(stdout) if status[1] not in (" ", "?")]
