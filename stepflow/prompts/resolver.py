"""
resolver.py - Prompt lookup by C3L locator.

Prompts are addressed by a five-part locator: category (c1), sub-category
(c2), step name (c3), edition, and an optional adaptation. The file-system
resolver maps a locator onto::

    {base}/{c1}/{c2}/{c3}/f_{edition}.md
    {base}/{c1}/{c2}/{c3}/f_{edition}_{adaptation}.md

Composing prompts from fragments and variable substitution beyond the
retry templates are the caller's business; resolvers only find text.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptLocator:
    """Address of a prompt in the C3L hierarchy."""

    c1: str
    c2: str
    c3: str
    edition: str = "default"
    adaptation: Optional[str] = None

    @property
    def filename(self) -> str:
        if self.adaptation:
            return f"f_{self.edition}_{self.adaptation}.md"
        return f"f_{self.edition}.md"

    def relative_path(self) -> Path:
        return Path(self.c1) / self.c2 / self.c3 / self.filename

    def with_edition(self, edition: str, adaptation: Optional[str] = None) -> "PromptLocator":
        return replace(self, edition=edition, adaptation=adaptation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "c1": self.c1,
            "c2": self.c2,
            "c3": self.c3,
            "edition": self.edition,
            "adaptation": self.adaptation,
        }

    def __str__(self) -> str:
        return self.relative_path().as_posix()


@dataclass(frozen=True)
class PromptResolution:
    """Outcome of a prompt lookup. ``content`` is set only when ``ok``."""

    ok: bool
    content: Optional[str] = None
    error: Optional[str] = None
    path: Optional[str] = None

    @classmethod
    def found(cls, content: str, path: Optional[str] = None) -> "PromptResolution":
        return cls(ok=True, content=content, path=path)

    @classmethod
    def missing(cls, error: str, path: Optional[str] = None) -> "PromptResolution":
        return cls(ok=False, error=error, path=path)


class PromptResolver(ABC):
    """Abstract prompt source."""

    @abstractmethod
    def resolve(self, locator: PromptLocator) -> PromptResolution:
        """Look up the prompt for a locator. Never raises for a missing prompt."""


def strip_frontmatter(content: str) -> str:
    """Remove a leading YAML frontmatter block delimited by ``---`` lines."""
    if not content.startswith("---"):
        return content
    end = content.find("\n---", 3)
    if end == -1:
        return content
    return content[end + 4:].lstrip()


class FileSystemPromptResolver(PromptResolver):
    """Resolves prompts from markdown files under a base directory."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def path_for(self, locator: PromptLocator) -> Path:
        return self.base_dir / locator.relative_path()

    def resolve(self, locator: PromptLocator) -> PromptResolution:
        path = self.path_for(locator)
        if not path.is_file():
            return PromptResolution.missing(f"Prompt not found: {path}", path=str(path))

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to read prompt %s: %s", path, e)
            return PromptResolution.missing(f"Failed to read prompt {path}: {e}", path=str(path))

        logger.debug("Resolved prompt %s", path)
        return PromptResolution.found(strip_frontmatter(content), path=str(path))


class DictPromptResolver(PromptResolver):
    """In-memory resolver keyed by the locator's relative path."""

    def __init__(self, prompts: Dict[str, str]):
        self.prompts = dict(prompts)

    def resolve(self, locator: PromptLocator) -> PromptResolution:
        key = str(locator)
        if key in self.prompts:
            return PromptResolution.found(self.prompts[key], path=key)
        return PromptResolution.missing(f"Prompt not found: {key}", path=key)
