"""Prompt lookup for step execution and retry guidance."""

from .resolver import (
    DictPromptResolver,
    FileSystemPromptResolver,
    PromptLocator,
    PromptResolution,
    PromptResolver,
    strip_frontmatter,
)

__all__ = [
    "DictPromptResolver",
    "FileSystemPromptResolver",
    "PromptLocator",
    "PromptResolution",
    "PromptResolver",
    "strip_frontmatter",
]
