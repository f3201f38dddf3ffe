"""
param_injector.py - Minimal template language for retry prompts.

Supported constructs, processed in this order:

    {{#each name}}...{{/each}}         repeat the body per list item;
                                       {{this}} / {{this.prop}} address it
    {{#if path}}...{{else}}...{{/if}}  choose a branch on truthiness
    {{#if path}}...{{/if}}             include the body when truthy
    {{var.path}}                       substitute a value

Missing values and None render as "". Lists render joined with ", ".
Falsy values are None, False, 0, "" and the empty list.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

_PATH = r"[\w-]+(?:\.[\w-]+)*"

_EACH_RE = re.compile(r"\{\{#each\s+(" + _PATH + r")\s*\}\}(.*?)\{\{/each\}\}", re.DOTALL)
_IF_ELSE_RE = re.compile(
    r"\{\{#if\s+(" + _PATH + r")\s*\}\}(.*?)\{\{else\}\}(.*?)\{\{/if\}\}", re.DOTALL
)
_IF_RE = re.compile(r"\{\{#if\s+(" + _PATH + r")\s*\}\}(.*?)\{\{/if\}\}", re.DOTALL)
_THIS_RE = re.compile(r"\{\{this(?:\.(" + _PATH + r"))?\}\}")
_VAR_RE = re.compile(r"\{\{\s*(" + _PATH + r")\s*\}\}")

_MISSING = object()


def lookup(params: Any, path: str) -> Any:
    """Resolve a dotted path; returns None when any segment is missing."""
    current = params
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            return None
        if current is _MISSING:
            return None
    return current


def is_truthy(value: Any) -> bool:
    if value is None or value is False or value == "":
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0:
        return False
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return False
    return True


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(stringify(item) for item in value)
    if isinstance(value, Mapping):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def _render_each(match: "re.Match[str]", params: Mapping[str, Any]) -> str:
    items = lookup(params, match.group(1))
    if not isinstance(items, (list, tuple)):
        return ""
    body = match.group(2)

    def render_item(item: Any) -> str:
        def replace_this(m: "re.Match[str]") -> str:
            prop = m.group(1)
            return stringify(item if prop is None else lookup(item, prop))

        return _THIS_RE.sub(replace_this, body)

    return "".join(render_item(item) for item in items)


def inject_params(template: str, params: Mapping[str, Any]) -> str:
    """Render ``template`` against ``params``."""
    result = _EACH_RE.sub(lambda m: _render_each(m, params), template)
    result = _IF_ELSE_RE.sub(
        lambda m: m.group(2) if is_truthy(lookup(params, m.group(1))) else m.group(3),
        result,
    )
    result = _IF_RE.sub(
        lambda m: m.group(2) if is_truthy(lookup(params, m.group(1))) else "",
        result,
    )
    return _VAR_RE.sub(lambda m: stringify(lookup(params, m.group(1))), result)
