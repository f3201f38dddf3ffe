"""
schema_resolver.py - Resolve step output contracts.

A step's ``output_schema_ref`` names a JSON Schema file (relative to the
schemas directory) and a schema inside it. The schema may be given as a
JSON Pointer (``#/definitions/initial.issue``) or a bare name looked up in
``definitions``, then ``$defs``, then the top level.

All ``$ref`` pointers are expanded, internal (``#/...``) and external
(``common.schema.json#/$defs/x``) alike, so the result can be handed to a
model invoker as a self-contained structured-output schema. Object schemas
without an explicit ``additionalProperties`` are closed off.

Usage:
    resolver = SchemaResolver(Path("schemas"))
    schema = resolver.resolve("step_outputs.schema.json", "initial.issue")
    intents = extract_intent_enum(schema, "#/properties/next_action/properties/action")
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from stepflow.runtime.errors import SchemaResolutionError

logger = logging.getLogger(__name__)

# Guards against runaway $ref chains
MAX_REF_DEPTH = 50


def _split_pointer(pointer: str) -> List[str]:
    """Split a JSON Pointer into unescaped reference tokens."""
    path = pointer.lstrip("#")
    if not path or path == "/":
        return []
    if path.startswith("/"):
        path = path[1:]
    return [part.replace("~1", "/").replace("~0", "~") for part in path.split("/")]


def resolve_pointer(document: Any, pointer: str) -> Any:
    """Walk a JSON Pointer through a document.

    Raises:
        KeyError: If any segment of the pointer is missing.
    """
    current = document
    for part in _split_pointer(pointer):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise KeyError(pointer)
    return current


def extract_intent_enum(schema: Dict[str, Any], pointer: str) -> Optional[List[str]]:
    """Return the string enum found at ``pointer`` in a resolved schema.

    Returns None when the pointer is missing or does not land on an enum.
    """
    try:
        node = resolve_pointer(schema, pointer)
    except KeyError:
        return None
    if isinstance(node, dict) and isinstance(node.get("enum"), list):
        return [v for v in node["enum"] if isinstance(v, str)]
    return None


class SchemaResolver:
    """Loads schema files from a base directory and expands ``$ref`` pointers.

    Loaded files are cached per resolver instance.
    """

    def __init__(self, base_dir: Path, close_objects: bool = True):
        self.base_dir = Path(base_dir)
        self.close_objects = close_objects
        self._file_cache: Dict[Path, Dict[str, Any]] = {}

    def load_file(self, path: Path) -> Dict[str, Any]:
        path = path.resolve()
        cached = self._file_cache.get(path)
        if cached is not None:
            return cached

        if not path.exists():
            raise SchemaResolutionError(f"Schema file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SchemaResolutionError(f"Invalid JSON in schema file {path}: {e}") from e

        if not isinstance(data, dict):
            raise SchemaResolutionError(f"Schema file {path} must contain a JSON object")

        self._file_cache[path] = data
        return data

    def resolve(self, schema_file: str, schema_name: str) -> Dict[str, Any]:
        """Resolve a named schema from a file into a fully dereferenced dict.

        Raises:
            SchemaResolutionError: If the file or schema cannot be found, or
                a ``$ref`` inside it cannot be followed.
        """
        file_path = self.base_dir / schema_file
        document = self.load_file(file_path)
        schema = self._lookup(document, schema_name, schema_file)
        return self._expand(copy.deepcopy(schema), file_path, set(), 0)

    async def resolve_async(self, schema_file: str, schema_name: str) -> Dict[str, Any]:
        """Resolve a schema without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.resolve, schema_file, schema_name)

    def _lookup(self, document: Dict[str, Any], name: str, schema_file: str) -> Dict[str, Any]:
        identifier = name.lstrip("#")

        if identifier.startswith("/"):
            try:
                node = resolve_pointer(document, identifier)
            except KeyError:
                node = None
            if isinstance(node, dict):
                return node
            raise SchemaResolutionError(
                f'No schema pointer "{name}" found in {schema_file}',
                schema_ref=f"{schema_file}#{name}",
            )

        for section in ("definitions", "$defs"):
            defs = document.get(section)
            if isinstance(defs, dict) and isinstance(defs.get(identifier), dict):
                return defs[identifier]

        if isinstance(document.get(identifier), dict):
            return document[identifier]

        raise SchemaResolutionError(
            f'No schema named "{name}" found in {schema_file}',
            schema_ref=f"{schema_file}#{name}",
        )

    def _expand(self, node: Any, current_file: Path, visited: Set[str], depth: int) -> Any:
        if depth > MAX_REF_DEPTH:
            raise SchemaResolutionError(
                f"Maximum $ref depth ({MAX_REF_DEPTH}) exceeded in {current_file}"
            )

        if isinstance(node, list):
            return [self._expand(item, current_file, visited, depth) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            return self._follow_ref(ref, current_file, visited, depth + 1)

        expanded = {k: self._expand(v, current_file, visited, depth) for k, v in node.items()}

        if "allOf" in expanded and isinstance(expanded["allOf"], list):
            expanded = self._merge_all_of(expanded)

        if self.close_objects and expanded.get("type") == "object":
            expanded.setdefault("additionalProperties", False)
        return expanded

    def _follow_ref(self, ref: str, current_file: Path, visited: Set[str], depth: int) -> Any:
        key = f"{current_file}::{ref}"
        if key in visited:
            # Recursive reference: leave an open placeholder
            logger.debug("Recursive $ref %s in %s", ref, current_file)
            return {}

        file_part, _, fragment = ref.partition("#")
        target_file = (current_file.parent / file_part) if file_part else current_file
        document = self.load_file(target_file)

        try:
            target = resolve_pointer(document, fragment)
        except KeyError:
            raise SchemaResolutionError(
                f'Unresolvable $ref "{ref}" in {current_file.name}',
                schema_ref=ref,
            ) from None

        return self._expand(copy.deepcopy(target), target_file, visited | {key}, depth)

    @staticmethod
    def _merge_all_of(node: Dict[str, Any]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {k: v for k, v in node.items() if k != "allOf"}
        properties: Dict[str, Any] = dict(merged.get("properties", {}))
        required: List[str] = list(merged.get("required", []))

        for part in node["allOf"]:
            if not isinstance(part, dict):
                continue
            properties.update(part.get("properties", {}))
            for name in part.get("required", []):
                if name not in required:
                    required.append(name)
            for key, value in part.items():
                if key not in ("properties", "required"):
                    merged.setdefault(key, value)

        if properties:
            merged["properties"] = properties
        if required:
            merged["required"] = required
        return merged
