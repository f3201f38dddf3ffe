#!/usr/bin/env python3
"""
validate_registry.py - Lint a step registry without running it.

Runs the same checks the loader applies (document shape, step-kind intents,
entry configuration, transition exhaustiveness, validator references and,
with --schemas-dir, intent enum agreement) and reports every problem at once.

Usage:
    stepflow-lint .agent/iterator/steps_registry.yaml
    stepflow-lint registry.yaml --schemas-dir .agent/iterator/schemas --agent-id iterator
    stepflow-lint registry.yaml --json

Exit codes:
    0 - Registry is valid
    1 - Validation failed (or --strict and warnings found)
    2 - Fatal error (missing file, unparseable document)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from stepflow.config.runtime_config import get_strict_transitions
from stepflow.registry.loader import check_registry_data, read_registry_document
from stepflow.registry.validator import RegistryValidationResult
from stepflow.runtime.errors import ConfigurationError

EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILED = 1
EXIT_FATAL_ERROR = 2


def print_issues(result: RegistryValidationResult) -> None:
    for issue in result.errors:
        print(f"ERROR: {issue.format()}", file=sys.stderr)
    for issue in result.warnings:
        print(f"WARNING: {issue.format()}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Validate a step registry (YAML or JSON)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - Registry is valid
  1 - Validation failed
  2 - Fatal error (missing file, parse errors)
        """,
    )
    parser.add_argument("registry", help="Path to the step registry file")
    parser.add_argument(
        "--schemas-dir",
        help="Directory holding output contracts; enables intent enum checks",
    )
    parser.add_argument("--agent-id", help="Require the registry's agent_id to match")
    parser.add_argument(
        "--no-strict-transitions",
        action="store_true",
        help="Defer missing transitions to run time instead of failing",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat warnings as errors",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output machine-readable JSON",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)

    try:
        data = read_registry_document(args.registry)
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_FATAL_ERROR)

    strict_transitions = False if args.no_strict_transitions else get_strict_transitions()
    result = check_registry_data(
        data,
        agent_id=args.agent_id,
        schemas_dir=args.schemas_dir,
        strict_transitions=strict_transitions,
    )
    failed = result.has_errors() or (args.strict and bool(result.warnings))

    if args.json:
        report = result.to_dict()
        report["status"] = "FAIL" if failed else "PASS"
        print(json.dumps(report, indent=2))
    elif failed:
        print_issues(result)
        print(
            f"\nRegistry validation FAILED ({len(result.errors)} errors, "
            f"{len(result.warnings)} warnings).",
            file=sys.stderr,
        )
    else:
        print_issues(result)
        print(f"Registry {args.registry} is valid.")

    sys.exit(EXIT_VALIDATION_FAILED if failed else EXIT_SUCCESS)


if __name__ == "__main__":
    main()
