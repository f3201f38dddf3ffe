"""
intents.py - Centralized intent vocabulary.

Single source of truth for turning a raw intent value from a step's
structured output into a GateIntent. Models do not always answer with the
canonical word, so common synonyms are accepted.

Intent Vocabulary:
- Canonical: next, repeat, jump, closing, escalate, handoff
- Aliases: continue/pass -> next, retry/wait/fail -> repeat, done/finished -> closing
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from stepflow.registry.types import GateIntent

logger = logging.getLogger(__name__)


# =============================================================================
# CANONICAL INTENT MAPPINGS
# =============================================================================

CANONICAL_MAP: Dict[str, GateIntent] = {intent.value: intent for intent in GateIntent}

ALIAS_MAP: Dict[str, GateIntent] = {
    # NEXT aliases
    "continue": GateIntent.NEXT,
    "pass": GateIntent.NEXT,
    # REPEAT aliases
    "retry": GateIntent.REPEAT,
    "wait": GateIntent.REPEAT,
    "fail": GateIntent.REPEAT,
    # CLOSING aliases
    "done": GateIntent.CLOSING,
    "finished": GateIntent.CLOSING,
}

_COMBINED_MAP: Dict[str, GateIntent] = {**CANONICAL_MAP, **ALIAS_MAP}


def normalize_intent(raw_value: Any) -> Optional[GateIntent]:
    """Map a raw intent value to a GateIntent.

    The value is stringified, stripped and lower-cased before lookup.

    Returns:
        The matching GateIntent, or None if the value is not recognised.
    """
    if raw_value is None:
        return None

    key = str(raw_value).strip().lower()
    intent = _COMBINED_MAP.get(key)
    if intent is not None and key in ALIAS_MAP:
        logger.debug("Mapped intent alias '%s' -> %s", raw_value, intent.value)
    return intent
