"""Gate classifier for the intake (informatiecheck) stage.

The intake stage returns structured JSON with a status field:

    {"status": "COMPLEET", "dossier": {...}}
    {"status": "INCOMPLEET", "ontbrekende_informatie": [...]}

Only COMPLEET lets the pipeline continue. Models wrap the JSON in many
ways, so parsing falls back through:
1. the whole text as JSON
2. a fenced ```json block
3. a pattern around the status field
4. the first balanced {...} object

Output that cannot be parsed at all predates the structured format and is
treated as complete, so old reports keep working.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

GateClassifier = Callable[[str | None], bool]

STATUS_COMPLETE = "COMPLEET"
STATUS_INCOMPLETE = "INCOMPLEET"

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_STATUS_PATTERN = re.compile(r'\{[\s\S]*"status"\s*:\s*"(?:COMPLEET|INCOMPLEET)"[\s\S]*\}')


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape_next = False
    for position in range(start, len(text)):
        char = text[position]
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : position + 1]
    return None


def parse_json_with_fallbacks(raw_output: str | None, pattern: re.Pattern[str] | None = None) -> dict[str, Any] | None:
    """Extract a JSON object from model output, or None."""
    if not raw_output or not raw_output.strip():
        return None

    parsed = _loads_object(raw_output)
    if parsed is not None:
        return parsed

    fenced = _FENCED_JSON.search(raw_output)
    if fenced:
        parsed = _loads_object(fenced.group(1))
        if parsed is not None:
            return parsed
        logger.debug("Fenced JSON block did not parse")

    if pattern is not None:
        match = pattern.search(raw_output)
        if match:
            parsed = _loads_object(match.group(0))
            if parsed is not None:
                return parsed

    candidate = _first_balanced_object(raw_output)
    if candidate is not None:
        return _loads_object(candidate)
    return None


def parse_intake_output(raw_output: str | None) -> dict[str, Any] | None:
    """Parse the intake stage's structured output."""
    return parse_json_with_fallbacks(raw_output, _STATUS_PATTERN)


def is_intake_complete(raw_output: str | None) -> bool:
    """Default gate classifier: True when the pipeline may continue past intake."""
    if not raw_output:
        return False
    parsed = parse_intake_output(raw_output)
    if parsed is None:
        return True
    return parsed.get("status") == STATUS_COMPLETE


def intake_block_reason(raw_output: str | None) -> str | None:
    """Why the stage after intake may not run yet, or None when it may."""
    if not raw_output:
        return "Stage 1 moet eerst worden uitgevoerd"
    parsed = parse_intake_output(raw_output)
    if parsed is None:
        return None
    if parsed.get("status") == STATUS_INCOMPLETE:
        return (
            "Stage 1 heeft status INCOMPLEET: ontbrekende informatie geconstateerd. "
            "Verstuur eerst de e-mail naar de klant en voer Stage 1 opnieuw uit "
            "na ontvangst van de informatie."
        )
    if parsed.get("status") != STATUS_COMPLETE:
        return f"Stage 1 heeft onbekende status: {parsed.get('status')!r}"
    return None
