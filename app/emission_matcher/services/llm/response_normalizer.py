"""Turn a loosely-shaped JSON reply into exactly N emission factor labels.

The model is asked for ``{"matches": [{EmissionFactorCode, EmissionFactorName}, ...]}``
but does not always comply. Extraction is a list of rules tried in order
against the parsed value; the first rule returning a list wins. Each element
is then coerced field by field so one odd key does not sink the batch.
"""
from __future__ import annotations

import json
from typing import Any, Callable, List, Optional, Sequence

from emission_matcher.config.constants import (
    CODE_FIELD_ALIASES,
    NAME_FIELD_ALIASES,
    UNKNOWN_CODE,
    UNKNOWN_NAME,
)
from emission_matcher.config.exceptions import ResponseFormatError
from emission_matcher.utils.logging import get_logger

from .labels import Label

logger = get_logger(__name__)

ExtractionRule = Callable[[Any], Optional[list]]


def _named_field(field: str) -> ExtractionRule:
    def rule(parsed: Any) -> Optional[list]:
        if isinstance(parsed, dict) and isinstance(parsed.get(field), list):
            return parsed[field]
        return None

    rule.__name__ = f"field:{field}"
    return rule


def _bare_array(parsed: Any) -> Optional[list]:
    return parsed if isinstance(parsed, list) else None


def _first_non_empty_array(parsed: Any) -> Optional[list]:
    if not isinstance(parsed, dict):
        return None
    for value in parsed.values():
        if isinstance(value, list) and value:
            return value
    return None


EXTRACTION_RULES: Sequence[ExtractionRule] = (
    _named_field("matches"),
    _named_field("results"),
    _bare_array,
    _first_non_empty_array,
)


def parse_json(raw_text: str) -> Any:
    """Decode the reply; anything other than an object or array is rejected."""
    try:
        parsed = json.loads(raw_text)
    except (TypeError, ValueError) as e:
        logger.warning("JSON decode failed: %s", e)
        raise ResponseFormatError("parse_error", "Failed to parse the API response") from e

    if not isinstance(parsed, (dict, list)):
        logger.warning("Top-level JSON is not an object (type=%s)", type(parsed).__name__)
        raise ResponseFormatError("invalid_format", "Failed to parse response: invalid format")
    return parsed


def extract_label_array(parsed: Any, rules: Sequence[ExtractionRule] = EXTRACTION_RULES) -> list:
    for rule in rules:
        found = rule(parsed)
        if found is not None:
            logger.debug("Label array located by rule %s (%d items)", rule.__name__, len(found))
            return found
    logger.warning("Could not find matches array in response: %s", str(parsed)[:200])
    raise ResponseFormatError("no_matches", "Failed to find matches in the response")


def _first_value(item: Any, keys: Sequence[str]) -> Optional[str]:
    if not isinstance(item, dict):
        return None
    for key in keys:
        value = item.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def coerce_label(item: Any) -> Label:
    code = _first_value(item, CODE_FIELD_ALIASES) or UNKNOWN_CODE
    name = _first_value(item, NAME_FIELD_ALIASES) or UNKNOWN_NAME
    return Label(code=code, name=name)


def fit_to_length(items: list, expected_count: int) -> list:
    """Pad with MISSING placeholders or drop trailing extras."""
    if len(items) < expected_count:
        logger.warning(
            "Received fewer matches (%d) than rows (%d)", len(items), expected_count
        )
        return items + [Label.missing()] * (expected_count - len(items))
    if len(items) > expected_count:
        logger.warning(
            "Received more matches (%d) than rows (%d)", len(items), expected_count
        )
        return items[:expected_count]
    return items


def normalize_matches(items: list, expected_count: int) -> List[Label]:
    if not items:
        raise ResponseFormatError("empty_matches", "No matches returned in the response")
    fitted = fit_to_length(list(items), expected_count)
    return [item if isinstance(item, Label) else coerce_label(item) for item in fitted]


def normalize_response(raw_text: str, expected_count: int) -> List[Label]:
    """Parse a model reply into ``expected_count`` labels.

    Raises:
        ResponseFormatError: reply is not JSON, not an object, has no label
            array, or the array is empty.
    """
    parsed = parse_json(raw_text)
    items = extract_label_array(parsed)
    return normalize_matches(items, expected_count)


__all__ = [
    "EXTRACTION_RULES",
    "parse_json",
    "extract_label_array",
    "coerce_label",
    "fit_to_length",
    "normalize_matches",
    "normalize_response",
]
