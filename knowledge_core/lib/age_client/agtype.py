"""
Parsing of Apache AGE agtype result columns.

AGE returns every column as agtype text. Scalars carry an optional type
suffix (e.g. 3::numeric), strings come back JSON-quoted, and arrays are
JSON text whose elements may carry their own suffixes:

    [{"id": 1, "label": "Concept", "properties": {...}}::vertex, ...]

Values are converted to a small tagged union at this boundary so raw
agtype strings never reach the rest of the code:

- NumberValue: int or float
- StringValue: decoded string
- ArrayValue: decoded JSON list (empty on parse failure)
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumberValue:
    value: Union[int, float]


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class ArrayValue:
    items: List[Any] = field(default_factory=list)


AgtypeValue = Union[NumberValue, StringValue, ArrayValue]


def strip_type_annotations(text: str) -> str:
    """
    Remove ::typename annotations that appear outside JSON string literals.

    A plain regex would also eat "::" sequences inside concept names or
    definitions, so quoted regions are copied through untouched.
    """
    out = []
    i = 0
    n = len(text)
    in_string = False

    while i < n:
        ch = text[i]

        if in_string:
            out.append(ch)
            if ch == '\\' and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue

        if ch == ':' and text.startswith('::', i):
            j = i + 2
            while j < n and (text[j].isalnum() or text[j] == '_'):
                j += 1
            if j > i + 2:
                i = j
                continue

        out.append(ch)
        i += 1

    return ''.join(out)


def _to_number(text: str) -> Optional[Union[int, float]]:
    if not text or '_' in text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_agtype_scalar(raw: Any) -> Optional[AgtypeValue]:
    """
    Parse a scalar agtype column.

    Strips the type annotation, tries numeric coercion, and falls back to
    the (JSON-unquoted) string.

    Args:
        raw: Column value as returned by psycopg2 (usually str)

    Returns:
        NumberValue or StringValue, or None for SQL NULL and agtype null
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return NumberValue(raw)

    cleaned = strip_type_annotations(str(raw)).strip()
    if cleaned == "null":
        return None

    number = _to_number(cleaned)
    if number is not None:
        return NumberValue(number)

    if len(cleaned) >= 2 and cleaned[0] == '"' and cleaned[-1] == '"':
        try:
            decoded = json.loads(cleaned)
            if isinstance(decoded, str):
                return StringValue(decoded)
        except json.JSONDecodeError:
            pass

    return StringValue(cleaned)


def parse_agtype_array(raw: Any) -> ArrayValue:
    """
    Parse an array agtype column.

    Args:
        raw: Column value (JSON text with per-element type suffixes)

    Returns:
        ArrayValue; empty when the value is missing or cannot be decoded
    """
    if raw is None or raw == '':
        return ArrayValue([])
    if isinstance(raw, list):
        return ArrayValue(list(raw))

    cleaned = strip_type_annotations(str(raw)).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse agtype array ({e.msg}): {cleaned[:200]}")
        return ArrayValue([])

    if not isinstance(parsed, list):
        logger.warning(f"Expected agtype array, got {type(parsed).__name__}")
        return ArrayValue([])

    return ArrayValue(parsed)


def unwrap(value: Optional[AgtypeValue]) -> Any:
    """Plain Python value of a parsed agtype value (None passes through)."""
    if value is None:
        return None
    if isinstance(value, ArrayValue):
        return value.items
    return value.value
