"""
Per-line parse outcomes and JSON value coercion shared by the parsers.

Parsers never raise on log content. Every line produces either a usage
event or a ``Skipped`` record naming why the line carried nothing usable.
"""

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Tuple, Union

from tokmeter.core.token_counter import U64_MAX

logger = logging.getLogger(__name__)


class SkipReason(Enum):
    """Why a log line produced no usage event."""
    BLANK = "blank"
    NO_MARKER = "no_marker"  # cheap substring pre-filter did not match
    INVALID_JSON = "invalid_json"
    NOT_AN_OBJECT = "not_an_object"
    MISSING_TIMESTAMP = "missing_timestamp"
    MISSING_MESSAGE = "missing_message"
    MISSING_USAGE = "missing_usage"
    INVALID_TOKENS = "invalid_tokens"
    MODEL_CONTEXT = "model_context"
    UNSUPPORTED_ENTRY = "unsupported_entry"
    ZERO_DELTA = "zero_delta"
    OUT_OF_RANGE = "out_of_range"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class Skipped:
    """A line that was excluded, and why."""
    reason: SkipReason
    line_number: int = 0


def decode_object(line: str, line_number: int) -> Union[dict, Skipped]:
    """Decode a JSON line that must hold an object."""
    try:
        value = json.loads(line)
    except (ValueError, RecursionError):
        return Skipped(SkipReason.INVALID_JSON, line_number)
    if not isinstance(value, dict):
        return Skipped(SkipReason.NOT_AN_OBJECT, line_number)
    return value


def iter_lines(path: Path) -> Iterator[Tuple[int, str]]:
    """Yield (line_number, line) pairs; an unreadable file yields nothing more."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            for line_number, line in enumerate(handle, start=1):
                yield line_number, line
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)


def as_non_empty_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def as_token_count(value: Any) -> Optional[int]:
    """Coerce a JSON number to an unsigned 64-bit token count.

    Accepts non-negative integers and finite non-negative floats within
    1e-9 of an integer. Everything else, booleans included, is None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= U64_MAX else None
    if isinstance(value, float):
        if not math.isfinite(value) or value < 0.0:
            return None
        rounded = math.floor(value + 0.5)
        if abs(value - rounded) < 1e-9 and rounded <= float(U64_MAX):
            return min(int(rounded), U64_MAX)
    return None


def ensure_token_count(value: Any) -> int:
    """Like as_token_count, but invalid values count as zero."""
    count = as_token_count(value)
    return count if count is not None else 0


def as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None
