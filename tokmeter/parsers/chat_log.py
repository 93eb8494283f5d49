"""
Chat-log source parser.

Each line of a chat-log file is an independent JSON record. Usage-bearing
records look like::

    {"timestamp": "...", "requestId": "req_1", "costUSD": 0.01,
     "message": {"id": "msg_1", "model": "claude-...",
                 "usage": {"input_tokens": 10, "output_tokens": 5,
                           "cache_creation_input_tokens": 0,
                           "cache_read_input_tokens": 0}}}

Providers other than Anthropic write ``prompt_tokens``/``completion_tokens``
instead; both spellings are accepted.
"""

from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from tokmeter.core.time_parse import parse_timestamp
from tokmeter.core.token_counter import ChatTokens
from .outcome import (
    SkipReason,
    Skipped,
    as_non_empty_string,
    as_number,
    as_token_count,
    decode_object,
    iter_lines,
)

USAGE_MARKER = '"usage"'

INPUT_TOKEN_KEYS = ("input_tokens", "prompt_tokens")
OUTPUT_TOKEN_KEYS = ("output_tokens", "completion_tokens")


@dataclass(frozen=True)
class ChatUsageEvent:
    """One usage record read from a chat-log line."""
    timestamp: str
    tokens: ChatTokens
    message_id: Optional[str] = None
    request_id: Optional[str] = None
    model: Optional[str] = None
    cost_usd: Optional[float] = None

    @property
    def dedupe_key(self) -> Optional[str]:
        """``message_id:request_id``, or None unless both ids are present."""
        if self.message_id is None or self.request_id is None:
            return None
        return f"{self.message_id}:{self.request_id}"


ChatLineOutcome = Union[ChatUsageEvent, Skipped]


def _first_token_count(usage: dict, keys: Sequence[str]) -> Optional[int]:
    for key in keys:
        count = as_token_count(usage.get(key))
        if count is not None:
            return count
    return None


def parse_entry(value: dict, line_number: int = 0) -> ChatLineOutcome:
    """Extract a usage event from a decoded chat-log record."""
    timestamp = as_non_empty_string(value.get("timestamp"))
    if timestamp is None:
        return Skipped(SkipReason.MISSING_TIMESTAMP, line_number)

    message = value.get("message")
    if not isinstance(message, dict):
        return Skipped(SkipReason.MISSING_MESSAGE, line_number)

    usage = message["usage"] if "usage" in message else value.get("usage")
    if not isinstance(usage, dict):
        return Skipped(SkipReason.MISSING_USAGE, line_number)

    input_tokens = _first_token_count(usage, INPUT_TOKEN_KEYS)
    output_tokens = _first_token_count(usage, OUTPUT_TOKEN_KEYS)
    if input_tokens is None or output_tokens is None:
        return Skipped(SkipReason.INVALID_TOKENS, line_number)

    tokens = ChatTokens(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_input_tokens=as_token_count(usage.get("cache_creation_input_tokens")) or 0,
        cache_read_input_tokens=as_token_count(usage.get("cache_read_input_tokens")) or 0,
    )

    model = as_non_empty_string(message.get("model")) or as_non_empty_string(value.get("model"))

    return ChatUsageEvent(
        timestamp=timestamp,
        tokens=tokens,
        message_id=as_non_empty_string(message.get("id")),
        request_id=as_non_empty_string(value.get("requestId")),
        model=model,
        cost_usd=as_number(value.get("costUSD")),
    )


def parse_line(line: str, line_number: int = 0) -> ChatLineOutcome:
    trimmed = line.strip()
    if not trimmed:
        return Skipped(SkipReason.BLANK, line_number)
    if USAGE_MARKER not in trimmed:
        return Skipped(SkipReason.NO_MARKER, line_number)

    decoded = decode_object(trimmed, line_number)
    if isinstance(decoded, Skipped):
        return decoded
    return parse_entry(decoded, line_number)


def iter_file(path: Path) -> Iterator[ChatLineOutcome]:
    """Parse every line of a chat-log file."""
    for line_number, line in iter_lines(path):
        yield parse_line(line, line_number)


def earliest_timestamp_millis(path: Path, tz: Optional[tzinfo] = None) -> Optional[int]:
    """Earliest parseable top-level timestamp in a file, usage or not."""
    earliest: Optional[int] = None
    for line_number, line in iter_lines(path):
        trimmed = line.strip()
        if not trimmed:
            continue
        decoded = decode_object(trimmed, line_number)
        if isinstance(decoded, Skipped):
            continue
        timestamp = decoded.get("timestamp")
        if not isinstance(timestamp, str):
            continue
        parsed = parse_timestamp(timestamp, tz)
        if parsed is None:
            continue
        if earliest is None or parsed.millis < earliest:
            earliest = parsed.millis
    return earliest


def sort_files_by_earliest_timestamp(
    files: Sequence[Path],
    tz: Optional[tzinfo] = None,
) -> List[Path]:
    """Order files by their earliest timestamp so deduplication is stable.

    Files without any parseable timestamp go last, keeping their relative
    order.
    """
    keyed: List[Tuple[Path, Optional[int]]] = [
        (path, earliest_timestamp_millis(path, tz)) for path in files
    ]
    keyed.sort(key=lambda item: (item[1] is None, item[1] if item[1] is not None else 0))
    return [path for path, _ in keyed]
