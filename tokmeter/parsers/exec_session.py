"""
Exec-session source parser.

Session files are streams of typed envelopes::

    {"type": "turn_context", "payload": {"model": "gpt-5"}}
    {"type": "event_msg", "timestamp": "...",
     "payload": {"type": "token_count",
                 "info": {"last_token_usage": {...},
                          "total_token_usage": {...}}}}

A ``token_count`` event carries either the usage of the last turn, or only
the cumulative usage of the session so far. In the latter case the turn's
delta is rebuilt from the previous cumulative snapshot seen in the same
file, so the parser is stateful and must be used for one file only.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from tokmeter.core.token_counter import saturating_add, saturating_sub
from .outcome import (
    SkipReason,
    Skipped,
    as_non_empty_string,
    decode_object,
    ensure_token_count,
    iter_lines,
)

EVENT_MARKER = '"event_msg"'
CONTEXT_MARKER = '"turn_context"'

# Sessions written before models were recorded per turn ran on this model.
LEGACY_FALLBACK_MODEL = "gpt-5"


@dataclass(frozen=True)
class RawUsage:
    """A usage object as written in the log, cumulative or per-turn."""
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    total_tokens: int = 0

    def minus(self, previous: Optional["RawUsage"]) -> "RawUsage":
        """Field-wise saturating difference against an earlier snapshot."""
        if previous is None:
            return self
        return RawUsage(
            input_tokens=saturating_sub(self.input_tokens, previous.input_tokens),
            cached_input_tokens=saturating_sub(self.cached_input_tokens, previous.cached_input_tokens),
            output_tokens=saturating_sub(self.output_tokens, previous.output_tokens),
            reasoning_output_tokens=saturating_sub(
                self.reasoning_output_tokens, previous.reasoning_output_tokens
            ),
            total_tokens=saturating_sub(self.total_tokens, previous.total_tokens),
        )


@dataclass(frozen=True)
class ExecUsageEvent:
    """Token increment of one turn, attributed to a model."""
    timestamp: Optional[str]
    model: str
    input_tokens: int
    cached_input_tokens: int
    output_tokens: int
    reasoning_output_tokens: int
    total_tokens: int
    model_is_fallback: bool = False


ExecLineOutcome = Union[ExecUsageEvent, Skipped]


def normalize_raw_usage(value: Any) -> Optional[RawUsage]:
    """Read a usage object; invalid counts become zero."""
    if not isinstance(value, dict):
        return None

    input_tokens = ensure_token_count(value.get("input_tokens"))
    output_tokens = ensure_token_count(value.get("output_tokens"))
    if "cached_input_tokens" in value:
        cached = ensure_token_count(value.get("cached_input_tokens"))
    else:
        cached = ensure_token_count(value.get("cache_read_input_tokens"))
    total = ensure_token_count(value.get("total_tokens"))

    return RawUsage(
        input_tokens=input_tokens,
        cached_input_tokens=cached,
        output_tokens=output_tokens,
        reasoning_output_tokens=ensure_token_count(value.get("reasoning_output_tokens")),
        total_tokens=total if total > 0 else saturating_add(input_tokens, output_tokens),
    )


def extract_model(payload: Any) -> Optional[str]:
    """Find a model name on an envelope payload.

    ``info.model``, ``info.model_name`` and ``info.metadata.model`` win over
    ``model`` and ``metadata.model`` on the payload itself.
    """
    if not isinstance(payload, dict):
        return None

    info = payload.get("info")
    if isinstance(info, dict):
        model = as_non_empty_string(info.get("model")) or as_non_empty_string(info.get("model_name"))
        if model:
            return model
        metadata = info.get("metadata")
        if isinstance(metadata, dict):
            model = as_non_empty_string(metadata.get("model"))
            if model:
                return model

    model = as_non_empty_string(payload.get("model"))
    if model:
        return model
    metadata = payload.get("metadata")
    if isinstance(metadata, dict):
        return as_non_empty_string(metadata.get("model"))
    return None


class ExecSessionParser:
    """Stateful parser for a single session file.

    Tracks the last cumulative snapshot and the currently declared model,
    both scoped to the file being read.
    """

    def __init__(self):
        self.previous_totals: Optional[RawUsage] = None
        self.current_model: Optional[str] = None
        self.current_model_is_fallback = False

    def parse_line(self, line: str, line_number: int = 0) -> ExecLineOutcome:
        trimmed = line.strip()
        if not trimmed:
            return Skipped(SkipReason.BLANK, line_number)
        if EVENT_MARKER not in trimmed and CONTEXT_MARKER not in trimmed:
            return Skipped(SkipReason.NO_MARKER, line_number)

        decoded = decode_object(trimmed, line_number)
        if isinstance(decoded, Skipped):
            return decoded
        return self.parse_entry(decoded, line_number)

    def parse_entry(self, entry: dict, line_number: int = 0) -> ExecLineOutcome:
        entry_type = entry.get("type")
        payload = entry.get("payload")

        if entry_type == "turn_context":
            model = extract_model(payload)
            if model is not None:
                self.current_model = model
                self.current_model_is_fallback = False
            return Skipped(SkipReason.MODEL_CONTEXT, line_number)

        if entry_type != "event_msg" or not isinstance(payload, dict):
            return Skipped(SkipReason.UNSUPPORTED_ENTRY, line_number)
        if payload.get("type") != "token_count":
            return Skipped(SkipReason.UNSUPPORTED_ENTRY, line_number)

        info = payload.get("info")
        if not isinstance(info, dict):
            info = {}
        last_usage = normalize_raw_usage(info.get("last_token_usage"))
        total_usage = normalize_raw_usage(info.get("total_token_usage"))

        raw = last_usage
        if raw is None and total_usage is not None:
            raw = total_usage.minus(self.previous_totals)
        if total_usage is not None:
            self.previous_totals = total_usage

        if raw is None:
            return Skipped(SkipReason.MISSING_USAGE, line_number)

        cached = min(raw.cached_input_tokens, raw.input_tokens)
        if (
            raw.input_tokens == 0
            and cached == 0
            and raw.output_tokens == 0
            and raw.reasoning_output_tokens == 0
        ):
            return Skipped(SkipReason.ZERO_DELTA, line_number)

        model, is_fallback = self._resolve_model(extract_model(payload))
        timestamp = entry.get("timestamp")

        return ExecUsageEvent(
            timestamp=timestamp if isinstance(timestamp, str) else None,
            model=model,
            input_tokens=raw.input_tokens,
            cached_input_tokens=cached,
            output_tokens=raw.output_tokens,
            reasoning_output_tokens=raw.reasoning_output_tokens,
            total_tokens=(
                raw.total_tokens
                if raw.total_tokens > 0
                else saturating_add(raw.input_tokens, raw.output_tokens)
            ),
            model_is_fallback=is_fallback,
        )

    def _resolve_model(self, extracted: Optional[str]):
        if extracted is not None:
            self.current_model = extracted
            self.current_model_is_fallback = False
            return extracted, False

        if self.current_model is not None:
            return self.current_model, self.current_model_is_fallback

        self.current_model = LEGACY_FALLBACK_MODEL
        self.current_model_is_fallback = True
        return LEGACY_FALLBACK_MODEL, True


def iter_file(path: Path) -> Iterator[ExecLineOutcome]:
    """Parse a session file with a fresh parser state."""
    parser = ExecSessionParser()
    for line_number, line in iter_lines(path):
        yield parser.parse_line(line, line_number)
