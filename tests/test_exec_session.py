"""
Unit tests for the exec-session parser and exec-session aggregation.

Tests delta reconstruction, model attribution and per-model billing.
"""

import json
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from tokmeter.core.aggregator import UsageAggregator
from tokmeter.core.pricing import ModelPricing
from tokmeter.core.time_range import DateRange
from tokmeter.parsers import ExecSessionParser, ExecUsageEvent, SkipReason, Skipped
from tokmeter.parsers.exec_session import (
    LEGACY_FALLBACK_MODEL,
    RawUsage,
    extract_model,
    normalize_raw_usage,
)

GPT5 = ModelPricing(
    input_cost_per_token=1.25e-6,
    output_cost_per_token=1e-5,
    cache_read_input_token_cost=1.25e-7,
)
TODAY = DateRange("20260206", "20260206", "Today")


def _local(year, month, day, hour=12):
    return datetime(year, month, day, hour).astimezone().isoformat()


def _usage(input_tokens, cached, output, total=None, reasoning=0):
    usage = {
        "input_tokens": input_tokens,
        "cached_input_tokens": cached,
        "output_tokens": output,
        "reasoning_output_tokens": reasoning,
    }
    if total is not None:
        usage["total_tokens"] = total
    return usage


def _token_count(timestamp=None, last=None, total=None, **payload_extra):
    info = {}
    if last is not None:
        info["last_token_usage"] = last
    if total is not None:
        info["total_token_usage"] = total
    entry = {"type": "event_msg", "payload": dict({"type": "token_count", "info": info}, **payload_extra)}
    if timestamp is not None:
        entry["timestamp"] = timestamp
    return entry


def _turn_context(model):
    return {"type": "turn_context", "payload": {"model": model}}


class TestNormalizeRawUsage:
    """Test reading usage objects."""

    def test_cache_read_spelling(self):
        """Verify cache_read_input_tokens is accepted for cached input."""
        raw = normalize_raw_usage({"input_tokens": 10, "cache_read_input_tokens": 4, "output_tokens": 2})
        assert raw.cached_input_tokens == 4

    def test_cached_input_key_wins_when_present(self):
        """Verify an explicit cached_input_tokens key is not overridden."""
        raw = normalize_raw_usage({"input_tokens": 10, "cached_input_tokens": None, "cache_read_input_tokens": 4})
        assert raw.cached_input_tokens == 0

    def test_total_defaults_to_input_plus_output(self):
        """Verify a missing total is derived."""
        raw = normalize_raw_usage({"input_tokens": 10, "output_tokens": 2})
        assert raw.total_tokens == 12

    def test_invalid_counts_become_zero(self):
        """Verify bad counts are treated as zero."""
        raw = normalize_raw_usage({"input_tokens": -5, "output_tokens": "x", "total_tokens": 1.5})
        assert raw == RawUsage(0, 0, 0, 0, 0)

    def test_not_an_object(self):
        """Verify non-objects are not usage."""
        assert normalize_raw_usage([1, 2]) is None
        assert normalize_raw_usage(None) is None

    def test_minus_saturates(self):
        """Verify a counter reset yields zero rather than negatives."""
        later = RawUsage(100, 0, 10, 0, 110)
        assert later.minus(RawUsage(500, 0, 50, 0, 550)) == RawUsage(0, 0, 0, 0, 0)


class TestExtractModel:
    """Test model lookup on payloads."""

    def test_info_wins_over_payload(self):
        """Verify info.model is preferred."""
        assert extract_model({"model": "outer", "info": {"model": "inner"}}) == "inner"

    def test_nested_metadata(self):
        """Verify metadata.model locations are searched."""
        assert extract_model({"info": {"metadata": {"model": "a"}}}) == "a"
        assert extract_model({"metadata": {"model": "b"}}) == "b"
        assert extract_model({"info": {"model_name": "c"}}) == "c"

    def test_blank_names_are_ignored(self):
        """Verify whitespace-only names do not count."""
        assert extract_model({"model": "  ", "metadata": {"model": "d"}}) == "d"
        assert extract_model("gpt-5") is None


class TestExecSessionParser:
    """Test per-line outcomes of the stateful parser."""

    def setup_method(self):
        """Create a fresh parser."""
        self.parser = ExecSessionParser()

    def _parse(self, entry, line_number=0):
        return self.parser.parse_line(json.dumps(entry), line_number)

    def test_turn_context_sets_model(self):
        """Verify turn_context declares the model for later events."""
        assert self._parse(_turn_context("gpt-5-codex"), 1) == Skipped(SkipReason.MODEL_CONTEXT, 1)
        event = self._parse(_token_count("t", last=_usage(10, 0, 5)))
        assert event.model == "gpt-5-codex"
        assert not event.model_is_fallback

    def test_legacy_fallback_model(self):
        """Verify sessions without a model use the legacy default."""
        event = self._parse(_token_count("t", last=_usage(10, 0, 5)))
        assert event.model == LEGACY_FALLBACK_MODEL
        assert event.model_is_fallback
        later = self._parse(_token_count("t", last=_usage(1, 0, 1)))
        assert later.model_is_fallback

    def test_event_model_overrides_context(self):
        """Verify a model on the event itself is used and remembered."""
        self._parse(_turn_context("gpt-5"))
        event = self._parse(_token_count("t", last=_usage(10, 0, 5), model="o3"))
        assert event.model == "o3"
        assert self._parse(_token_count("t", last=_usage(1, 0, 1))).model == "o3"

    def test_delta_from_cumulative_totals(self):
        """Verify cumulative-only events are turned into deltas."""
        first = self._parse(_token_count("t", total=_usage(1000, 200, 500, 1500)))
        second = self._parse(_token_count("t", total=_usage(1100, 300, 550, 1650)))
        assert (first.input_tokens, first.cached_input_tokens, first.output_tokens) == (1000, 200, 500)
        assert first.total_tokens == 1500
        assert (second.input_tokens, second.cached_input_tokens, second.output_tokens) == (100, 100, 50)
        assert second.total_tokens == 150

    def test_last_usage_wins_and_still_records_snapshot(self):
        """Verify last_token_usage is used directly while totals advance."""
        self._parse(_token_count("t", last=_usage(10, 0, 5), total=_usage(1000, 0, 500, 1500)))
        event = self._parse(_token_count("t", total=_usage(1010, 0, 505, 1515)))
        assert event.total_tokens == 15

    def test_repeated_snapshot_is_zero_delta(self):
        """Verify identical cumulative snapshots are discarded."""
        self._parse(_token_count("t", total=_usage(100, 0, 50)))
        outcome = self._parse(_token_count("t", total=_usage(100, 0, 50)), 7)
        assert outcome == Skipped(SkipReason.ZERO_DELTA, 7)

    def test_counter_reset(self):
        """Verify a decreasing snapshot yields nothing and becomes the new base."""
        self._parse(_token_count("t", total=_usage(1000, 0, 500)))
        assert isinstance(self._parse(_token_count("t", total=_usage(400, 0, 100))), Skipped)
        event = self._parse(_token_count("t", total=_usage(600, 0, 150)))
        assert (event.input_tokens, event.output_tokens) == (200, 50)

    def test_cached_is_clamped_to_input(self):
        """Verify cached input never exceeds input."""
        event = self._parse(_token_count("t", last=_usage(10, 50, 5)))
        assert event.cached_input_tokens == 10

    def test_timestamp_is_optional(self):
        """Verify events without a timestamp are still produced."""
        event = self._parse(_token_count(last=_usage(10, 0, 5)))
        assert isinstance(event, ExecUsageEvent)
        assert event.timestamp is None

    @pytest.mark.parametrize("line,reason", [
        ("", SkipReason.BLANK),
        ('{"type": "response_item"}', SkipReason.NO_MARKER),
        ('{"type": "event_msg", ', SkipReason.INVALID_JSON),
        ('"event_msg"', SkipReason.NOT_AN_OBJECT),
        ('{"type": "event_msg", "payload": {"type": "agent_message"}}', SkipReason.UNSUPPORTED_ENTRY),
        ('{"type": "event_msg", "payload": "token_count"}', SkipReason.UNSUPPORTED_ENTRY),
        ('{"type": "event_msg", "payload": {"type": "token_count", "info": null}}', SkipReason.MISSING_USAGE),
    ])
    def test_skip_reasons(self, line, reason):
        """Verify each unusable line is skipped with its reason."""
        assert self.parser.parse_line(line, 2) == Skipped(reason, 2)


class TestExecSessionAggregation:
    """Test exec-session totals over files."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.aggregator = UsageAggregator()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_jsonl(self, name, records):
        path = Path(self.temp_dir) / name
        with open(path, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record) + "\n")
        return path

    def test_totals_and_cost(self):
        """Verify deltas are summed and billed once per model."""
        path = self._write_jsonl("rollout.jsonl", [
            _turn_context("gpt-5"),
            _token_count(_local(2026, 2, 6), total=_usage(1000, 200, 500, 1500)),
            _token_count(_local(2026, 2, 6, 13), total=_usage(1100, 300, 550, 1650)),
        ])
        totals = self.aggregator.exec_session_totals([path], TODAY, {"gpt-5": GPT5})
        assert totals.total_tokens == 1650
        expected = 800 * 1.25e-6 + 300 * 1.25e-7 + 550 * 1e-5
        assert totals.cost_usd == pytest.approx(expected)

    def test_alias_model_is_priced(self):
        """Verify a compound model name bills as its base model."""
        path = self._write_jsonl("a.jsonl", [
            _turn_context("gpt-5-codex"),
            _token_count(_local(2026, 2, 6), last=_usage(1000, 0, 0)),
        ])
        totals = self.aggregator.exec_session_totals([path], None, {"gpt-5": GPT5})
        assert totals.cost_usd == pytest.approx(1000 * 1.25e-6)

    def test_timestamp_less_events(self):
        """Verify timestamp-less events count toward all time only."""
        path = self._write_jsonl("a.jsonl", [
            _token_count(last=_usage(10, 0, 5)),
            _token_count(_local(2026, 2, 6), last=_usage(20, 0, 10)),
        ])
        assert self.aggregator.exec_session_totals([path], None, {}).total_tokens == 45
        assert self.aggregator.exec_session_totals([path], TODAY, {}).total_tokens == 30

    def test_out_of_range_events_still_advance_snapshot(self):
        """Verify filtered events keep the cumulative base in sync."""
        path = self._write_jsonl("a.jsonl", [
            _token_count(_local(2026, 2, 5), total=_usage(1000, 0, 0)),
            _token_count(_local(2026, 2, 6), total=_usage(1100, 0, 0)),
        ])
        assert self.aggregator.exec_session_totals([path], TODAY, {}).total_tokens == 100

    def test_state_is_per_file(self):
        """Verify each file starts from an empty snapshot."""
        first = self._write_jsonl("a.jsonl", [_token_count(_local(2026, 2, 6), total=_usage(100, 0, 0))])
        second = self._write_jsonl("b.jsonl", [_token_count(_local(2026, 2, 6), total=_usage(100, 0, 0))])
        assert self.aggregator.exec_session_totals([first, second], TODAY, {}).total_tokens == 200

    def test_unpriced_model_and_empty_dataset(self):
        """Verify costs only accrue for priced models."""
        path = self._write_jsonl("a.jsonl", [
            _turn_context("mystery-model"),
            _token_count(_local(2026, 2, 6), last=_usage(10, 0, 5)),
        ])
        assert self.aggregator.exec_session_totals([path], None, {"gpt-5": GPT5}).cost_usd == 0.0
        assert self.aggregator.exec_session_totals([path], None, {}).total_tokens == 15

    def test_malformed_range_yields_zero(self):
        """Verify a malformed range short-circuits to zero."""
        path = self._write_jsonl("a.jsonl", [_token_count(_local(2026, 2, 6), last=_usage(10, 0, 5))])
        totals = self.aggregator.exec_session_totals([path], DateRange("bad", "bad", "x"), {})
        assert totals.total_tokens == 0
