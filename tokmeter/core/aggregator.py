"""
Usage aggregation over log files.

Drives the source parsers over a list of files and folds the resulting
events into UsageTotals for one query, either bounded by a calendar date
range or over all time.

Aggregation never fails because of log content: malformed lines, unreadable
files and unparseable timestamps only exclude the affected records.
"""

import logging
from collections import Counter
from datetime import date, tzinfo
from pathlib import Path
from typing import Dict, Optional, Sequence, Set, Tuple

from tokmeter.parsers import chat_log, exec_session
from tokmeter.parsers.outcome import SkipReason, Skipped
from .pricing import (
    CHAT_LOG_PROVIDER_PREFIXES,
    EXEC_SESSION_MODEL_ALIASES,
    EXEC_SESSION_PROVIDER_PREFIXES,
    CachedInputCostCalculator,
    PricingDataset,
    PricingResolver,
    TieredCostCalculator,
)
from .time_parse import local_date_in_range
from .time_range import DateRange
from .token_counter import ExecTokens, UsageTotals

logger = logging.getLogger(__name__)


class UsageAggregator:
    """Computes totals for a list of log files.

    Args:
        tz: Timezone that defines "local" calendar dates; defaults to the
            system timezone
    """

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz

    def _in_range(self, timestamp: Optional[str], bounds: Optional[Tuple[date, date]]) -> bool:
        if bounds is None:
            return True
        if timestamp is None:
            return False
        return local_date_in_range(timestamp, bounds[0], bounds[1], self.tz)

    def chat_log_totals(
        self,
        files: Sequence[Path],
        date_range: Optional[DateRange],
        dataset: PricingDataset,
    ) -> UsageTotals:
        """Aggregate chat-log files.

        Files are processed in order of their earliest timestamp and
        entries sharing a message id and request id are counted once.

        Args:
            files: Chat-log files
            date_range: Local-date range, or None for all time
            dataset: Pricing mapping; empty disables cost computation

        Returns:
            UsageTotals for the query
        """
        bounds = None
        if date_range is not None:
            bounds = date_range.bounds()
            if bounds is None:
                logger.debug("Malformed date range %r; returning zero totals", date_range)
                return UsageTotals()

        should_calculate_cost = bool(dataset)
        resolver = PricingResolver(dataset, CHAT_LOG_PROVIDER_PREFIXES)
        calculator = TieredCostCalculator()

        totals = UsageTotals()
        processed_keys: Set[str] = set()
        skipped: Counter = Counter()

        for path in chat_log.sort_files_by_earliest_timestamp(files, self.tz):
            for outcome in chat_log.iter_file(path):
                if isinstance(outcome, Skipped):
                    skipped[outcome.reason] += 1
                    continue

                if not self._in_range(outcome.timestamp, bounds):
                    skipped[SkipReason.OUT_OF_RANGE] += 1
                    continue

                key = outcome.dedupe_key
                if key is not None:
                    if key in processed_keys:
                        skipped[SkipReason.DUPLICATE] += 1
                        continue
                    processed_keys.add(key)

                totals.add_tokens(outcome.tokens.total_tokens)

                if not should_calculate_cost:
                    continue
                if outcome.cost_usd is not None:
                    totals.add_cost(outcome.cost_usd)
                elif outcome.model is not None:
                    pricing = resolver.pricing_for(outcome.model)
                    if pricing is not None:
                        totals.add_cost(calculator.cost(outcome.tokens, pricing))

        _log_skips("chat-log", len(files), skipped)
        return totals

    def exec_session_totals(
        self,
        files: Sequence[Path],
        date_range: Optional[DateRange],
        dataset: PricingDataset,
    ) -> UsageTotals:
        """Aggregate exec-session files.

        Token deltas are summed per model across every file first and each
        model is billed once at the end.

        Args:
            files: Session files
            date_range: Local-date range, or None for all time
            dataset: Pricing mapping; empty disables cost computation

        Returns:
            UsageTotals for the query
        """
        bounds = None
        if date_range is not None:
            bounds = date_range.bounds()
            if bounds is None:
                logger.debug("Malformed date range %r; returning zero totals", date_range)
                return UsageTotals()

        should_calculate_cost = bool(dataset)
        totals = UsageTotals()
        model_tokens: Dict[str, ExecTokens] = {}
        skipped: Counter = Counter()

        for path in files:
            for outcome in exec_session.iter_file(path):
                if isinstance(outcome, Skipped):
                    skipped[outcome.reason] += 1
                    continue

                if not self._in_range(outcome.timestamp, bounds):
                    skipped[SkipReason.OUT_OF_RANGE] += 1
                    continue

                totals.add_tokens(outcome.total_tokens)
                if should_calculate_cost:
                    model_tokens.setdefault(outcome.model, ExecTokens()).add(
                        outcome.input_tokens,
                        outcome.cached_input_tokens,
                        outcome.output_tokens,
                    )

        if should_calculate_cost:
            resolver = PricingResolver(
                dataset, EXEC_SESSION_PROVIDER_PREFIXES, EXEC_SESSION_MODEL_ALIASES
            )
            calculator = CachedInputCostCalculator()
            for model in sorted(model_tokens):
                pricing = resolver.pricing_for(model)
                if pricing is None:
                    logger.debug("No pricing for model %r", model)
                    continue
                totals.add_cost(calculator.cost(model_tokens[model], pricing))

        _log_skips("exec-session", len(files), skipped)
        return totals


def _log_skips(source: str, file_count: int, skipped: Counter) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    summary = ", ".join(
        f"{reason.value}={count}"
        for reason, count in sorted(skipped.items(), key=lambda item: item[0].value)
    )
    logger.debug("%s pass over %d files; skipped lines: %s", source, file_count, summary or "none")
