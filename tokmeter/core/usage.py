"""
Usage queries for both log sources.

UsageService ties directory resolution, file discovery caches, the
aggregator and the all-time aggregate caches together. Construct one per
process and share it between every caller (periodic refresher, manual
refresh, CLI); all of its caches are thread-safe.
"""

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from tokmeter.config.paths import default_chat_log_base_dirs, default_exec_session_dirs
from tokmeter.storage.aggregate_cache import AggregateCache
from tokmeter.storage.file_cache import (
    FileScanCache,
    chat_log_file_cache,
    exec_session_file_cache,
)
from .aggregator import UsageAggregator
from .pricing import PricingDataset
from .time_range import DateRange
from .token_counter import UsageTotals

logger = logging.getLogger(__name__)

DirResolver = Callable[[], List[Path]]


class UsageService:
    """Entry point for range and all-time usage totals.

    Args:
        aggregator: Aggregator to use; a system-timezone one by default
        chat_log_dirs: Resolves chat-log base directories; may raise
            DirectoryResolutionError
        exec_session_dirs: Resolves exec-session directories
        clock: Monotonic time source shared by every cache
    """

    def __init__(
        self,
        aggregator: Optional[UsageAggregator] = None,
        chat_log_dirs: DirResolver = default_chat_log_base_dirs,
        exec_session_dirs: DirResolver = default_exec_session_dirs,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.aggregator = aggregator or UsageAggregator()
        self.chat_log_dirs = chat_log_dirs
        self.exec_session_dirs = exec_session_dirs

        self.chat_log_files: FileScanCache = chat_log_file_cache(clock)
        self.exec_session_files: FileScanCache = exec_session_file_cache(clock)

        self._chat_log_all_time = AggregateCache("chat-log all-time", clock=clock)
        self._chat_log_all_time_with_cost = AggregateCache("chat-log all-time with cost", clock=clock)
        self._exec_session_all_time = AggregateCache("exec-session all-time", clock=clock)
        self._exec_session_all_time_with_cost = AggregateCache(
            "exec-session all-time with cost", clock=clock
        )

    # Directory-based queries

    def chat_log_totals_from_dirs(
        self,
        base_dirs: Sequence[Path],
        date_range: Optional[DateRange],
        dataset: PricingDataset,
    ) -> UsageTotals:
        files = self.chat_log_files.get_files(base_dirs)
        return self.aggregator.chat_log_totals(files, date_range, dataset)

    def exec_session_totals_from_dirs(
        self,
        session_dirs: Sequence[Path],
        date_range: Optional[DateRange],
        dataset: PricingDataset,
    ) -> UsageTotals:
        if not session_dirs:
            return UsageTotals()
        files = self.exec_session_files.get_files(session_dirs)
        return self.aggregator.exec_session_totals(files, date_range, dataset)

    # Range queries (never cached as aggregates)

    def chat_log_totals(self, date_range: DateRange, dataset: PricingDataset) -> UsageTotals:
        """Chat-log totals for a date range.

        Raises:
            DirectoryResolutionError: If no chat-log directory can be found
        """
        base_dirs = self.chat_log_dirs()
        return self.chat_log_totals_from_dirs(base_dirs, date_range, dataset)

    def exec_session_totals(self, date_range: DateRange, dataset: PricingDataset) -> UsageTotals:
        """Exec-session totals for a date range; zero when no sessions exist."""
        return self.exec_session_totals_from_dirs(self.exec_session_dirs(), date_range, dataset)

    # All-time queries (cached per source and cost mode)

    def chat_log_totals_all_time(self, dataset: PricingDataset) -> UsageTotals:
        """All-time chat-log totals, cached for five minutes.

        Raises:
            DirectoryResolutionError: If no chat-log directory can be found;
                the failure is not cached
        """
        cache = self._chat_log_all_time_with_cost if dataset else self._chat_log_all_time

        def compute() -> UsageTotals:
            base_dirs = self.chat_log_dirs()
            return self.chat_log_totals_from_dirs(base_dirs, None, dataset)

        return cache.get_or_compute(compute)

    def exec_session_totals_all_time(self, dataset: PricingDataset) -> UsageTotals:
        """All-time exec-session totals, cached for five minutes."""
        cache = self._exec_session_all_time_with_cost if dataset else self._exec_session_all_time
        return cache.get_or_compute(
            lambda: self.exec_session_totals_from_dirs(self.exec_session_dirs(), None, dataset)
        )

    def invalidate(self) -> None:
        """Drop every cached file list and aggregate."""
        for cache in (self.chat_log_files, self.exec_session_files):
            cache.invalidate()
        for aggregate in (
            self._chat_log_all_time,
            self._chat_log_all_time_with_cost,
            self._exec_session_all_time,
            self._exec_session_all_time_with_cost,
        ):
            aggregate.invalidate()
