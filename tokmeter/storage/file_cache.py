"""
Log file discovery with a TTL cache.

Scanning large log trees on every refresh is the most expensive part of a
query, so each source keeps the last scan result for a few minutes.
"""

import glob
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

FILES_TTL_SECONDS = 5 * 60

Clock = Callable[[], float]
Scanner = Callable[[Sequence[Path]], List[Path]]


def _glob_jsonl(root: Path) -> List[Path]:
    pattern = os.path.join(glob.escape(str(root)), "**", "*.jsonl")
    try:
        return [Path(match) for match in glob.glob(pattern, recursive=True) if os.path.isfile(match)]
    except (OSError, ValueError) as e:
        logger.debug("Scan of %s failed: %s", root, e)
        return []


def scan_chat_log_files(base_dirs: Sequence[Path]) -> List[Path]:
    """All ``<base>/projects/**/*.jsonl`` files."""
    files: List[Path] = []
    for base_dir in base_dirs:
        files.extend(_glob_jsonl(Path(base_dir) / "projects"))
    return files


def scan_exec_session_files(session_dirs: Sequence[Path]) -> List[Path]:
    """All ``<dir>/**/*.jsonl`` files."""
    files: List[Path] = []
    for session_dir in session_dirs:
        files.extend(_glob_jsonl(Path(session_dir)))
    return files


@dataclass
class _ScanState:
    base_dirs: List[Path] = field(default_factory=list)
    scanned_at: Optional[float] = None
    files: List[Path] = field(default_factory=list)


class FileScanCache:
    """Per-source cache of discovered log files.

    A cached list is reused only while the requested directory list equals
    the cached one element by element and the scan is younger than the TTL.
    """

    def __init__(
        self,
        scanner: Scanner,
        ttl_seconds: float = FILES_TTL_SECONDS,
        clock: Clock = time.monotonic,
    ):
        self.scanner = scanner
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._state = _ScanState()

    def get_files(self, base_dirs: Sequence[Path]) -> List[Path]:
        """Return the log files under base_dirs, rescanning when stale.

        Args:
            base_dirs: Ordered directories to scan

        Returns:
            A fresh list of file paths (callers may mutate it)
        """
        dirs = [Path(d) for d in base_dirs]
        if not dirs:
            return []

        with self._lock:
            state = self._state
            if state.base_dirs == dirs and state.scanned_at is not None:
                if self.clock() - state.scanned_at < self.ttl_seconds:
                    logger.debug("File cache hit: %d files", len(state.files))
                    return list(state.files)

        files = self.scanner(dirs)
        logger.debug("Scanned %d directories: %d files", len(dirs), len(files))

        with self._lock:
            self._state = _ScanState(base_dirs=dirs, scanned_at=self.clock(), files=list(files))
        return list(files)

    def invalidate(self) -> None:
        with self._lock:
            self._state = _ScanState()


def chat_log_file_cache(clock: Clock = time.monotonic) -> FileScanCache:
    return FileScanCache(scan_chat_log_files, clock=clock)


def exec_session_file_cache(clock: Clock = time.monotonic) -> FileScanCache:
    return FileScanCache(scan_exec_session_files, clock=clock)
