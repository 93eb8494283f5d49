"""
Log parsers for tokmeter.

One parser per log source; each turns raw lines into usage events or
skip records.
"""

from .chat_log import ChatUsageEvent
from .exec_session import ExecSessionParser, ExecUsageEvent
from .outcome import SkipReason, Skipped

__all__ = [
    "ChatUsageEvent",
    "ExecSessionParser",
    "ExecUsageEvent",
    "SkipReason",
    "Skipped",
]
