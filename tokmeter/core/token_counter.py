"""
Token counting and usage totals.

Holds the token shapes read from each log source and the saturating
arithmetic used to accumulate them.
"""

from dataclasses import dataclass

U64_MAX = 2**64 - 1


def saturating_add(a: int, b: int) -> int:
    """Add two unsigned counters, clamping at the 64-bit maximum."""
    return min(a + b, U64_MAX)


def saturating_sub(a: int, b: int) -> int:
    """Subtract two unsigned counters, flooring at zero."""
    return a - b if a > b else 0


@dataclass
class UsageTotals:
    """Aggregated tokens and cost for one query.

    Created fresh per query and never persisted.
    """
    total_tokens: int = 0
    cost_usd: float = 0.0

    def add_tokens(self, tokens: int) -> None:
        self.total_tokens = saturating_add(self.total_tokens, tokens)

    def add_cost(self, cost: float) -> None:
        self.cost_usd += cost


@dataclass(frozen=True)
class ChatTokens:
    """Token counts of a single chat-log entry."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Saturating sum of all four categories."""
        total = 0
        for value in (
            self.input_tokens,
            self.output_tokens,
            self.cache_creation_input_tokens,
            self.cache_read_input_tokens,
        ):
            total = saturating_add(total, value)
        return total


@dataclass
class ExecTokens:
    """Token counts billed for an exec-session model.

    Mutable because deltas are summed per model across a whole query
    before costing.
    """
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0

    def add(self, input_tokens: int, cached_input_tokens: int, output_tokens: int) -> None:
        self.input_tokens = saturating_add(self.input_tokens, input_tokens)
        self.cached_input_tokens = saturating_add(self.cached_input_tokens, cached_input_tokens)
        self.output_tokens = saturating_add(self.output_tokens, output_tokens)
