"""
Title formatting for usage totals.

``cx`` denotes the exec-session source and ``cc`` the chat-log source.
"""

from tokmeter.core.token_counter import UsageTotals


def format_cost_usd(cost: float) -> str:
    return f"${cost:.2f}"


def format_tokens_compact(tokens: int) -> str:
    """Short token count: 999, 12.3k, 123k, 1.2m, 123m, 1.2b."""
    value = float(tokens)
    if value < 1_000:
        return str(tokens)
    if value < 100_000:
        return f"{value / 1_000:.1f}k"
    if value < 1_000_000:
        return f"{value / 1_000:.0f}k"
    if value < 100_000_000:
        return f"{value / 1_000_000:.1f}m"
    if value < 1_000_000_000:
        return f"{value / 1_000_000:.0f}m"
    return f"{value / 1_000_000_000:.1f}b"


def format_u64_with_commas(value: int) -> str:
    return f"{value:,}"


def format_single_title(period: str, source_abbr: str, totals: UsageTotals, show_cost: bool) -> str:
    tokens = format_tokens_compact(totals.total_tokens)
    if show_cost:
        return f"{period} {source_abbr} {tokens}({format_cost_usd(totals.cost_usd)})"
    return f"{period} {source_abbr} {tokens}"


def format_both_title_one_line(
    period: str,
    cx: UsageTotals,
    cc: UsageTotals,
    show_cost: bool,
) -> str:
    cx_tokens = format_tokens_compact(cx.total_tokens)
    cc_tokens = format_tokens_compact(cc.total_tokens)
    if show_cost:
        return (
            f"{period} | cx {cx_tokens}({format_cost_usd(cx.cost_usd)})"
            f" | cc {cc_tokens}({format_cost_usd(cc.cost_usd)})"
        )
    return f"{period} | cx {cx_tokens} | cc {cc_tokens}"


def format_single_title_raw(period: str, source_abbr: str, totals: UsageTotals, show_cost: bool) -> str:
    """Like format_single_title but with the full, comma-grouped count."""
    tokens = format_u64_with_commas(totals.total_tokens)
    if show_cost:
        return f"{period} {source_abbr} {tokens}({format_cost_usd(totals.cost_usd)})"
    return f"{period} {source_abbr} {tokens}"


def _raw_source_line(source_abbr: str, totals: UsageTotals, show_cost: bool) -> str:
    tokens = format_u64_with_commas(totals.total_tokens)
    if show_cost:
        return f"{source_abbr} {tokens}({format_cost_usd(totals.cost_usd)})"
    return f"{source_abbr} {tokens}"


def format_both_title_raw(period: str, cx: UsageTotals, cc: UsageTotals, show_cost: bool) -> str:
    """Two-line title: ``<period> |\\tcx ...`` then ``\\tcc ...``."""
    return (
        f"{period} |\t{_raw_source_line('cx', cx, show_cost)}"
        f"\n\t{_raw_source_line('cc', cc, show_cost)}"
    )
