"""
CLI interface for tokmeter.

Prints token and cost totals for the local agent logs.
"""

import logging
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from tokmeter.cli.formatting import (
    format_both_title_one_line,
    format_both_title_raw,
    format_cost_usd,
    format_single_title,
    format_single_title_raw,
    format_u64_with_commas,
)
from tokmeter.config.loader import Period, Source, load_stats_config
from tokmeter.config.paths import (
    DirectoryResolutionError,
    default_chat_log_base_dirs,
    default_exec_session_dirs,
)
from tokmeter.config.pricing_file import load_pricing_dataset
from tokmeter.core.time_range import (
    DateRange,
    range_month,
    range_today,
    range_week_monday,
    range_year,
)
from tokmeter.core.token_counter import UsageTotals
from tokmeter.core.usage import UsageService

app = typer.Typer()
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_USAGE = 2  # Invalid configuration

ALL_TIME_LABEL = "All"

_service: Optional[UsageService] = None


def get_usage_service() -> UsageService:
    """Get the process-wide usage service, creating it on first use."""
    global _service
    if _service is None:
        _service = UsageService()
    return _service


def range_for_period(period: Period) -> Optional[DateRange]:
    """Date range for a period; None means all time."""
    return {
        Period.TODAY: range_today,
        Period.WEEK: range_week_monday,
        Period.MONTH: range_month,
        Period.YEAR: range_year,
        Period.ALL: lambda: None,
    }[period]()


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """tokmeter CLI."""
    if ctx.invoked_subcommand is None:
        console.print("tokmeter - Use --help to see available commands")


@app.command()
def stats(
    period: Optional[Period] = typer.Option(
        None,
        "--period",
        "-p",
        case_sensitive=False,
        help="Reporting period (defaults to the config file, then today)"
    ),
    source: Optional[Source] = typer.Option(
        None,
        "--source",
        "-s",
        case_sensitive=False,
        help="cx (exec sessions), cc (chat logs) or both"
    ),
    pricing_file: Optional[str] = typer.Option(
        None,
        "--pricing-file",
        help="LiteLLM pricing JSON; costs are hidden when unavailable"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML config file with defaults"
    ),
    compact: bool = typer.Option(
        False,
        "--compact",
        help="Abbreviate token counts on one line"
    ),
    table: bool = typer.Option(
        False,
        "--table",
        help="Show totals as a table"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log scan and cache activity to stderr"
    ),
):
    """
    Show token usage and cost for a period.

    Totals come from the local chat-log and exec-session files. Costs are
    only shown when a non-empty pricing dataset is available.
    """
    _configure_logging(verbose)

    try:
        settings = load_stats_config(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        err_console.print(f"[red]Invalid configuration:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_USAGE)

    period = period or settings.period
    source = source or settings.source

    dataset = load_pricing_dataset(pricing_file or settings.pricing_file)
    show_cost = settings.show_cost and bool(dataset)

    date_range = range_for_period(period)
    label = date_range.label if date_range is not None else ALL_TIME_LABEL
    service = get_usage_service()

    cx: Optional[UsageTotals] = None
    cc: Optional[UsageTotals] = None

    if source in (Source.CX, Source.BOTH):
        if date_range is None:
            cx = service.exec_session_totals_all_time(dataset)
        else:
            cx = service.exec_session_totals(date_range, dataset)

    if source in (Source.CC, Source.BOTH):
        try:
            if date_range is None:
                cc = service.chat_log_totals_all_time(dataset)
            else:
                cc = service.chat_log_totals(date_range, dataset)
        except DirectoryResolutionError as e:
            if source == Source.CC:
                err_console.print(f"[red]ERR:[/] {escape(str(e))}")
                sys.exit(EXIT_CODE_FAIL)
            err_console.print(f"[yellow]Warning:[/] {escape(str(e))}; counting cc as zero")
            cc = UsageTotals()

    if table:
        _display_totals_table(label, cx, cc, show_cost)
    elif source == Source.BOTH:
        if compact:
            _print_plain(format_both_title_one_line(label, cx, cc, show_cost))
        else:
            _print_plain(format_both_title_raw(label, cx, cc, show_cost))
    else:
        abbr, totals = ("cx", cx) if source == Source.CX else ("cc", cc)
        if compact:
            _print_plain(format_single_title(label, abbr, totals, show_cost))
        else:
            _print_plain(format_single_title_raw(label, abbr, totals, show_cost))

    sys.exit(EXIT_CODE_PASS)


@app.command()
def paths():
    """Show the log directories that would be scanned."""
    found_any = False

    try:
        chat_dirs = default_chat_log_base_dirs()
        found_any = True
        console.print("[bold]cc[/bold] (chat logs):")
        for path in chat_dirs:
            _print_plain(f"  {path}")
    except DirectoryResolutionError as e:
        console.print(f"[bold]cc[/bold] (chat logs): [red]{escape(str(e))}[/]")

    session_dirs = default_exec_session_dirs()
    console.print("[bold]cx[/bold] (exec sessions):")
    if session_dirs:
        found_any = True
        for path in session_dirs:
            _print_plain(f"  {path}")
    else:
        console.print("  [dim]none found[/]")

    sys.exit(EXIT_CODE_PASS if found_any else EXIT_CODE_FAIL)


def _print_plain(text: str) -> None:
    # Bypasses rich so tabs in the raw titles survive.
    typer.echo(text)


def _display_totals_table(
    label: str,
    cx: Optional[UsageTotals],
    cc: Optional[UsageTotals],
    show_cost: bool,
) -> None:
    """Display totals as a table, one row per source."""
    result = Table(title=f"{label} usage")
    result.add_column("Source")
    result.add_column("Tokens", justify="right")
    if show_cost:
        result.add_column("Cost", justify="right")

    for abbr, totals in (("cx", cx), ("cc", cc)):
        if totals is None:
            continue
        row = [abbr, format_u64_with_commas(totals.total_tokens)]
        if show_cost:
            row.append(format_cost_usd(totals.cost_usd))
        result.add_row(*row)

    console.print(result)


if __name__ == "__main__":
    app()
