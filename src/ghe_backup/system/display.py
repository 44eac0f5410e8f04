# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.10
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/system/display.py

# Standard library imports
from datetime import timedelta

# Third-party imports
import humanize
import orjson
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

# Local imports
from ghe_backup.core.results import NodeResult, RunReport, WarningCategory


def _format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds:.1f}s"
    return humanize.precisedelta(timedelta(seconds=seconds), minimum_unit="seconds", format="%0.0f")


def _node_status(result: NodeResult) -> str:
    if result.ok:
        return "[green]✓ ok[/green]"
    return f"[red]✗ {result.failed_phase.phase}[/red]"


def node_results_table(report: RunReport, verbose: bool = False) -> Table:
    """Build the per-node summary table for a run.

    Args:
        report: Finished run report
        verbose: Add one row per transfer pass

    Returns:
        Rich Table ready for display
    """
    table = Table(title=f"{report.operation.capitalize()} results")
    table.add_column("Node", style="cyan", no_wrap=True)
    table.add_column("Networks", justify="right")
    table.add_column("Passes", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Status")

    for name, result in sorted(report.nodes.items()):
        duration = sum(phase.duration for phase in result.phases)
        table.add_row(
            name,
            humanize.intcomma(result.network_count),
            str(len(result.phases)),
            _format_duration(duration),
            _node_status(result),
        )
        if verbose:
            for phase in result.phases:
                marker = "[green]✓[/green]" if phase.ok else "[red]✗[/red]"
                table.add_row("", "", f"[dim]{phase.phase}[/dim]",
                              f"[dim]{_format_duration(phase.duration)}[/dim]", marker)
    return table


def warnings_panel(report: RunReport) -> Panel | None:
    """All run warnings in one panel, grouped by category."""
    if not report.warnings:
        return None

    lines = []
    for category in WarningCategory:
        entries = report.warnings_for(category)
        if not entries:
            continue
        lines.append(f"[bold]{category.value}[/bold]")
        for warning in entries:
            prefix = escape(f"[{warning.node}] ") if warning.node else ""
            lines.append(f"  • {prefix}{escape(warning.message)}")

    count = len(report.warnings)
    return Panel(
        "\n".join(lines),
        title=f"{count} warning{'s' if count != 1 else ''}",
        border_style="yellow",
        padding=(1, 2),
    )


def gc_failures_panel(report: RunReport) -> Panel | None:
    """GC re-enable failures need an operator; they get their own panel."""
    if not report.gc_failures:
        return None

    lines = ["Git GC is still disabled on these nodes. Re-enable it manually:", ""]
    for failure in report.gc_failures:
        lines.append(f"• {failure.node}: {escape(failure.error)}")
        lines.append(f"    {failure.remediation}")

    return Panel(
        "\n".join(lines),
        title="GC re-enable failed",
        border_style="red",
        padding=(1, 2),
    )


def display_run_report(console: Console, report: RunReport, verbose: bool = False) -> None:
    """Print the end-of-run summary: nodes, then warnings, then GC failures."""
    if report.skipped:
        console.print(f"[yellow]Skipped {report.operation}[/yellow]")
    else:
        if report.nodes:
            console.print(node_results_table(report, verbose=verbose))
        summary = f"{humanize.intcomma(report.network_count)} networks"
        if report.snapshot:
            summary += f", snapshot [cyan]{report.snapshot}[/cyan]"
        if report.finished:
            summary += f", {_format_duration((report.finished - report.started).total_seconds())}"
        console.print(summary)

    panel = warnings_panel(report)
    if panel is not None:
        console.print(panel)

    panel = gc_failures_panel(report)
    if panel is not None:
        console.print(panel)

    if not report.warnings and not report.gc_failures and not report.skipped:
        console.print(f"[green]✓[/green] {report.operation.capitalize()} completed")


def report_json(report: RunReport) -> str:
    """The report as JSON, wrapped for machine consumers."""
    json_str = orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2).decode()
    return f"<JSON-STDOUT>{json_str}</JSON-STDOUT>"
