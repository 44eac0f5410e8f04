# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.10
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/cli/utils.py

"""
CLI helpers shared by the backup and restore commands.

All functions handle console output and typer exits consistently:
- configuration problems and fatal setup errors exit 1
- an interrupt exits 130 after cleanup has run
"""

import signal
from pathlib import Path
from typing import Any, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape

from ghe_backup.config.manager import BackupConfig
from ghe_backup.core.results import RunReport
from ghe_backup.system.exceptions import ConfigError

EXIT_INTERRUPTED = 130


def load_config_with_console(console: Console, config_path: Optional[Path] = None,
                             verbose: bool = False, **overrides: Any) -> BackupConfig:
    """
    Load configuration with proper error handling and console output.

    Args:
        console: Rich console for output
        config_path: Explicit config file from --config
        verbose: Show loading message if True
        **overrides: Command-line values; None means "not given"

    Returns:
        Loaded configuration object

    Raises:
        typer.Exit: If configuration loading fails
    """
    if verbose:
        console.print("[dim]Loading configuration...[/dim]")

    try:
        return BackupConfig.load(config_path, **overrides)
    except ConfigError as e:
        handle_config_error(console, str(e))


def handle_config_error(console: Console, error_message: str) -> None:
    """Handle configuration errors with consistent formatting."""
    console.print(f"[red]✗[/red] Configuration error: {error_message}")
    raise typer.Exit(1)


def handle_operation_error(console: Console, operation: str, error: Exception) -> None:
    """Handle operation errors with consistent formatting."""
    logger.opt(exception=error).debug(f"{operation} failed")
    console.print(f"[red]✗[/red] Error {operation}: {error}")
    raise typer.Exit(1)


def handle_interrupt(console: Console, operation: str, report: RunReport) -> None:
    """Report the interrupt and exit 130; GC re-enable failures are listed by the run report."""
    if report.gc_failures:
        nodes = ", ".join(failure.node for failure in report.gc_failures)
        console.print(f"[red]Interrupted during {operation}; GC re-enable failed on {escape(nodes)}[/red]")
    else:
        console.print(f"[yellow]Interrupted during {operation}; GC re-enabled and temp files removed[/yellow]")
    raise typer.Exit(EXIT_INTERRUPTED)


def _raise_keyboard_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"signal {signum}")


def install_signal_handlers() -> None:
    """Route SIGTERM through the same cleanup path as Ctrl-C."""
    signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)
