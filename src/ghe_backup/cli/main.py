# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.10
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/cli/main.py

"""
Command dispatcher for ghe-repo-backup.

- backup: snapshot the configured appliance's repository data
- restore HOST: push a snapshot's repository data to HOST
"""

# Standard library imports
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

# Third-party imports
import typer
from rich.console import Console

# Local imports
from ghe_backup.cli.utils import (
    handle_interrupt,
    handle_operation_error,
    install_signal_handlers,
    load_config_with_console,
)
from ghe_backup.core.backup import run_backup
from ghe_backup.core.restore import run_restore
from ghe_backup.core.results import RunReport
from ghe_backup.system.display import display_run_report, report_json
from ghe_backup.system.exceptions import GHEBackupError
from ghe_backup.system.logging_setup import setup_logging

app = typer.Typer(
    help="""ghe-repo-backup - Repository data backup for GitHub Enterprise appliances

[bold green]Commands:[/bold green] backup, restore
""",
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        try:
            pkg_version = version("ghe-repo-backup")
        except PackageNotFoundError as e:
            handle_operation_error(console, "retrieving version", e)
        console.print(f"ghe-repo-backup version {pkg_version}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """ghe-repo-backup - Repository data backup for GitHub Enterprise appliances."""
    pass


def _finish(report: RunReport, to_json: bool, verbose: bool) -> None:
    report.finish()
    if to_json:
        console.print(report_json(report), markup=False, highlight=False, soft_wrap=True)
    else:
        display_run_report(console, report, verbose=verbose)


@app.command()
def backup(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file to load after the defaults"),
    parallel: Optional[bool] = typer.Option(None, "--parallel/--no-parallel", help="Transfer nodes concurrently"),
    skip_route_verification: bool = typer.Option(
        False, "--skip-route-verification", help="Do not check the snapshot against the routes"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-pass detail and rsync output"),
    to_json: bool = typer.Option(False, "--json", help="Output results as JSON"),
) -> None:
    """[bold green]Backup[/bold green]: Snapshot the configured appliance's repositories."""
    setup_logging(debug=debug)
    config = load_config_with_console(
        console, config_path, verbose=verbose,
        parallel=parallel, skip_route_verification=skip_route_verification or None,
    )
    if config.local_log:
        setup_logging(debug=debug, local_log=config.local_log, name="backup")
    install_signal_handlers()

    report = RunReport("backup")
    try:
        run_backup(config, report=report, verbose=verbose)
    except KeyboardInterrupt:
        _finish(report, to_json, verbose)
        handle_interrupt(console, "backup", report)
    except GHEBackupError as e:
        _finish(report, to_json, verbose)
        handle_operation_error(console, "during backup", e)
    _finish(report, to_json, verbose)


@app.command()
def restore(
    host: str = typer.Argument(..., help="Target appliance, [user@]host[:port]"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file to load after the defaults"),
    snapshot: Optional[str] = typer.Option(None, "--snapshot", "-s", help="Snapshot to restore (default: current)"),
    skip_secrets: bool = typer.Option(False, "--skip-secrets", help="Do not restore secrets from the snapshot"),
    parallel: Optional[bool] = typer.Option(None, "--parallel/--no-parallel", help="Transfer nodes concurrently"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-pass detail and rsync output"),
    to_json: bool = typer.Option(False, "--json", help="Output results as JSON"),
) -> None:
    """[bold magenta]Restore[/bold magenta]: Push a snapshot's repositories to HOST."""
    setup_logging(debug=debug)
    config = load_config_with_console(
        console, config_path, verbose=verbose,
        hostname=host, parallel=parallel, restore_snapshot=snapshot,
    )
    if config.local_log:
        setup_logging(debug=debug, local_log=config.local_log, name="restore")
    install_signal_handlers()

    report = RunReport("restore")
    try:
        run_restore(config, host, skip_secrets=skip_secrets, report=report, verbose=verbose)
    except KeyboardInterrupt:
        _finish(report, to_json, verbose)
        handle_interrupt(console, "restore", report)
    except GHEBackupError as e:
        _finish(report, to_json, verbose)
        handle_operation_error(console, "during restore", e)
    _finish(report, to_json, verbose)


def cli_main() -> None:  # pragma: no cover - entry point
    """Entry point for the ghe-repo-backup CLI application."""
    app()


if __name__ == "__main__":  # pragma: no cover
    cli_main()
