# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/storage/rsync.py

"""
rsync transport for repository data.

Each transfer is described by a TransferTask; RsyncTransport turns a task into
an rsync command line and runs it through a ProcessRegistry. Building and
running are separate so task construction can be tested without rsync.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from ghe_backup.core.phases import FilterRule, TransferPhase, render_rules
from ghe_backup.storage.ssh import SSHEndpoint
from ghe_backup.system.exceptions import TransferError
from ghe_backup.system.execution import CommandResult, ProcessRegistry

# Runs rsync on the appliance side as the git user
REMOTE_RSYNC_PATH = "sudo -u git rsync"

# "Partial transfer due to vanished source files"
RSYNC_VANISHED_FILES = 24


@dataclass(frozen=True)
class TransferTask:
    """One rsync invocation.

    Attributes:
        node: Storage node the task belongs to
        label: Human-readable name for logs and warnings
        endpoint: SSH endpoint of the remote side
        source: rsync source argument
        destination: rsync destination argument
        rules: Ordered include/exclude rules (first match wins); empty for none
        phase: Backup phase, None for restore and special-directory passes
        files_from: Optional list of paths, relative to source, to transfer
        compress: Compress data in transit
        mirror: Delete destination files missing from the source
        link_dest: Previous snapshot to hard-link unchanged files from
    """
    node: str
    label: str
    endpoint: SSHEndpoint
    source: str
    destination: str
    rules: tuple[FilterRule, ...] = field(default_factory=tuple)
    phase: Optional[TransferPhase] = None
    files_from: Optional[Path] = None
    compress: bool = True
    mirror: bool = False
    link_dest: Optional[Path] = None


def write_file_list(paths: Iterable[str], destination: Path) -> Path:
    """Write a ``--files-from`` list that lives as long as the run's temp dir."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8") as f:
        for path in paths:
            f.write(f"{path}\n")
    return destination


class RsyncTransport:
    """Builds and runs rsync commands for transfer tasks."""

    def __init__(self, registry: ProcessRegistry, verbose: bool = False,
                 rsync_path: str = REMOTE_RSYNC_PATH) -> None:
        self.registry = registry
        self.verbose = verbose
        self.rsync_path = rsync_path

    def build_command(self, task: TransferTask) -> tuple[list[str], Optional[str]]:
        """Build the rsync argv and stdin text for a task.

        Returns:
            (argv, stdin) where stdin carries the filter rules, or None
        """
        cmd = ["rsync", "-a", "-H", "--numeric-ids"]
        if self.verbose:
            cmd.append("-v")
        if task.compress:
            cmd.append("-z")
        if task.mirror:
            cmd.append("--delete")
        cmd += ["-e", task.endpoint.rsync_shell(), f"--rsync-path={self.rsync_path}"]
        if task.link_dest is not None:
            cmd.append(f"--link-dest={task.link_dest}")
        if task.files_from is not None:
            # -a does not imply -r with --files-from
            cmd += ["-r", f"--files-from={task.files_from}", "--ignore-missing-args"]

        stdin = None
        if task.rules:
            cmd += ["--include-from=-", "--exclude=*"]
            stdin = render_rules(task.rules)

        cmd += [task.source, task.destination]
        return cmd, stdin

    def run(self, task: TransferTask) -> CommandResult:
        """Run a task.

        Raises:
            TransferError: rsync exited non-zero (other than vanished files)
            FileNotFoundError: rsync is not installed
        """
        cmd, stdin = self.build_command(task)
        logger.debug(f"[{task.node}] rsync {task.label}: {' '.join(cmd)}")
        result = self.registry.run(cmd, input=stdin, verbose=self.verbose)

        if result.returncode == RSYNC_VANISHED_FILES:
            logger.info(f"[{task.node}] {task.label}: some files vanished during transfer")
            return CommandResult(0, result.stdout, result.stderr)
        if not result.success:
            message = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else "no error output"
            raise TransferError(
                f"rsync {task.label} failed on {task.node} (exit {result.returncode}): {message}",
                node=task.node,
                phase=task.phase.value if task.phase else None,
                returncode=result.returncode,
            )
        return result
