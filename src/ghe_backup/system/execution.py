# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.02
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/system/execution.py

"""
Command execution for local and remote (ssh) commands.

CommandExecutor covers the short request/response commands (probes, route
queries, GC toggles). ProcessRegistry runs the long transfer subprocesses and
remembers which ones are still alive so an interrupt can terminate them.
"""

import shlex
import subprocess
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from ghe_backup.system.exceptions import CommandError


@dataclass
class CommandResult:
    """Result of a command execution."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor:
    """Runs commands locally or over ssh and wraps the result."""

    @staticmethod
    def run_local(
        cmd: Sequence[str],
        timeout: Optional[int] = None,
        check: bool = True,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a local command.

        Args:
            cmd: Command and arguments
            timeout: Seconds before subprocess.TimeoutExpired is raised
            check: Raise CommandError on a non-zero exit
            input: Text fed to the command's stdin

        Returns:
            CommandResult with captured output
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        result = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
        if check and result.returncode != 0:
            message = result.stderr.strip() or f"Command failed with exit code {result.returncode}"
            raise CommandError(
                f"Local command failed: {message}",
                cmd=list(cmd), returncode=result.returncode, stderr=result.stderr,
            )
        return CommandResult(result.returncode, result.stdout, result.stderr)

    @staticmethod
    def run_ssh(
        host: str,
        cmd: Sequence[str],
        ssh_args: Sequence[str] = (),
        timeout: Optional[int] = None,
        check: bool = True,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a command on a remote host over ssh.

        The remote command is quoted into a single argument because the remote
        shell re-parses whatever ssh hands it.
        """
        ssh_cmd = ["ssh", *ssh_args, host, "--", shlex.join(cmd)]
        logger.debug(f"Running on {host}: {' '.join(cmd)}")
        result = subprocess.run(
            ssh_cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
        if check and result.returncode != 0:
            message = result.stderr.strip() or f"exit code {result.returncode}"
            raise CommandError(
                f"SSH command failed on {host}: {message}",
                cmd=ssh_cmd, returncode=result.returncode, stderr=result.stderr,
            )
        return CommandResult(result.returncode, result.stdout, result.stderr)


class ProcessRegistry:
    """Tracks live transfer subprocesses so they can be terminated together.

    Usage:
        registry = ProcessRegistry()
        result = registry.run(["rsync", ...], input=rules)
        ...
        registry.terminate_all()   # on interrupt
    """

    def __init__(self) -> None:
        self._procs: set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._closed = False

    def run(self, cmd: Sequence[str], input: Optional[str] = None, verbose: bool = False) -> CommandResult:
        """Run cmd to completion and return its result without raising on exit code.

        With verbose=True stdout is passed through to the terminal instead of
        captured; stderr is always captured for error reporting.
        """
        with self._lock:
            if self._closed:
                raise CommandError("process registry is closed; not starting new commands", cmd=list(cmd))
            proc = subprocess.Popen(
                list(cmd),
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=None if verbose else subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
            self._procs.add(proc)
        try:
            stdout, stderr = proc.communicate(input=input)
        finally:
            with self._lock:
                self._procs.discard(proc)
        return CommandResult(proc.returncode, stdout or "", stderr or "")

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._procs)

    def terminate_all(self) -> int:
        """Terminate every live subprocess and refuse to start new ones.

        Returns:
            Number of processes signalled
        """
        with self._lock:
            self._closed = True
            procs = list(self._procs)
        for proc in procs:
            if proc.poll() is None:
                logger.debug(f"Terminating transfer process {proc.pid}")
                proc.terminate()
        return len(procs)
