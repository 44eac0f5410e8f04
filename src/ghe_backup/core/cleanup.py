# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.05
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/cleanup.py

"""
Scoped cleanup for a backup or restore run.

Usage as context manager:
    with CleanupGuard(quiescer, endpoints, registry, report) as guard:
        workdir = guard.make_local_tempdir()
        guard.disable_gc(nodes)
        ...  # transfers

On every exit path (normal return, fatal error, KeyboardInterrupt) the guard
terminates in-flight transfers, re-enables GC on every node it disabled, and
removes the temporary directories it created. Release runs once.
"""

import shutil
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from ghe_backup.core.gc import GCQuiescer
from ghe_backup.core.results import GCReenableFailure, RunReport
from ghe_backup.storage.ssh import NodeEndpoints, SSHEndpoint
from ghe_backup.system.exceptions import CommandError
from ghe_backup.system.execution import ProcessRegistry

TEMP_PREFIX = "ghe-backup-"


class CleanupGuard:
    """Owns the GC toggles and temporary resources of one run."""

    def __init__(self, quiescer: GCQuiescer, endpoints: NodeEndpoints,
                 registry: ProcessRegistry, report: RunReport) -> None:
        self.quiescer = quiescer
        self.endpoints = endpoints
        self.registry = registry
        self.report = report
        self._gc_nodes: list[str] = []
        self._local_dirs: list[Path] = []
        self._remote_dirs: list[tuple[SSHEndpoint, str]] = []
        self._released = False

    def __enter__(self) -> "CleanupGuard":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is KeyboardInterrupt:
            logger.warning("Interrupted; cleaning up before exit")
        self.release()

    def make_local_tempdir(self) -> Path:
        path = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
        self._local_dirs.append(path)
        logger.debug(f"Created local temp dir {path}")
        return path

    def make_remote_tempdir(self, endpoint: SSHEndpoint) -> str:
        result = endpoint.run(["mktemp", "-d", "-t", f"{TEMP_PREFIX}XXXXXX"])
        path = result.stdout.strip()
        self._remote_dirs.append((endpoint, path))
        logger.debug(f"Created remote temp dir {endpoint.host}:{path}")
        return path

    def disable_gc(self, nodes: list[str]) -> None:
        """Disable GC on each node in order.

        A node is registered for re-enable before the attempt, since the
        sentinel may exist even when the wait for running GC fails.

        Raises:
            GCQuiesceError: From the first node that could not be quiesced
        """
        for node in nodes:
            if node in self._gc_nodes:
                continue
            self._gc_nodes.append(node)
            self.quiescer.disable(self.endpoints.for_node(node))

    def release(self) -> None:
        """Run cleanup once, with SIGINT and SIGTERM ignored until it finishes.

        An interrupt raised while re-enabling GC on a node is recorded as a
        failure for that node; the remaining nodes and the temp dirs are still
        handled before the interrupt is re-raised.
        """
        if self._released:
            return
        self._released = True

        saved_handlers = _ignore_interrupts()
        interrupt: Optional[BaseException] = None
        try:
            terminated = self.registry.terminate_all()
            if terminated:
                logger.warning(f"Terminated {terminated} in-flight transfer(s)")

            for node in self._gc_nodes:
                try:
                    self.quiescer.enable(self.endpoints.for_node(node))
                except (CommandError, OSError, subprocess.SubprocessError) as e:
                    self._gc_failed(node, str(e))
                except (KeyboardInterrupt, SystemExit) as e:
                    self._gc_failed(node, f"interrupted: {e!r}")
                    interrupt = interrupt or e

            self._remove_tempdirs()
        finally:
            _restore_handlers(saved_handlers)

        if interrupt is not None:
            raise interrupt

    def _gc_failed(self, node: str, error: str) -> None:
        self.report.add_gc_failure(GCReenableFailure(node=node, sentinel=self.quiescer.sentinel, error=error))

    def _remove_tempdirs(self) -> None:
        for endpoint, path in self._remote_dirs:
            try:
                result = endpoint.run(["rm", "-rf", path], check=False)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning(f"Failed to remove remote temp dir {endpoint.host}:{path}: {e}")
                continue
            if not result.success:
                logger.warning(f"Failed to remove remote temp dir {endpoint.host}:{path}: {result.stderr.strip()}")

        for path in self._local_dirs:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"Removed local temp dir {path}")


def _ignore_interrupts() -> dict:
    # signal.signal only works from the main thread
    if threading.current_thread() is not threading.main_thread():
        return {}
    saved = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        saved[signum] = signal.getsignal(signum)
        signal.signal(signum, signal.SIG_IGN)
    return saved


def _restore_handlers(saved: dict) -> None:
    for signum, handler in saved.items():
        # None means the handler was not installed from Python
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
