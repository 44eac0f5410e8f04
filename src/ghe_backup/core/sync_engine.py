# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.05
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/sync_engine.py

"""
Per-node transfer pipelines and the executor that fans them out.

PhasedSyncEngine turns a node's file list into ordered TransferTasks and runs
them one after another. A failed pass stops that node's pipeline and is
recorded on its NodeResult; it never touches other nodes. FanOutExecutor runs
one pipeline per node, concurrently or in sorted order, and returns only when
all of them have finished.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from ghe_backup.core.phases import PHASE_ORDER, phase_rules
from ghe_backup.core.results import NodeResult, PhaseResult
from ghe_backup.storage.rsync import RsyncTransport, TransferTask
from ghe_backup.storage.ssh import NodeEndpoints
from ghe_backup.system.exceptions import ToolMissingError, TransferError
from ghe_backup.system.execution import ProcessRegistry


class PhasedSyncEngine:
    """Builds and runs the transfer passes for one node at a time."""

    def __init__(self, transport: RsyncTransport, endpoints: NodeEndpoints,
                 remote_repositories_dir: str, clock: Callable[[], datetime] = datetime.now) -> None:
        self.transport = transport
        self.endpoints = endpoints
        self.remote_repositories_dir = remote_repositories_dir.rstrip("/")
        self.clock = clock

    def _remote(self, node: str) -> str:
        return f"{self.endpoints.for_node(node).host}:{self.remote_repositories_dir}/"

    def backup_tasks(self, node: str, file_list: Path, destination: Path,
                     link_dest: Optional[Path] = None) -> list[TransferTask]:
        """The four ordered backup passes for one node.

        Backup passes are additive: nothing is deleted from the destination.
        """
        endpoint = self.endpoints.for_node(node)
        return [
            TransferTask(
                node=node,
                label=phase.description,
                endpoint=endpoint,
                source=self._remote(node),
                destination=f"{destination}/",
                rules=phase_rules(phase),
                phase=phase,
                files_from=file_list,
                compress=phase.compress,
                mirror=False,
                link_dest=link_dest,
            )
            for phase in PHASE_ORDER
        ]

    def restore_tasks(self, node: str, file_list: Path, snapshot_repositories: Path) -> list[TransferTask]:
        """A single mirroring pass that reproduces the snapshot on the node."""
        return [
            TransferTask(
                node=node,
                label="repository data",
                endpoint=self.endpoints.for_node(node),
                source=f"{snapshot_repositories}/",
                destination=self._remote(node),
                files_from=file_list,
                compress=True,
                mirror=True,
            )
        ]

    def run_tasks(self, node: str, tasks: list[TransferTask], network_count: int = 0) -> NodeResult:
        """Run a node's tasks strictly in order, stopping at the first failure.

        Raises:
            ToolMissingError: rsync disappeared mid-run (fatal)
        """
        result = NodeResult(node=node, network_count=network_count)
        for task in tasks:
            phase = PhaseResult(
                node=node,
                phase=task.phase.value if task.phase else task.label,
                started=self.clock(),
            )
            result.phases.append(phase)
            logger.info(f"[{node}] transferring {task.label}")
            try:
                self.transport.run(task)
            except TransferError as e:
                phase.finished = self.clock()
                phase.ok = False
                phase.error = str(e)
                logger.warning(f"[{node}] {e}; skipping remaining passes for this node")
                break
            except FileNotFoundError as e:
                raise ToolMissingError("rsync") from e
            phase.finished = self.clock()
            logger.debug(f"[{node}] {task.label} done in {phase.duration:.1f}s")
        return result


class FanOutExecutor:
    """Runs one pipeline per node and waits for all of them."""

    def __init__(self, registry: ProcessRegistry, parallel: bool = True,
                 max_workers: Optional[int] = None) -> None:
        self.registry = registry
        self.parallel = parallel
        self.max_workers = max_workers

    def run(self, nodes: list[str], pipeline: Callable[[str], NodeResult]) -> dict[str, NodeResult]:
        """Run pipeline(node) for every node.

        Errors escaping a pipeline are fatal: in-flight transfers are
        terminated, queued nodes are cancelled and the error propagates.
        """
        ordered = sorted(nodes)
        if not self.parallel or len(ordered) <= 1:
            return {node: pipeline(node) for node in ordered}

        workers = min(len(ordered), self.max_workers or len(ordered))
        logger.debug(f"Fanning out {len(ordered)} node pipelines over {workers} workers")
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="node")
        results: dict[str, NodeResult] = {}
        try:
            future_to_node = {executor.submit(pipeline, node): node for node in ordered}
            for future in as_completed(future_to_node):
                results[future_to_node[future]] = future.result()
        except BaseException:
            self.registry.terminate_all()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return {node: results[node] for node in ordered}
