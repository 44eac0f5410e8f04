# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.06
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/special_dirs.py

"""
Host-wide repository directories (``__purgatory__``, ``__special__``,
``info``...) that are not sharded by network. They are synced once per host,
one host at a time, after every node pipeline has finished.
"""

from pathlib import Path
from typing import Optional

from loguru import logger

from ghe_backup.core.phases import SPECIAL_DIRECTORY_RULES
from ghe_backup.core.results import NodeResult
from ghe_backup.core.sync_engine import PhasedSyncEngine
from ghe_backup.storage.rsync import TransferTask

SPECIAL_PASS = "special-directories"


class SpecialDirectorySyncer:
    """Serial per-host transfer of the non-sharded directories."""

    def __init__(self, engine: PhasedSyncEngine) -> None:
        self.engine = engine

    def _task(self, host: str, local_repositories: Path, restore: bool,
              link_dest: Optional[Path]) -> TransferTask:
        endpoint = self.engine.endpoints.for_node(host)
        remote = f"{endpoint.host}:{self.engine.remote_repositories_dir}/"
        local = f"{local_repositories}/"
        return TransferTask(
            node=host,
            label=SPECIAL_PASS,
            endpoint=endpoint,
            source=local if restore else remote,
            destination=remote if restore else local,
            rules=SPECIAL_DIRECTORY_RULES,
            compress=True,
            mirror=restore,
            link_dest=None if restore else link_dest,
        )

    def sync(self, hosts: list[str], local_repositories: Path, restore: bool = False,
             link_dest: Optional[Path] = None) -> list[NodeResult]:
        """Sync special directories for each host, in sorted order.

        Returns:
            One NodeResult per host; failures are recorded, not raised
        """
        results = []
        for host in sorted(hosts):
            logger.info(f"[{host}] syncing special directories")
            task = self._task(host, local_repositories, restore, link_dest)
            results.append(self.engine.run_tasks(host, [task]))
        return results
