# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.08
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/finalize.py

"""
Tell the cluster metadata service which networks a restore put where.

Entries are ``<node-id> <full-network-path>`` lines, submitted in fixed-size
batches over a bounded worker pool. A batch that fails appends to a warnings
file in the run's remote temp dir; the file is read once all batches are done.
"""

import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable

from loguru import logger

from ghe_backup.core.results import RunReport, WarningCategory
from ghe_backup.storage.ssh import SSHEndpoint

FINALIZE_CMD = ["github-env", "./bin/dgit-cluster-restore-finalize"]
WARNINGS_FILE = "finalize-warnings"


def finalize_entries(assignments: dict[str, list[str]], remote_repositories_dir: str) -> list[str]:
    """One entry per restored network path, ordered by node then path."""
    base = remote_repositories_dir.rstrip("/")
    return [
        f"{node} {base}/{path}"
        for node in sorted(assignments)
        for path in sorted(assignments[node])
    ]


def batch_script(warnings_file: str, batch_number: int) -> str:
    quoted = shlex.quote(warnings_file)
    return (
        f"{shlex.join(FINALIZE_CMD)} 2>>{quoted} "
        f"|| echo 'finalize batch {batch_number} failed' >>{quoted}"
    )


class Finalizer:
    """Submits finalize batches to the appliance."""

    def __init__(self, endpoint: SSHEndpoint, remote_tempdir: str, report: RunReport,
                 batch_size: int = 1000, workers: int = 10) -> None:
        self.endpoint = endpoint
        self.warnings_file = f"{remote_tempdir.rstrip('/')}/{WARNINGS_FILE}"
        self.report = report
        self.batch_size = batch_size
        self.workers = workers

    def batches(self, entries: Iterable[str]) -> list[list[str]]:
        entries = list(entries)
        return [entries[i:i + self.batch_size] for i in range(0, len(entries), self.batch_size)]

    def _submit(self, number: int, batch: list[str]) -> None:
        logger.debug(f"Submitting finalize batch {number} ({len(batch)} entries)")
        # Remote failures land in the warnings file; only ssh-level failures show here
        result = self.endpoint.run(
            ["bash", "-c", batch_script(self.warnings_file, number)],
            check=False,
            input="".join(f"{entry}\n" for entry in batch),
        )
        if not result.success:
            self.report.warn(
                WarningCategory.FINALIZE,
                f"Finalize batch {number} could not be submitted: {result.stderr.strip() or result.returncode}",
            )

    def run(self, entries: Iterable[str]) -> int:
        """Submit all entries; returns the number of batches sent."""
        batches = self.batches(entries)
        if not batches:
            return 0
        workers = min(self.workers, len(batches))
        logger.info(f"Finalizing {sum(len(b) for b in batches)} networks in {len(batches)} batch(es)")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="finalize") as executor:
            futures = {
                executor.submit(self._submit, number, batch): number
                for number, batch in enumerate(batches, start=1)
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except (OSError, subprocess.SubprocessError) as e:
                    self.report.warn(WarningCategory.FINALIZE, f"Finalize batch {futures[future]} failed: {e}")
        self.collect_warnings()
        return len(batches)

    def collect_warnings(self) -> list[str]:
        """Read the batch warnings file and add each line to the report."""
        try:
            result = self.endpoint.run(["cat", self.warnings_file], check=False)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Could not read finalize warnings: {e}")
            return []
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()] if result.success else []
        for line in lines:
            self.report.warn(WarningCategory.FINALIZE, line)
        return lines
