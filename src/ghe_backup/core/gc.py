# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.04
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/gc.py

"""
Quiesce git garbage collection on storage nodes.

Storage nodes skip GC while ``repositories/.sync_in_progress`` exists.
Disabling touches that file and then waits (on the node) for GC processes that
were already running to finish; enabling removes it.
"""

import shlex

from loguru import logger

from ghe_backup.storage.ssh import SSHEndpoint
from ghe_backup.system.exceptions import CommandError, GCQuiesceError

GC_PROCESS_PATTERN = "git( |-)(gc|repack|pack-objects)"
GC_STILL_RUNNING_EXIT = 7


def disable_script(sentinel: str, cooldown: int) -> str:
    quoted = shlex.quote(sentinel)
    pattern = shlex.quote(GC_PROCESS_PATTERN)
    return (
        f"mkdir -p \"$(dirname {quoted})\" && touch {quoted} || exit 1\n"
        f"for i in $(seq {cooldown}); do\n"
        f"  pgrep -f {pattern} >/dev/null || exit 0\n"
        f"  sleep 1\n"
        f"done\n"
        f"pgrep -f {pattern} >/dev/null && exit {GC_STILL_RUNNING_EXIT}\n"
        f"exit 0\n"
    )


class GCQuiescer:
    """Turns GC off and on for individual nodes."""

    def __init__(self, sentinel: str, cooldown: int = 600) -> None:
        self.sentinel = sentinel
        self.cooldown = cooldown

    def disable(self, endpoint: SSHEndpoint) -> None:
        """Disable GC on one node and wait for running GC to drain.

        Raises:
            GCQuiesceError: The sentinel could not be written, or GC was still
                running after the cooldown period
        """
        logger.info(f"Disabling GC on {endpoint.host}")
        result = endpoint.run(
            ["sudo", "-u", "git", "bash", "-c", disable_script(self.sentinel, self.cooldown)],
            check=False,
        )
        if result.returncode == GC_STILL_RUNNING_EXIT:
            raise GCQuiesceError(
                f"Git GC processes remain on {endpoint.host} after {self.cooldown} seconds",
                node=endpoint.host,
            )
        if not result.success:
            raise GCQuiesceError(
                f"Disabling GC on {endpoint.host} failed: {result.stderr.strip() or result.returncode}",
                node=endpoint.host,
            )

    def enable(self, endpoint: SSHEndpoint) -> None:
        """Re-enable GC on one node.

        Raises:
            CommandError: The sentinel could not be removed
        """
        logger.info(f"Re-enabling GC on {endpoint.host}")
        try:
            endpoint.run(["sudo", "-u", "git", "rm", "-f", self.sentinel])
        except CommandError:
            logger.error(f"Failed to re-enable GC on {endpoint.host}")
            raise
