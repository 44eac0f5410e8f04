# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.04
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/storage/snapshots.py

"""Snapshot directories under the local data dir.

    <data_dir>/
        20250704T101500/
            version          appliance version the snapshot came from
            incomplete       present until the run finishes
            repositories/    mirrors <remote_data_dir>/repositories
        current -> 20250704T101500
"""

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from ghe_backup.storage.appliance import parse_version
from ghe_backup.system.exceptions import SnapshotError

CURRENT_LINK = "current"
INCOMPLETE_MARKER = "incomplete"
VERSION_FILE = "version"
REPOSITORIES_DIR = "repositories"
SNAPSHOT_FORMAT = "%Y%m%dT%H%M%S"


@dataclass(frozen=True)
class Snapshot:
    """One snapshot directory."""
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def repositories(self) -> Path:
        return self.path / REPOSITORIES_DIR

    @property
    def is_complete(self) -> bool:
        return self.path.is_dir() and not (self.path / INCOMPLETE_MARKER).exists()

    @property
    def version(self) -> Optional[tuple[int, int, int]]:
        version_file = self.path / VERSION_FILE
        if not version_file.exists():
            return None
        return parse_version(version_file.read_text(encoding="utf-8"))


class SnapshotStore:
    """Creates, resolves and promotes snapshots in a data dir."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir).absolute()

    def current(self) -> Optional[Snapshot]:
        """The last complete snapshot, if any."""
        link = self.data_dir / CURRENT_LINK
        if not link.exists():
            return None
        snapshot = Snapshot(link.resolve())
        return snapshot if snapshot.is_complete else None

    def create(self, version: str, now: Optional[datetime] = None) -> Snapshot:
        """Create a fresh, incomplete snapshot directory."""
        name = (now or datetime.now()).strftime(SNAPSHOT_FORMAT)
        path = self.data_dir / name
        if path.exists():
            raise SnapshotError(f"Snapshot directory {path} already exists")
        (path / REPOSITORIES_DIR).mkdir(parents=True)
        (path / INCOMPLETE_MARKER).touch()
        (path / VERSION_FILE).write_text(f"{version}\n", encoding="utf-8")
        logger.info(f"Created snapshot {path}")
        return Snapshot(path)

    def mark_complete(self, snapshot: Snapshot) -> None:
        """Clear the incomplete marker and point ``current`` at the snapshot."""
        (snapshot.path / INCOMPLETE_MARKER).unlink(missing_ok=True)
        link = self.data_dir / CURRENT_LINK
        tmp_link = self.data_dir / f".{CURRENT_LINK}.tmp"
        tmp_link.unlink(missing_ok=True)
        tmp_link.symlink_to(snapshot.name)
        os.replace(tmp_link, link)
        logger.info(f"Snapshot {snapshot.name} is now current")

    def resolve(self, selector: str = CURRENT_LINK) -> Snapshot:
        """Find a complete snapshot by name, or the current one.

        Raises:
            SnapshotError: Snapshot missing or incomplete
        """
        if selector == CURRENT_LINK:
            snapshot = self.current()
            if snapshot is None:
                raise SnapshotError(f"No complete snapshot found in {self.data_dir}")
            return snapshot

        snapshot = Snapshot(self.data_dir / selector)
        if not snapshot.path.is_dir():
            raise SnapshotError(f"Snapshot {selector} not found in {self.data_dir}")
        if not snapshot.is_complete:
            raise SnapshotError(f"Snapshot {selector} is incomplete and cannot be restored")
        return snapshot
