# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/layout.py

"""
On-disk layout of the appliance's repository storage.

Repositories live under ``<data>/repositories`` in one of three shapes:

    PLAIN     a/repo.git                      (top-level repository)
    GIST      a/1b/2c/3d/gist/<name>.git      (gists, sharded by hash prefix)
    NETWORK   a/nw/1b/2c/3d/<id>/<repo>.git   (a repository and its forks)

A network path names the unit the routing authority places on storage nodes:
the ``<id>`` directory for networks, the ``.git`` directory itself for gists
and plain repositories.
"""

import fnmatch
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from loguru import logger


class RepositoryShape(Enum):
    """Repository shapes, each described by the directories leading to its repos."""
    PLAIN = ("*",)
    GIST = ("*", "??", "??", "??", "gist")
    NETWORK = ("*", "nw", "??", "??", "??", "*")

    @property
    def parents(self) -> tuple[str, ...]:
        return self.value

    @property
    def repo_glob(self) -> str:
        """Anchored rsync/fnmatch pattern for the shape's ``.git`` directories."""
        return "/" + "/".join(self.parents) + "/*.git"

    def parent_dirs(self) -> list[str]:
        """Anchored patterns for every directory between the root and the repos."""
        return ["/" + "/".join(self.parents[:depth]) + "/" for depth in range(1, len(self.parents) + 1)]


@dataclass(frozen=True)
class Layout:
    """Discovery rules for one generation of the storage layout."""
    name: str
    patterns: tuple[tuple[RepositoryShape, tuple[str, ...]], ...]
    max_depth: int

    def classify(self, rel_git_dir: str) -> Optional[RepositoryShape]:
        """Match a relative .git path segment by segment against each shape."""
        parts = PurePosixPath(rel_git_dir).parts
        for shape, parents in self.patterns:
            pattern = parents + ("*.git",)
            if len(parts) == len(pattern) and all(
                fnmatch.fnmatchcase(part, glob) for part, glob in zip(parts, pattern)
            ):
                return shape
        return None


CURRENT_LAYOUT = Layout(
    name="current",
    patterns=(
        (RepositoryShape.NETWORK, RepositoryShape.NETWORK.parents),
        (RepositoryShape.GIST, RepositoryShape.GIST.parents),
        (RepositoryShape.PLAIN, RepositoryShape.PLAIN.parents),
    ),
    max_depth=7,
)


def network_path_for(rel_git_dir: str, shape: RepositoryShape) -> str:
    """Map a repository's ``.git`` directory to its network path."""
    if shape is RepositoryShape.NETWORK:
        return str(PurePosixPath(rel_git_dir).parent)
    return rel_git_dir


def is_special_dir(name: str) -> bool:
    """Host-wide directories (``__purgatory__``, ``info``...) are not sharded."""
    return name == "info" or (name.startswith("__") and name.endswith("__"))


def iter_git_dirs(root: Path, max_depth: int) -> Iterator[str]:
    """Yield ``.git`` directories under root as relative posix paths.

    Does not descend into ``.git`` directories, special directories or below
    max_depth.
    """
    root = Path(root)
    for dirpath, dirnames, _ in os.walk(root):
        rel = Path(dirpath).relative_to(root)
        depth = 0 if rel == Path(".") else len(rel.parts)
        if depth == 0:
            dirnames[:] = [d for d in dirnames if not is_special_dir(d)]
        found = sorted(d for d in dirnames if d.endswith(".git"))
        for name in found:
            yield (rel / name).as_posix() if depth else name
        if depth + 1 >= max_depth:
            dirnames[:] = []
        else:
            dirnames[:] = sorted(d for d in dirnames if not d.endswith(".git"))


def discover_network_paths(root: Path) -> list[str]:
    """Scan a repositories tree for the network paths it holds.

    Args:
        root: The ``repositories`` directory of a snapshot

    Returns:
        Sorted, de-duplicated network paths
    """
    layout = CURRENT_LAYOUT
    found: set[str] = set()
    skipped = 0
    if not Path(root).is_dir():
        return []
    for rel_git_dir in iter_git_dirs(root, layout.max_depth):
        shape = layout.classify(rel_git_dir)
        if shape is None:
            skipped += 1
            continue
        found.add(network_path_for(rel_git_dir, shape))
    if skipped:
        logger.debug(f"Ignored {skipped} repositories outside the {layout.name} layout under {root}")
    return sorted(found)
