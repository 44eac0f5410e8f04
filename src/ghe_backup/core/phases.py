# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/phases.py

"""
Transfer phases and their rsync filter rules.

A backup copies each node's repositories in four ordered passes:

    AUXILIARY          config, description, hooks, info/ ... (no refs/objects)
    PACKED_REFS        packed-refs only
    LOOSE_REFS_AND_LOGS refs/** and logs/** (loose refs override packed-refs)
    OBJECTS_AND_PACKS  objects/** minus in-progress tmp_* files, uncompressed

GC is disabled for the whole window, so objects are only ever added. Copying
refs before objects therefore guarantees every copied ref points at an object
that is present once the final pass completes.

Rules are rendered from one template per phase and applied to every
repository shape. rsync evaluates them in order, first match wins, and the
transfer always ends with a catch-all exclude.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from ghe_backup.core.layout import RepositoryShape


@dataclass(frozen=True)
class FilterRule:
    """One rsync include/exclude rule."""
    action: Literal["+", "-"]
    pattern: str

    def __str__(self) -> str:
        return f"{self.action} {self.pattern}"


def include(pattern: str) -> FilterRule:
    return FilterRule("+", pattern)


def exclude(pattern: str) -> FilterRule:
    return FilterRule("-", pattern)


def render_rules(rules: tuple[FilterRule, ...]) -> str:
    """Render rules as the text fed to ``--include-from=-``."""
    return "".join(f"{rule}\n" for rule in rules)


class TransferPhase(Enum):
    """Backup transfer passes, in execution order."""
    AUXILIARY = "auxiliary"
    PACKED_REFS = "packed-refs"
    LOOSE_REFS_AND_LOGS = "loose-refs-and-logs"
    OBJECTS_AND_PACKS = "objects-and-packs"

    @property
    def compress(self) -> bool:
        # Object and pack data is already zlib-compressed
        return self is not TransferPhase.OBJECTS_AND_PACKS

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    TransferPhase.AUXILIARY: "auxiliary repository files",
    TransferPhase.PACKED_REFS: "packed refs",
    TransferPhase.LOOSE_REFS_AND_LOGS: "loose refs and reflogs",
    TransferPhase.OBJECTS_AND_PACKS: "objects and pack files",
}

PHASE_ORDER: tuple[TransferPhase, ...] = (
    TransferPhase.AUXILIARY,
    TransferPhase.PACKED_REFS,
    TransferPhase.LOOSE_REFS_AND_LOGS,
    TransferPhase.OBJECTS_AND_PACKS,
)

# Never part of a sharded repository transfer; handled by the special-directory sync
NON_SHARDED_EXCLUDES: tuple[FilterRule, ...] = (
    exclude("/__*__/"),
    exclude("/info/"),
)

REF_AND_OBJECT_DIRS = ("objects", "refs", "packed-refs", "logs")


def _repo_rules(phase: TransferPhase, repo: str) -> list[FilterRule]:
    """Rules for the contents of one shape's ``.git`` directories."""
    if phase is TransferPhase.AUXILIARY:
        return [exclude(f"{repo}/{name}") for name in REF_AND_OBJECT_DIRS] + [include(f"{repo}/**")]
    if phase is TransferPhase.PACKED_REFS:
        return [include(f"{repo}/packed-refs")]
    if phase is TransferPhase.LOOSE_REFS_AND_LOGS:
        return [
            include(f"{repo}/refs/"),
            include(f"{repo}/refs/**"),
            include(f"{repo}/logs/"),
            include(f"{repo}/logs/**"),
        ]
    return [
        include(f"{repo}/objects/"),
        exclude(f"{repo}/objects/**/tmp_*"),
        include(f"{repo}/objects/**"),
    ]


def shape_rules(phase: TransferPhase, shape: RepositoryShape) -> list[FilterRule]:
    """Rules selecting one phase's files for one repository shape."""
    rules = [include(pattern) for pattern in shape.parent_dirs()]
    rules.append(include(shape.repo_glob))
    rules.extend(_repo_rules(phase, shape.repo_glob))
    return rules


def phase_rules(phase: TransferPhase) -> tuple[FilterRule, ...]:
    """Complete ordered rule list for a phase, across all repository shapes.

    Duplicate rules (the shapes share their leading directories) keep their
    first position so the first-match-wins order is unchanged.
    """
    rules: list[FilterRule] = list(NON_SHARDED_EXCLUDES)
    seen = set(rules)
    for shape in RepositoryShape:
        for rule in shape_rules(phase, shape):
            if rule not in seen:
                seen.add(rule)
                rules.append(rule)
    rules.append(exclude("*"))
    return tuple(rules)


# Host-wide directories; nodeload archives are a regenerable cache
SPECIAL_DIRECTORY_RULES: tuple[FilterRule, ...] = (
    exclude("/__nodeload_archives__/"),
    include("/__*__/"),
    include("/__*__/**"),
    include("/info/"),
    exclude("/info/lost+found/"),
    include("/info/**"),
    exclude("*"),
)
