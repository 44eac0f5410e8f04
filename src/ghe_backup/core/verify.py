# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/verify.py

"""
Post-backup check that every routed network made it into the snapshot.

Expected: the union of the per-node file lists used for the run.
Actual:   the network paths found by scanning the snapshot's repositories.
Anything expected but not found becomes a warning; the run is never aborted.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from loguru import logger

from ghe_backup.core.layout import CURRENT_LAYOUT, RepositoryShape, discover_network_paths
from ghe_backup.core.results import RunReport, WarningCategory
from ghe_backup.core.routes import TransferPlan


@dataclass
class VerificationResult:
    expected: int = 0
    found: int = 0
    missing_networks: list[str] = field(default_factory=list)
    missing_gists: list[str] = field(default_factory=list)
    missing_repositories: list[str] = field(default_factory=list)

    @property
    def missing(self) -> list[str]:
        return sorted(self.missing_networks + self.missing_gists + self.missing_repositories)

    @property
    def ok(self) -> bool:
        return not self.missing


def _shape_of(network_path: str) -> RepositoryShape:
    if network_path.endswith(".git"):
        shape = CURRENT_LAYOUT.classify(network_path)
        return shape or RepositoryShape.PLAIN
    return RepositoryShape.NETWORK


class RouteVerifier:
    """Diffs routed networks against what landed in the snapshot."""

    def __init__(self, report: RunReport) -> None:
        self.report = report

    def verify(self, expected_paths: Iterable[str], repositories: Path) -> VerificationResult:
        expected = set(expected_paths)
        actual = set(discover_network_paths(repositories))
        result = VerificationResult(expected=len(expected), found=len(expected & actual))

        for path in sorted(expected - actual):
            shape = _shape_of(path)
            if shape is RepositoryShape.NETWORK:
                result.missing_networks.append(path)
            elif shape is RepositoryShape.GIST:
                result.missing_gists.append(path)
            else:
                result.missing_repositories.append(path)

        if result.missing_networks:
            self.report.warn(
                WarningCategory.VERIFY,
                f"{len(result.missing_networks)} network(s) missing from snapshot: "
                + ", ".join(result.missing_networks),
            )
        if result.missing_gists:
            self.report.warn(
                WarningCategory.VERIFY,
                f"{len(result.missing_gists)} gist(s) missing from snapshot: "
                + ", ".join(result.missing_gists),
            )
        if result.missing_repositories:
            self.report.warn(
                WarningCategory.VERIFY,
                f"{len(result.missing_repositories)} plain repositories missing from snapshot: "
                + ", ".join(result.missing_repositories),
            )

        if result.ok:
            logger.info(f"Verified {result.found} of {result.expected} routed networks in snapshot")
        else:
            logger.warning(f"{len(result.missing)} routed network(s) missing from {repositories}")
        return result

    def verify_plan(self, plan: TransferPlan, repositories: Path) -> VerificationResult:
        """Verify against the deduplicated union of a plan's file lists."""
        return self.verify(plan.all_paths(), repositories)
