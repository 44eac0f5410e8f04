# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.05
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/routes.py

"""
Route resolution and transfer planning.

The appliance's routing authority answers with one line per network path:

    <network-path> <node-id> [<node-id> ...]

The first node is the primary. RouteResolver asks the question (all routes
for a backup, routes for an explicit list for a restore); TransferPlan buckets
every routed network path into exactly one node's file list.
"""

from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from ghe_backup.storage.rsync import write_file_list
from ghe_backup.storage.ssh import SSHEndpoint
from ghe_backup.system.exceptions import CommandError, RouteResolutionError

BACKUP_ROUTES_CMD = ["github-env", "./bin/dgit-cluster-backup-routes"]
RESTORE_ROUTES_CMD = ["github-env", "./bin/dgit-cluster-restore-routes"]


@dataclass(frozen=True)
class Route:
    """Where one network path lives; nodes[0] is the primary."""
    path: str
    nodes: tuple[str, ...]

    @property
    def primary(self) -> Optional[str]:
        return self.nodes[0] if self.nodes else None


def parse_routes(text: str) -> list[Route]:
    """Parse route lines; blank lines are skipped, a path may appear once."""
    routes: dict[str, Route] = {}
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        path = fields[0].strip("/")
        if path in routes:
            logger.debug(f"Duplicate route for {path}; keeping the first")
            continue
        routes[path] = Route(path=path, nodes=tuple(fields[1:]))
    return list(routes.values())


class RouteResolver:
    """Queries the routing authority on the appliance."""

    def __init__(self, endpoint: SSHEndpoint) -> None:
        self.endpoint = endpoint

    def _query(self, cmd: list[str], input: Optional[str] = None) -> list[Route]:
        try:
            result = self.endpoint.run(cmd, input=input)
        except CommandError as e:
            raise RouteResolutionError(f"Route query failed on {self.endpoint.host}: {e}")
        routes = parse_routes(result.stdout)
        logger.info(f"Resolved {len(routes)} routes from {self.endpoint.host}")
        return routes

    def backup_routes(self) -> list[Route]:
        """Current placement of every network path on the appliance."""
        return self._query(BACKUP_ROUTES_CMD)

    def restore_routes(self, network_paths: Iterable[str]) -> list[Route]:
        """Current destination placement for the given network paths."""
        paths = list(network_paths)
        if not paths:
            return []
        return self._query(RESTORE_ROUTES_CMD, input="".join(f"{path}\n" for path in paths))


class TransferPlan:
    """Storage node -> network paths assigned to it.

    Every route with at least one node is assigned to exactly one node, so the
    per-node lists are pairwise disjoint and together cover every routed path.
    """

    def __init__(self, assignments: dict[str, list[str]], unrouted: Optional[list[str]] = None) -> None:
        self._assignments = {node: sorted(paths) for node, paths in assignments.items() if paths}
        self.unrouted = sorted(unrouted or [])

    @classmethod
    def build(cls, routes: Iterable[Route], single_host: Optional[str] = None) -> "TransferPlan":
        """Bucket routes by their owning node.

        Args:
            routes: Resolved routes
            single_host: In single-host mode, the host that owns everything
        """
        assignments: dict[str, list[str]] = defaultdict(list)
        unrouted: list[str] = []
        for route in routes:
            if not route.nodes:
                unrouted.append(route.path)
                continue
            owner = single_host or route.primary
            assignments[owner].append(route.path)
        plan = cls(dict(assignments), unrouted)
        logger.info(f"Planned {plan.network_count} networks across {len(plan.nodes)} node(s)")
        for node, count in plan.counts().items():
            logger.debug(f"  {node}: {count} networks")
        return plan

    @property
    def nodes(self) -> list[str]:
        return sorted(self._assignments)

    @property
    def network_count(self) -> int:
        return sum(len(paths) for paths in self._assignments.values())

    @property
    def is_empty(self) -> bool:
        return not self._assignments

    @property
    def assignments(self) -> dict[str, list[str]]:
        return {node: list(paths) for node, paths in sorted(self._assignments.items())}

    def paths_for(self, node: str) -> list[str]:
        return list(self._assignments.get(node, []))

    def all_paths(self) -> set[str]:
        return {path for paths in self._assignments.values() for path in paths}

    def counts(self) -> dict[str, int]:
        return {node: len(paths) for node, paths in sorted(self._assignments.items())}

    def write_file_lists(self, directory: Path) -> dict[str, Path]:
        """Write one ``<node>.rsync`` file list per node."""
        return {
            node: write_file_list(self._assignments[node], directory / f"{node}.rsync")
            for node in self.nodes
        }
