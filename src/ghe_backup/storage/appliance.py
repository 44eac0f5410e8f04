# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.04
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/storage/appliance.py

"""
Setup-time probes against the appliance.

Everything here runs before any data moves. A failure is fatal to the run.
"""

import re
import shutil
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ghe_backup.storage.ssh import SSHEndpoint
from ghe_backup.system.exceptions import CommandError, HostCheckError, ToolMissingError

REQUIRED_TOOLS = ("rsync", "ssh")
MINIMUM_SUPPORTED_VERSION = (3, 9, 0)
CLUSTER_MARKER = "/etc/github/cluster"

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True)
class ApplianceInfo:
    """What the host check learned about the appliance."""
    version: tuple[int, int, int]
    clustered: bool

    @property
    def version_string(self) -> str:
        return ".".join(str(part) for part in self.version)


def parse_version(text: str) -> Optional[tuple[int, int, int]]:
    """Extract the first ``X.Y.Z`` from a version banner."""
    match = _VERSION_RE.search(text or "")
    if not match:
        return None
    return tuple(int(part) for part in match.groups())


def require_tools() -> None:
    """Fail fast when a local transfer tool is missing."""
    for tool in REQUIRED_TOOLS:
        if shutil.which(tool) is None:
            raise ToolMissingError(tool)


def probe_appliance(endpoint: SSHEndpoint) -> ApplianceInfo:
    """Check connectivity and version, and detect cluster deployments.

    Raises:
        HostCheckError: Host unreachable, version unreadable or unsupported
    """
    try:
        result = endpoint.run(["ghe-version"])
    except CommandError as e:
        raise HostCheckError(f"Unable to reach appliance {endpoint.host}: {e}")

    version = parse_version(result.stdout)
    if version is None:
        raise HostCheckError(f"Could not determine appliance version from '{result.stdout.strip()}'")
    if version < MINIMUM_SUPPORTED_VERSION:
        minimum = ".".join(str(part) for part in MINIMUM_SUPPORTED_VERSION)
        raise HostCheckError(
            f"Appliance {endpoint.host} runs {'.'.join(map(str, version))}; "
            f"version {minimum} or newer is required"
        )

    clustered = endpoint.run(["test", "-f", CLUSTER_MARKER], check=False).success
    logger.info(f"Appliance {endpoint.host}: version {'.'.join(map(str, version))}, clustered={clustered}")
    return ApplianceInfo(version=version, clustered=clustered)


def storage_nodes(endpoint: SSHEndpoint, clustered: bool) -> list[str]:
    """List the hosts holding repository data.

    Raises:
        HostCheckError: The cluster node list could not be read
    """
    if not clustered:
        return [endpoint.host]
    try:
        result = endpoint.run(["ghe-cluster-each", "-r", "git", "-p"])
    except CommandError as e:
        raise HostCheckError(f"Unable to list git storage nodes on {endpoint.host}: {e}")
    nodes = sorted({line.strip() for line in result.stdout.splitlines() if line.strip()})
    if not nodes:
        raise HostCheckError(f"No git storage nodes reported by {endpoint.host}")
    return nodes


def in_maintenance_mode(endpoint: SSHEndpoint) -> bool:
    """``ghe-maintenance -q`` exits 0 when maintenance mode is on."""
    return endpoint.run(["ghe-maintenance", "-q"], check=False).success


def resolve_clustered(mode: str, info: ApplianceInfo) -> bool:
    """Reconcile the configured deployment mode with what the appliance reports.

    Raises:
        HostCheckError: The configured mode contradicts the appliance
    """
    if mode == "auto":
        return info.clustered
    clustered = mode == "cluster"
    if clustered != info.clustered:
        actual = "a cluster" if info.clustered else "a single host"
        raise HostCheckError(f"Configured for {mode} mode but the appliance is {actual}")
    return clustered
