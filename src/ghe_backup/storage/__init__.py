# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/storage/__init__.py

"""
Storage layer for ghe-repo-backup - everything that touches a disk or a host.

This module provides:
- SSH endpoints for the appliance and its storage nodes
- rsync transfer tasks and their execution
- Appliance probes (version, cluster detection, maintenance mode)
- The local snapshot directory tree
- Secret restore onto the appliance
"""

from .appliance import ApplianceInfo, probe_appliance, require_tools, storage_nodes
from .rsync import RsyncTransport, TransferTask
from .snapshots import Snapshot, SnapshotStore
from .ssh import NodeEndpoints, SSHEndpoint

__all__ = [
    'ApplianceInfo',
    'probe_appliance',
    'require_tools',
    'storage_nodes',
    'RsyncTransport',
    'TransferTask',
    'Snapshot',
    'SnapshotStore',
    'NodeEndpoints',
    'SSHEndpoint',
]
