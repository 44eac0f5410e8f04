# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.09
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/restore.py

"""
Restore control flow.

    resolve snapshot -> probe target -> discover snapshot networks
        -> disable GC -> resolve current routes -> plan
        -> per-node mirror (fan-out, barrier) -> special directories
        -> finalize (cluster) -> secrets
    (cleanup guard re-enables GC and removes temp dirs on every exit path)

Restore transfers each node's list in one mirroring pass rather than the four
ordered backup passes.
"""

from typing import Optional

from loguru import logger

from ghe_backup.config.manager import BackupConfig, SSHTarget
from ghe_backup.core.cleanup import CleanupGuard
from ghe_backup.core.finalize import Finalizer, finalize_entries
from ghe_backup.core.gc import GCQuiescer
from ghe_backup.core.layout import discover_network_paths
from ghe_backup.core.results import RunReport, WarningCategory
from ghe_backup.core.routes import RouteResolver, TransferPlan
from ghe_backup.core.special_dirs import SpecialDirectorySyncer
from ghe_backup.core.sync_engine import FanOutExecutor, PhasedSyncEngine
from ghe_backup.storage.appliance import (
    in_maintenance_mode,
    probe_appliance,
    require_tools,
    resolve_clustered,
    storage_nodes,
)
from ghe_backup.storage.rsync import RsyncTransport
from ghe_backup.storage.secrets import restore_secrets
from ghe_backup.storage.snapshots import SnapshotStore
from ghe_backup.storage.ssh import NodeEndpoints
from ghe_backup.system.exceptions import CommandError
from ghe_backup.system.execution import ProcessRegistry


def run_restore(config: BackupConfig, host: str, snapshot_name: Optional[str] = None,
                skip_secrets: bool = False, report: Optional[RunReport] = None,
                registry: Optional[ProcessRegistry] = None, verbose: bool = False) -> RunReport:
    """Restore a snapshot's repository data onto a target appliance.

    Args:
        config: Run configuration
        host: Target appliance, ``[user@]host[:port]``
        snapshot_name: Snapshot to restore; defaults to config.restore_snapshot
        skip_secrets: Do not copy secrets from the snapshot
        report: Report to fill in; a new one is created if omitted
        registry: Tracks transfer subprocesses so they can be terminated
        verbose: Pass -v to rsync

    Raises:
        SetupError: Any fatal setup failure; GC has been re-enabled
        ConfigError: host is not a valid target
    """
    report = report or RunReport("restore")
    registry = registry or ProcessRegistry()

    SSHTarget.parse(host)
    config = config.model_copy(update={"hostname": host.strip()})

    require_tools()
    snapshot = SnapshotStore(config.data_dir).resolve(snapshot_name or config.restore_snapshot)
    report.snapshot = snapshot.name
    logger.info(f"Restoring snapshot {snapshot.name} to {host}")

    endpoints = NodeEndpoints(config, clustered=False)
    info = probe_appliance(endpoints.appliance)
    endpoints.clustered = resolve_clustered(config.mode, info)

    if not in_maintenance_mode(endpoints.appliance):
        report.warn(
            WarningCategory.RESTORE,
            f"{endpoints.appliance.host} is not in maintenance mode; repository data is restored "
            "in a single pass per node without the backup's ref/object ordering, so writes "
            "during the restore may leave inconsistent repositories",
        )

    network_paths = discover_network_paths(snapshot.repositories)
    logger.info(f"Snapshot {snapshot.name} holds {len(network_paths)} network paths")

    quiescer = GCQuiescer(config.sync_in_progress_file, config.git_cooldown_period)
    with CleanupGuard(quiescer, endpoints, registry, report) as guard:
        workdir = guard.make_local_tempdir()
        nodes = storage_nodes(endpoints.appliance, endpoints.clustered)
        if endpoints.clustered:
            endpoints.write_cluster_config(nodes, workdir)
        guard.disable_gc(nodes)

        routes = RouteResolver(endpoints.appliance).restore_routes(network_paths)
        plan = TransferPlan.build(
            routes, single_host=None if endpoints.clustered else endpoints.appliance.host
        )
        for path in plan.unrouted:
            report.warn(WarningCategory.RESTORE, f"No destination node routed for {path}; not restored")
        if plan.is_empty:
            report.skip(f"No repository networks to restore from snapshot {snapshot.name}")
            return report

        guard.disable_gc(plan.nodes)
        report.network_count = plan.network_count
        file_lists = plan.write_file_lists(workdir)

        engine = PhasedSyncEngine(RsyncTransport(registry, verbose=verbose), endpoints,
                                  config.remote_repositories_dir)

        def pipeline(node: str):
            tasks = engine.restore_tasks(node, file_lists[node], snapshot.repositories)
            return engine.run_tasks(node, tasks, network_count=len(plan.paths_for(node)))

        fan_out = FanOutExecutor(registry, parallel=config.parallel, max_workers=config.max_parallel_nodes)
        for result in fan_out.run(plan.nodes, pipeline).values():
            report.add_node_result(result)

        for result in SpecialDirectorySyncer(engine).sync(nodes, snapshot.repositories, restore=True):
            report.add_node_result(result)

        if endpoints.clustered:
            remote_tmp = guard.make_remote_tempdir(endpoints.appliance)
            finalizer = Finalizer(endpoints.appliance, remote_tmp, report,
                                  batch_size=config.finalize_batch_size, workers=config.finalize_workers)
            finalizer.run(finalize_entries(plan.assignments, config.remote_repositories_dir))

        if skip_secrets:
            logger.info("Secret restore skipped")
        else:
            try:
                restored = restore_secrets(endpoints.appliance, snapshot.path)
            except CommandError as e:
                report.warn(WarningCategory.RESTORE, f"Secret restore failed: {e}")
            else:
                logger.info(f"Restored {len(restored)} secret(s)")

    return report
