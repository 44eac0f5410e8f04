# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.09
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/backup.py

"""
Backup control flow.

    probe appliance -> disable GC -> resolve routes -> plan
        -> per-node phased sync (fan-out, barrier) -> special directories
        -> verify routes -> promote snapshot
    (cleanup guard re-enables GC and removes temp dirs on every exit path)
"""

from typing import Optional

from loguru import logger

from ghe_backup.config.manager import BackupConfig
from ghe_backup.core.cleanup import CleanupGuard
from ghe_backup.core.gc import GCQuiescer
from ghe_backup.core.results import RunReport, WarningCategory
from ghe_backup.core.routes import RouteResolver, TransferPlan
from ghe_backup.core.special_dirs import SpecialDirectorySyncer
from ghe_backup.core.sync_engine import FanOutExecutor, PhasedSyncEngine
from ghe_backup.core.verify import RouteVerifier
from ghe_backup.storage.appliance import probe_appliance, require_tools, resolve_clustered, storage_nodes
from ghe_backup.storage.rsync import RsyncTransport
from ghe_backup.storage.snapshots import SnapshotStore
from ghe_backup.storage.ssh import NodeEndpoints
from ghe_backup.system.execution import ProcessRegistry


def run_backup(config: BackupConfig, report: Optional[RunReport] = None,
               registry: Optional[ProcessRegistry] = None, verbose: bool = False) -> RunReport:
    """Take one snapshot of the appliance's repository data.

    Args:
        config: Run configuration
        report: Report to fill in; a new one is created if omitted
        registry: Tracks transfer subprocesses so they can be terminated
        verbose: Pass -v to rsync

    Returns:
        The filled-in report. Per-node failures are warnings on the report.

    Raises:
        SetupError: Any fatal setup failure; GC has been re-enabled
    """
    report = report or RunReport("backup")
    registry = registry or ProcessRegistry()

    require_tools()
    endpoints = NodeEndpoints(config, clustered=False)
    info = probe_appliance(endpoints.appliance)
    endpoints.clustered = resolve_clustered(config.mode, info)

    store = SnapshotStore(config.data_dir)
    previous = store.current()
    link_dest = previous.repositories if previous else None
    if previous:
        logger.info(f"Unchanged files will be linked from snapshot {previous.name}")

    quiescer = GCQuiescer(config.sync_in_progress_file, config.git_cooldown_period)
    with CleanupGuard(quiescer, endpoints, registry, report) as guard:
        workdir = guard.make_local_tempdir()
        nodes = storage_nodes(endpoints.appliance, endpoints.clustered)
        if endpoints.clustered:
            endpoints.write_cluster_config(nodes, workdir)
        guard.disable_gc(nodes)

        routes = RouteResolver(endpoints.appliance).backup_routes()
        plan = TransferPlan.build(
            routes, single_host=None if endpoints.clustered else endpoints.appliance.host
        )
        for path in plan.unrouted:
            report.warn(WarningCategory.TRANSFER, f"No storage node routed for {path}; not backed up")
        if plan.is_empty:
            report.skip("No repository networks resolved; nothing to back up")
            return report

        # A routed node missing from the node listing still needs GC quiesced
        guard.disable_gc(plan.nodes)

        snapshot = store.create(info.version_string)
        report.snapshot = snapshot.name
        report.network_count = plan.network_count
        file_lists = plan.write_file_lists(workdir)

        engine = PhasedSyncEngine(RsyncTransport(registry, verbose=verbose), endpoints,
                                  config.remote_repositories_dir)

        def pipeline(node: str):
            tasks = engine.backup_tasks(node, file_lists[node], snapshot.repositories, link_dest)
            return engine.run_tasks(node, tasks, network_count=len(plan.paths_for(node)))

        fan_out = FanOutExecutor(registry, parallel=config.parallel, max_workers=config.max_parallel_nodes)
        for result in fan_out.run(plan.nodes, pipeline).values():
            report.add_node_result(result)

        for result in SpecialDirectorySyncer(engine).sync(nodes, snapshot.repositories, link_dest=link_dest):
            report.add_node_result(result)

        if config.skip_route_verification:
            logger.info("Route verification skipped by configuration")
        else:
            RouteVerifier(report).verify_plan(plan, snapshot.repositories)

        store.mark_complete(snapshot)

    return report
