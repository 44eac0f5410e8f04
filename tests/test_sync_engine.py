# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.11
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_sync_engine.py

import threading
from unittest.mock import MagicMock

import pytest

from ghe_backup.core.phases import PHASE_ORDER, TransferPhase
from ghe_backup.core.results import NodeResult, RunReport, WarningCategory
from ghe_backup.core.sync_engine import FanOutExecutor, PhasedSyncEngine
from ghe_backup.system.exceptions import ToolMissingError

NODES = ["git-server-1", "git-server-2", "git-server-3", "git-server-4"]


@pytest.fixture
def engine(cluster_endpoints, fake_transport, clock):
    return PhasedSyncEngine(fake_transport, cluster_endpoints, "/data/user/repositories", clock=clock)


class TestBackupTasks:
    def test_four_ordered_additive_passes(self, engine, tmp_path):
        tasks = engine.backup_tasks("git-server-1", tmp_path / "n1.rsync", tmp_path / "snap",
                                    link_dest=tmp_path / "prev")

        assert [task.phase for task in tasks] == list(PHASE_ORDER)
        assert all(not task.mirror for task in tasks)
        assert [task.compress for task in tasks] == [True, True, True, False]
        assert all(task.source == "git-server-1:/data/user/repositories/" for task in tasks)
        assert all(task.destination == f"{tmp_path / 'snap'}/" for task in tasks)
        assert all(task.link_dest == tmp_path / "prev" for task in tasks)
        assert all(task.endpoint.host == "git-server-1" for task in tasks)

    def test_restore_is_one_mirroring_pass(self, engine, tmp_path):
        tasks = engine.restore_tasks("git-server-2", tmp_path / "n2.rsync", tmp_path / "snap" / "repositories")

        assert len(tasks) == 1
        assert tasks[0].mirror is True
        assert tasks[0].phase is None
        assert tasks[0].destination == "git-server-2:/data/user/repositories/"


class TestRunTasks:
    def test_phase_ordering_timestamps(self, engine, tmp_path):
        tasks = engine.backup_tasks("git-server-1", tmp_path / "n1.rsync", tmp_path / "snap")

        result = engine.run_tasks("git-server-1", tasks, network_count=3)

        assert result.ok
        assert result.network_count == 3
        loose = result.phase(TransferPhase.LOOSE_REFS_AND_LOGS.value)
        objects = result.phase(TransferPhase.OBJECTS_AND_PACKS.value)
        assert objects.started >= loose.finished
        for earlier, later in zip(result.phases, result.phases[1:]):
            assert later.started >= earlier.finished

    def test_failure_stops_remaining_passes(self, cluster_endpoints, clock, tmp_path, transport_factory):
        transport = transport_factory(failures={("git-server-1", "packed-refs")})
        engine = PhasedSyncEngine(transport, cluster_endpoints, "/data/user/repositories", clock=clock)

        result = engine.run_tasks("git-server-1", engine.backup_tasks("git-server-1", tmp_path / "l", tmp_path / "s"))

        assert not result.ok
        assert result.failed_phase.phase == "packed-refs"
        assert [phase.phase for phase in result.phases] == ["auxiliary", "packed-refs"]
        assert len(transport.tasks) == 2

    def test_missing_rsync_is_fatal(self, cluster_endpoints, clock, tmp_path):
        transport = MagicMock()
        transport.run.side_effect = FileNotFoundError("rsync")
        engine = PhasedSyncEngine(transport, cluster_endpoints, "/data/user/repositories", clock=clock)

        with pytest.raises(ToolMissingError):
            engine.run_tasks("git-server-1", engine.backup_tasks("git-server-1", tmp_path / "l", tmp_path / "s"))


class TestFanOutExecutor:
    def test_partial_node_failure(self, cluster_endpoints, clock, tmp_path, transport_factory):
        transport = transport_factory(failures={("git-server-3", "objects-and-packs")})
        engine = PhasedSyncEngine(transport, cluster_endpoints, "/data/user/repositories", clock=clock)
        report = RunReport("backup")

        def pipeline(node):
            return engine.run_tasks(node, engine.backup_tasks(node, tmp_path / f"{node}.rsync", tmp_path / "s"))

        results = FanOutExecutor(MagicMock(), parallel=True).run(NODES, pipeline)
        for result in results.values():
            report.add_node_result(result)

        assert list(results) == NODES
        assert [node for node, result in results.items() if result.ok] == [
            "git-server-1", "git-server-2", "git-server-4"
        ]
        for node in ("git-server-1", "git-server-2", "git-server-4"):
            assert len(results[node].phases) == 4
        warnings = report.warnings_for(WarningCategory.TRANSFER)
        assert len(warnings) == 1
        assert warnings[0].node == "git-server-3"
        assert "git-server-3" in warnings[0].message

    def test_sequential_mode_runs_in_sorted_order(self):
        order = []

        def pipeline(node):
            order.append((node, threading.current_thread().name))
            return NodeResult(node)

        FanOutExecutor(MagicMock(), parallel=False).run(["c", "a", "b"], pipeline)

        assert [node for node, _ in order] == ["a", "b", "c"]
        assert len({thread for _, thread in order}) == 1

    def test_parallel_mode_runs_concurrently(self):
        barrier = threading.Barrier(3, timeout=5)

        def pipeline(node):
            # Deadlocks (and times out) unless all three run at once
            barrier.wait()
            return NodeResult(node)

        results = FanOutExecutor(MagicMock(), parallel=True).run(["a", "b", "c"], pipeline)

        assert list(results) == ["a", "b", "c"]

    def test_fatal_error_terminates_and_propagates(self):
        registry = MagicMock()

        def pipeline(node):
            if node == "b":
                raise ToolMissingError("rsync")
            return NodeResult(node)

        with pytest.raises(ToolMissingError):
            FanOutExecutor(registry, parallel=True).run(["a", "b", "c"], pipeline)

        registry.terminate_all.assert_called_once()
