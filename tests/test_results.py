# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.12
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_results.py

import threading
from datetime import datetime

from ghe_backup.core.results import NodeResult, PhaseResult, RunReport, WarningCategory

T0 = datetime(2025, 7, 1, 12, 0, 0)


class TestRunReport:
    def test_failed_phase_becomes_transfer_warning(self):
        report = RunReport("backup")
        failed = PhaseResult("git-server-2", "objects", T0, T0, ok=False,
                             error="rsync objects failed on git-server-2 (exit 23)")

        report.add_node_result(NodeResult("git-server-2", 10, [failed]))

        [warning] = report.warnings
        assert warning.category is WarningCategory.TRANSFER
        assert warning.node == "git-server-2"
        assert "exit 23" in warning.message

    def test_results_for_same_node_merge(self):
        report = RunReport("backup")
        report.add_node_result(NodeResult("git-server-1", 10, [PhaseResult("git-server-1", "refs", T0, T0)]))
        report.add_node_result(NodeResult("git-server-1", 0, [PhaseResult("git-server-1", "special", T0, T0)]))

        result = report.nodes["git-server-1"]
        assert [phase.phase for phase in result.phases] == ["refs", "special"]
        assert result.network_count == 10

    def test_concurrent_warnings_all_kept(self):
        report = RunReport("restore")

        def add(node):
            for i in range(100):
                report.warn(WarningCategory.RESTORE, f"{node} {i}", node)

        threads = [threading.Thread(target=add, args=(f"git-server-{n}",)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(report.warnings) == 800

    def test_skip_is_recorded(self):
        report = RunReport("backup")
        report.skip("nothing to back up")
        assert report.skipped
        assert report.warnings_for(WarningCategory.SKIP)[0].message == "nothing to back up"
