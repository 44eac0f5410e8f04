# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.11
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_special_dirs.py

import pytest

from ghe_backup.core.phases import SPECIAL_DIRECTORY_RULES
from ghe_backup.core.special_dirs import SPECIAL_PASS, SpecialDirectorySyncer
from ghe_backup.core.sync_engine import PhasedSyncEngine


@pytest.fixture
def syncer(cluster_endpoints, fake_transport, clock):
    return SpecialDirectorySyncer(
        PhasedSyncEngine(fake_transport, cluster_endpoints, "/data/user/repositories", clock=clock)
    )


class TestSpecialDirectorySyncer:
    def test_backup_pulls_each_host_serially(self, syncer, fake_transport, tmp_path):
        results = syncer.sync(["git-server-2", "git-server-1"], tmp_path / "repositories",
                              link_dest=tmp_path / "prev")

        assert [result.node for result in results] == ["git-server-1", "git-server-2"]
        assert [task.node for task in fake_transport.tasks] == ["git-server-1", "git-server-2"]
        task = fake_transport.tasks[0]
        assert task.label == SPECIAL_PASS
        assert task.rules == SPECIAL_DIRECTORY_RULES
        assert task.source == "git-server-1:/data/user/repositories/"
        assert task.destination == f"{tmp_path / 'repositories'}/"
        assert task.mirror is False
        assert task.link_dest == tmp_path / "prev"
        assert task.files_from is None

    def test_restore_pushes_and_mirrors(self, syncer, fake_transport, tmp_path):
        syncer.sync(["git-server-1"], tmp_path / "repositories", restore=True, link_dest=tmp_path / "prev")

        task = fake_transport.tasks[0]
        assert task.source == f"{tmp_path / 'repositories'}/"
        assert task.destination == "git-server-1:/data/user/repositories/"
        assert task.mirror is True
        assert task.link_dest is None

    def test_failure_recorded_not_raised(self, cluster_endpoints, clock, tmp_path, transport_factory):
        transport = transport_factory(failures={("git-server-1", SPECIAL_PASS)})
        syncer = SpecialDirectorySyncer(
            PhasedSyncEngine(transport, cluster_endpoints, "/data/user/repositories", clock=clock)
        )

        results = syncer.sync(["git-server-1", "git-server-2"], tmp_path / "repositories")

        assert [result.ok for result in results] == [False, True]
        assert results[0].failed_phase.phase == SPECIAL_PASS
