# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.11
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/conftest.py

"""
Shared test fixtures for the ghe-repo-backup test suite.

Nothing here touches a network or runs rsync: remote commands are patched or
replaced with in-memory fakes, and snapshot trees live under tmp_path.
"""

import itertools
import threading
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from ghe_backup.config.manager import BackupConfig
from ghe_backup.core.results import RunReport
from ghe_backup.storage.ssh import NodeEndpoints
from ghe_backup.system.exceptions import TransferError
from ghe_backup.system.execution import CommandResult


@pytest.fixture(autouse=True)
def isolated_config_env(monkeypatch, tmp_path):
    """Keep real config files and GHE_* variables out of every test."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("GHE_BACKUP_CONFIG_HOME", raising=False)
    for name in (
        "GHE_HOSTNAME", "GHE_DATA_DIR", "GHE_DEPLOYMENT_MODE", "GHE_PARALLEL_ENABLED",
        "GHE_BACKUP_SKIP_ROUTE_VERIFICATION", "GHE_RESTORE_SNAPSHOT",
        "GHE_REMOTE_DATA_USER_DIR", "GHE_EXTRA_SSH_OPTS", "GHE_GIT_COOLDOWN_PERIOD",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path) -> BackupConfig:
    return BackupConfig(hostname="admin@ghe.example.com:122", data_dir=tmp_path / "data")


@pytest.fixture
def single_endpoints(config) -> NodeEndpoints:
    return NodeEndpoints(config, clustered=False)


@pytest.fixture
def cluster_endpoints(config, tmp_path) -> NodeEndpoints:
    endpoints = NodeEndpoints(config, clustered=True)
    endpoints.write_cluster_config(["git-server-1", "git-server-2"], tmp_path)
    return endpoints


@pytest.fixture
def report() -> RunReport:
    return RunReport("backup")


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2025, 7, 1, 12, 0, 0)) -> None:
        self._counter = itertools.count()
        self._start = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._start + timedelta(seconds=next(self._counter))


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


class FakeTransport:
    """Records transfer tasks instead of running rsync.

    Args:
        failures: (node, phase value or label) pairs that raise TransferError
    """

    def __init__(self, failures=()) -> None:
        self.failures = set(failures)
        self.tasks = []
        self._lock = threading.Lock()

    def run(self, task) -> CommandResult:
        with self._lock:
            self.tasks.append(task)
        key = task.phase.value if task.phase else task.label
        if (task.node, key) in self.failures:
            raise TransferError(
                f"rsync {task.label} failed on {task.node} (exit 23): simulated",
                node=task.node, phase=key, returncode=23,
            )
        return CommandResult(0, "", "")

    def tasks_for(self, node: str) -> list:
        return [task for task in self.tasks if task.node == node]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


def make_repositories(root: Path, network_paths) -> Path:
    """Create a repositories tree holding the given network paths.

    Network directories get one ``<id>.git`` repository each; gist and plain
    paths are themselves the ``.git`` directory.
    """
    for path in network_paths:
        if path.endswith(".git"):
            git_dir = root / path
        else:
            git_dir = root / path / f"{Path(path).name}.git"
        (git_dir / "objects").mkdir(parents=True, exist_ok=True)
        (git_dir / "refs" / "heads").mkdir(parents=True, exist_ok=True)
        (git_dir / "packed-refs").write_text("", encoding="utf-8")
    return root


@pytest.fixture
def repositories_factory():
    return make_repositories


@pytest.fixture
def transport_factory():
    return FakeTransport
