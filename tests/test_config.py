# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.11
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_config.py

from pathlib import Path

import pytest
import yaml

from ghe_backup.config.manager import CONFIG_FILE, BackupConfig, SSHTarget
from ghe_backup.system.exceptions import ConfigError


def write_config(directory: Path, data: dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / CONFIG_FILE
    with path.open("w") as f:
        yaml.safe_dump(data, f)
    return path


class TestSSHTarget:
    def test_parse_full_target(self):
        target = SSHTarget.parse("ops@ghe.example.com:2222")
        assert (target.user, target.host, target.port) == ("ops", "ghe.example.com", 2222)

    def test_parse_defaults(self):
        target = SSHTarget.parse("ghe.example.com")
        assert target.user == "admin"
        assert target.port == 122
        assert str(target) == "admin@ghe.example.com:122"

    @pytest.mark.parametrize("value", ["", "user@", "host:port", "a b"])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ConfigError, match="Invalid host"):
            SSHTarget.parse(value)


class TestBackupConfig:
    def test_defaults(self):
        config = BackupConfig(hostname="ghe.example.com")
        assert config.mode == "auto"
        assert config.parallel is True
        assert config.restore_snapshot == "current"
        assert config.git_cooldown_period == 600
        assert config.finalize_batch_size == 1000
        assert config.remote_repositories_dir == "/data/user/repositories"
        assert config.sync_in_progress_file == "/data/user/repositories/.sync_in_progress"

    def test_remote_data_dir_trailing_slash_stripped(self):
        config = BackupConfig(hostname="ghe.example.com", remote_data_dir="/data/user/")
        assert config.remote_repositories_dir == "/data/user/repositories"

    def test_load_requires_hostname(self):
        with pytest.raises(ConfigError, match="No appliance hostname"):
            BackupConfig.load()

    def test_load_from_xdg(self, tmp_path):
        write_config(tmp_path / "xdg" / "ghe-backup", {"hostname": "ghe.example.com", "parallel": False})

        config = BackupConfig.load()

        assert config.hostname == "ghe.example.com"
        assert config.parallel is False

    def test_later_files_override_earlier(self, tmp_path, monkeypatch):
        write_config(tmp_path / "xdg" / "ghe-backup", {"hostname": "first.example.com", "mode": "single"})
        override_dir = tmp_path / "override"
        write_config(override_dir, {"hostname": "second.example.com"})
        monkeypatch.setenv("GHE_BACKUP_CONFIG_HOME", str(override_dir))

        config = BackupConfig.load()

        assert config.hostname == "second.example.com"
        assert config.mode == "single"

    def test_env_overrides_files(self, tmp_path, monkeypatch):
        write_config(tmp_path / "xdg" / "ghe-backup", {"hostname": "file.example.com"})
        monkeypatch.setenv("GHE_HOSTNAME", "env.example.com")
        monkeypatch.setenv("GHE_EXTRA_SSH_OPTS", "-o ConnectTimeout=5")
        monkeypatch.setenv("GHE_PARALLEL_ENABLED", "false")

        config = BackupConfig.load()

        assert config.hostname == "env.example.com"
        assert config.extra_ssh_opts == ["-o", "ConnectTimeout=5"]
        assert config.parallel is False

    def test_cli_overrides_env_and_none_is_ignored(self, monkeypatch):
        monkeypatch.setenv("GHE_HOSTNAME", "env.example.com")
        monkeypatch.setenv("GHE_BACKUP_SKIP_ROUTE_VERIFICATION", "true")

        config = BackupConfig.load(parallel=False, skip_route_verification=None)

        assert config.parallel is False
        assert config.skip_route_verification is True

    def test_explicit_config_path(self, tmp_path):
        path = write_config(tmp_path / "explicit", {"hostname": "ghe.example.com", "git_cooldown_period": 30})

        config = BackupConfig.load(path)

        assert config.git_cooldown_period == 30

    def test_missing_explicit_config_path(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            BackupConfig.load(tmp_path / "missing.yml")

    def test_invalid_value_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("GHE_HOSTNAME", "ghe.example.com")
        monkeypatch.setenv("GHE_DEPLOYMENT_MODE", "sideways")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            BackupConfig.load()

    def test_non_mapping_file_raises_config_error(self, tmp_path):
        path = tmp_path / "xdg" / "ghe-backup" / CONFIG_FILE
        path.parent.mkdir(parents=True)
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError, match="must contain a mapping"):
            BackupConfig.load()
