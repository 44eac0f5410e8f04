# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.02
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/config/manager.py

from __future__ import annotations

import os
import re
import shlex
from pathlib import Path
from typing import Any, Final, Literal, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from ghe_backup.system.exceptions import ConfigError


# ---- Constants ----

CONFIG_FILE: Final = "ghe-backup.yml"
DEFAULT_SSH_USER: Final = "admin"
DEFAULT_SSH_PORT: Final = 122

# Environment variable -> config field
ENV_OVERRIDES: Final[dict[str, str]] = {
    "GHE_HOSTNAME": "hostname",
    "GHE_DATA_DIR": "data_dir",
    "GHE_DEPLOYMENT_MODE": "mode",
    "GHE_PARALLEL_ENABLED": "parallel",
    "GHE_BACKUP_SKIP_ROUTE_VERIFICATION": "skip_route_verification",
    "GHE_RESTORE_SNAPSHOT": "restore_snapshot",
    "GHE_REMOTE_DATA_USER_DIR": "remote_data_dir",
    "GHE_EXTRA_SSH_OPTS": "extra_ssh_opts",
    "GHE_GIT_COOLDOWN_PERIOD": "git_cooldown_period",
}

_TARGET_RE = re.compile(r"^(?:(?P<user>[^@\s]+)@)?(?P<host>[^:@\s]+)(?::(?P<port>\d+))?$")


def _get_config_search_paths() -> tuple[Path, ...]:
    """Get config file search paths (ordered by priority: lowest to highest).

    Evaluated at call time so that tests can redirect the environment.
    """
    return (
        Path("/etc/ghe-backup") / CONFIG_FILE,
        Path.home() / ".config" / "ghe-backup" / CONFIG_FILE,
        Path(os.getenv("XDG_CONFIG_HOME", "")) / "ghe-backup" / CONFIG_FILE,
        Path(os.getenv("GHE_BACKUP_CONFIG_HOME", "")) / CONFIG_FILE,
    )


def _load_merged_config_data(candidates: tuple[Path, ...]) -> dict:
    """Load and merge YAML config data; later files override earlier ones."""
    merged_data: dict[str, Any] = {}
    for candidate in candidates:
        # Unset env vars collapse to a bare relative filename; skip those
        if candidate == Path(CONFIG_FILE) or candidate == Path("ghe-backup") / CONFIG_FILE:
            continue
        if not candidate.is_file():
            continue
        try:
            with candidate.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {candidate}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {candidate} must contain a mapping")
        merged_data.update(data)
        logger.debug(f"Loaded config from {candidate}")
    return merged_data


def _env_overrides() -> dict:
    data: dict[str, Any] = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        if field_name == "extra_ssh_opts":
            data[field_name] = shlex.split(value)
        else:
            data[field_name] = value
    return data


# ---- Models ----

class SSHTarget(BaseModel):
    """An appliance address in ``[user@]host[:port]`` form."""
    host: str
    user: str = DEFAULT_SSH_USER
    port: int = DEFAULT_SSH_PORT

    @classmethod
    def parse(cls, value: str) -> "SSHTarget":
        match = _TARGET_RE.match(value.strip()) if value else None
        if not match:
            raise ConfigError(f"Invalid host '{value}': expected [user@]host[:port]")
        parts = match.groupdict()
        return cls(
            host=parts["host"],
            user=parts["user"] or DEFAULT_SSH_USER,
            port=int(parts["port"]) if parts["port"] else DEFAULT_SSH_PORT,
        )

    def __str__(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"


class BackupConfig(BaseModel):
    """Run configuration, built once and passed to every component."""
    hostname: str
    data_dir: Path = Path("data")
    mode: Literal["auto", "single", "cluster"] = "auto"
    parallel: bool = True
    max_parallel_nodes: Optional[int] = Field(default=None, ge=1)
    skip_route_verification: bool = False
    restore_snapshot: str = "current"
    remote_data_dir: str = "/data/user"
    extra_ssh_opts: list[str] = Field(default_factory=list)
    git_cooldown_period: int = Field(default=600, ge=0)
    finalize_batch_size: int = Field(default=1000, ge=1)
    finalize_workers: int = Field(default=10, ge=1)
    local_log: Optional[Path] = None

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, value: str) -> str:
        SSHTarget.parse(value)
        return value.strip()

    @field_validator("remote_data_dir")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") or "/"

    @property
    def target(self) -> SSHTarget:
        return SSHTarget.parse(self.hostname)

    @property
    def remote_repositories_dir(self) -> str:
        return f"{self.remote_data_dir}/repositories"

    @property
    def sync_in_progress_file(self) -> str:
        return f"{self.remote_repositories_dir}/.sync_in_progress"

    @classmethod
    def load(cls, config_path: Optional[Path] = None, **overrides: Any) -> "BackupConfig":
        """Load configuration from the standard locations.

        Args:
            config_path: Explicit config file, applied after the search paths
            **overrides: Values from the command line; None values are ignored

        Raises:
            ConfigError: On unreadable files or invalid values
        """
        candidates = _get_config_search_paths()
        if config_path is not None:
            if not Path(config_path).is_file():
                raise ConfigError(f"Config file not found: {config_path}")
            candidates = candidates + (Path(config_path),)

        data = _load_merged_config_data(candidates)
        data.update(_env_overrides())
        data.update({key: value for key, value in overrides.items() if value is not None})

        if "hostname" not in data:
            raise ConfigError(
                f"No appliance hostname configured: set 'hostname' in {CONFIG_FILE} or GHE_HOSTNAME"
            )
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")
