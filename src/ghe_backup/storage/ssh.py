# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/storage/ssh.py

"""
SSH endpoints for the appliance and its storage nodes.

In single-host mode every node identifier is the configured appliance. In
cluster mode node identifiers are internal hostnames that are only reachable
through the appliance, so a generated ssh config proxies them through it.
"""

import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Optional, Sequence

from loguru import logger

from ghe_backup.config.manager import BackupConfig, SSHTarget
from ghe_backup.system.execution import CommandExecutor as ce, CommandResult


@dataclass(frozen=True)
class SSHEndpoint:
    """Everything needed to reach one host over ssh."""
    host: str
    port: int
    user: str
    config_file: Optional[Path] = None
    extra_opts: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_target(cls, target: SSHTarget, extra_opts: Sequence[str] = ()) -> "SSHEndpoint":
        return cls(host=target.host, port=target.port, user=target.user, extra_opts=tuple(extra_opts))

    def ssh_args(self) -> list[str]:
        args = ["-q", "-o", "BatchMode=yes", "-p", str(self.port), "-l", self.user]
        if self.config_file is not None:
            args += ["-F", str(self.config_file)]
        args += list(self.extra_opts)
        return args

    def rsync_shell(self) -> str:
        """The remote shell string passed to ``rsync -e``."""
        return shlex.join(["ssh", *self.ssh_args()])

    def run(self, cmd: Sequence[str], check: bool = True, input: Optional[str] = None) -> CommandResult:
        return ce.run_ssh(self.host, cmd, ssh_args=self.ssh_args(), check=check, input=input)

    def __str__(self) -> str:
        return self.host


def render_ssh_config(proxy: SSHEndpoint, nodes: Iterable[str]) -> str:
    """Render an ssh config with one proxied stanza per storage node."""
    proxy_cmd = shlex.join(["ssh", "-q", *proxy.extra_opts, "-p", str(proxy.port), f"{proxy.user}@{proxy.host}"])
    stanzas = []
    for node in sorted(set(nodes)):
        stanzas.append(
            f"Host {node}\n"
            f"  ServerAliveInterval 60\n"
            f"  ProxyCommand {proxy_cmd} nc.openbsd %h %p\n"
            f"  StrictHostKeyChecking no\n"
        )
    return "\n".join(stanzas)


class NodeEndpoints:
    """Maps storage node identifiers to SSH endpoints for one run."""

    def __init__(self, config: BackupConfig, clustered: bool) -> None:
        self.appliance = SSHEndpoint.from_target(config.target, config.extra_ssh_opts)
        self.clustered = clustered
        self.config_file: Optional[Path] = None

    def write_cluster_config(self, nodes: Iterable[str], directory: Path) -> Path:
        """Write the proxy ssh config into the run's temp dir."""
        path = directory / "ssh_config"
        path.write_text(render_ssh_config(self.appliance, nodes), encoding="utf-8")
        self.config_file = path
        logger.debug(f"Wrote cluster ssh config to {path}")
        return path

    def for_node(self, node: str) -> SSHEndpoint:
        if not self.clustered:
            return self.appliance
        return replace(self.appliance, host=node, config_file=self.config_file)
