# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.02
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/system/exceptions.py

"""
Exception classes for repository backup and restore.

Fatal errors derive from SetupError and abort the whole run. TransferError is
the recoverable, per-node class: the engine records it as a warning and keeps
the sibling node pipelines going.
"""


class GHEBackupError(Exception):
    """Base exception for all ghe-backup errors."""
    pass


class ConfigError(GHEBackupError):
    """Raised when configuration is missing or invalid."""
    pass


class CommandError(GHEBackupError):
    """Raised when a local or remote command exits non-zero."""

    def __init__(self, message: str, cmd: list[str] = None, returncode: int = None, stderr: str = ""):
        self.cmd = cmd or []
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


# === FATAL / SETUP ERRORS ===

class SetupError(GHEBackupError):
    """Base class for errors that abort the run immediately."""
    pass


class ToolMissingError(SetupError):
    """A required local tool (rsync, ssh) is not installed."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"required tool '{tool}' was not found on PATH")


class HostCheckError(SetupError):
    """The target appliance is unreachable or runs an unsupported version."""
    pass


class RouteResolutionError(SetupError):
    """The appliance's routing authority could not be queried."""
    pass


class GCQuiesceError(SetupError):
    """Garbage collection could not be disabled on a storage node."""

    def __init__(self, message: str, node: str = None):
        self.node = node
        super().__init__(message)


class SnapshotError(SetupError):
    """The requested snapshot does not exist or cannot be used."""
    pass


# === RECOVERABLE ERRORS ===

class TransferError(GHEBackupError):
    """A transfer pass failed for one node; recorded as a warning."""

    def __init__(self, message: str, node: str = None, phase: str = None, returncode: int = None):
        self.node = node
        self.phase = phase
        self.returncode = returncode
        super().__init__(message)
