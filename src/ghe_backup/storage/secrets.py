# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.08
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/storage/secrets.py

"""Copies named secrets from a snapshot into the appliance's config store."""

from pathlib import Path

from loguru import logger

from ghe_backup.storage.ssh import SSHEndpoint

# (label, file in the snapshot, ghe-config key)
RESTORED_SECRETS: tuple[tuple[str, str, str], ...] = (
    ("management console password", "manage-password", "secrets.manage"),
    ("Actions storage encryption key", "actions-storage-encryption-key", "secrets.actions.storage-encryption-key"),
    ("Packages storage key", "packages-aws-secret-key", "secrets.packages.aws-secret-key"),
)


def restore_secret(endpoint: SSHEndpoint, snapshot_dir: Path, label: str,
                   backup_key: str, config_key: str) -> bool:
    """Set one secret on the appliance if the snapshot has it.

    Returns:
        True if a value was restored, False if the snapshot has none
    """
    source = Path(snapshot_dir) / backup_key
    if not source.is_file():
        logger.debug(f"No {label} in snapshot; skipping")
        return False
    value = source.read_text(encoding="utf-8").strip()
    if not value:
        return False
    # Value on stdin, never in argv
    endpoint.run(["bash", "-c", f'ghe-config {config_key} "$(cat)"'], input=value)
    logger.info(f"Restored {label}")
    return True


def restore_secrets(endpoint: SSHEndpoint, snapshot_dir: Path) -> list[str]:
    """Restore every known secret; returns the labels that were restored."""
    return [
        label
        for label, backup_key, config_key in RESTORED_SECRETS
        if restore_secret(endpoint, snapshot_dir, label, backup_key, config_key)
    ]
