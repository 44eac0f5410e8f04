# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.10
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/cli/__init__.py

"""Command Line Interface package for ghe-repo-backup."""

from .main import cli_main as main, app

__all__ = ['main', 'app']
