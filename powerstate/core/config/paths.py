"""Filesystem locations of a system-wide daemon.

Configuration is admin-owned and lives under /etc; the single-instance lock is
volatile state and lives under /run (or the directory systemd hands us via
RuntimeDirectory=).
"""

from __future__ import annotations

import os
from pathlib import Path

SYSTEM_CONFIG_DIR = Path("/etc/powerstate")
SYSTEM_RUNTIME_DIR = Path("/run/powerstate")

CONFIG_FILE_NAME = "config.json"
LOCK_FILE_NAME = "powerstate.lock"


def config_dir() -> Path:
    # Test hook: POWERSTATE_CONFIG_DIR relocates the whole config tree.
    override = os.environ.get("POWERSTATE_CONFIG_DIR")
    return Path(override) if override else SYSTEM_CONFIG_DIR


def config_file_path() -> Path:
    """POWERSTATE_CONFIG_PATH names the file directly; otherwise config_dir()/config.json."""

    override = os.environ.get("POWERSTATE_CONFIG_PATH")
    if override:
        return Path(override)
    return config_dir() / CONFIG_FILE_NAME


def runtime_dir() -> Path:
    """Directory for the lock file.

    Priority: POWERSTATE_RUNTIME_DIR, then systemd's RUNTIME_DIRECTORY (first
    entry when several are listed), then /run/powerstate.
    """

    override = os.environ.get("POWERSTATE_RUNTIME_DIR")
    if override:
        return Path(override)

    systemd_dirs = os.environ.get("RUNTIME_DIRECTORY", "").split(":")
    if systemd_dirs[0]:
        return Path(systemd_dirs[0])

    return SYSTEM_RUNTIME_DIR


def lock_file_path() -> Path:
    return runtime_dir() / LOCK_FILE_NAME
