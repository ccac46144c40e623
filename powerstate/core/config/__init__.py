"""powerstate configuration.

This package groups the config manager and related helpers.
"""

from __future__ import annotations

from .config import Config
from .file_storage import load_config_settings, save_config_settings_atomic
from .paths import config_dir, config_file_path, lock_file_path, runtime_dir


__all__ = [
    "Config",
    "config_dir",
    "config_file_path",
    "lock_file_path",
    "runtime_dir",
    "load_config_settings",
    "save_config_settings_atomic",
]
