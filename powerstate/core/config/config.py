"""powerstate Config implementation."""

from __future__ import annotations

import logging

from .defaults import DEFAULTS as _DEFAULTS
from .file_storage import load_config_settings, save_config_settings_atomic
from .paths import config_dir, config_file_path
from ._props import bool_prop, float_prop, str_prop

logger = logging.getLogger(__name__)


class Config:
    """Configuration manager for the power daemon."""

    DEFAULTS = _DEFAULTS

    def __init__(self):
        # Recompute at runtime so test harnesses can set env vars in conftest.
        self.CONFIG_DIR = config_dir()
        self.CONFIG_FILE = config_file_path()
        # /etc/powerstate is created on first save, not on load.
        loaded = self._load()
        self._settings = loaded if loaded is not None else self.DEFAULTS.copy()

    def _load(self, *, retries: int = 3, retry_delay: float = 0.02):
        """Load settings from file.

        An admin editing the file while the daemon reloads may leave it
        truncated for a moment; the loader retries transient JSONDecodeError.
        Returns None if loading fails after retries.
        """

        return load_config_settings(
            config_file=self.CONFIG_FILE,
            defaults=self.DEFAULTS,
            retries=retries,
            retry_delay=retry_delay,
            logger=logger,
        )

    def reload(self):
        loaded = self._load()
        # If the file was transiently unreadable, keep the previous in-memory settings.
        if loaded is not None:
            self._settings = loaded

    def _save(self):
        save_config_settings_atomic(
            config_dir=self.CONFIG_DIR,
            config_file=self.CONFIG_FILE,
            settings=self._settings,
            logger=logger,
        )

    def as_dict(self) -> dict:
        return dict(self._settings)

    refresh_delay_s = float_prop("refresh_delay_s", default=3.0, min_v=0.0, max_v=60.0)
    swap_waterline = float_prop("swap_waterline", default=80.0, min_v=0.0)
    low_battery_percentage = float_prop("low_battery_percentage", default=10.0, min_v=0.0, max_v=100.0)
    poll_interval_s = float_prop("poll_interval_s", default=2.0, min_v=0.1)

    sleep_state_path = str_prop("sleep_state_path", default="")
    meminfo_path = str_prop("meminfo_path", default="")
    power_supply_root = str_prop("power_supply_root", default="/sys/class/power_supply")

    suspend_command = str_prop("suspend_command", default="/usr/sbin/pm-suspend")
    hibernate_command = str_prop("hibernate_command", default="/usr/sbin/pm-hibernate")
    powersave_command = str_prop("powersave_command", default="/usr/sbin/pm-powersave")

    suspend_action_id = str_prop("suspend_action_id", default="org.powerstate.suspend")
    hibernate_action_id = str_prop("hibernate_action_id", default="org.powerstate.hibernate")

    lid_monitoring_enabled = bool_prop("lid_monitoring_enabled", default=True)
