"""Default configuration values.

Split out from `powerstate.core.config` to keep that module small and focused.
"""

from __future__ import annotations

DEFAULTS: dict = {
    # Delay before the second battery refresh after a line-power change.
    # Some battery controllers keep reporting stale values for a short window.
    "refresh_delay_s": 3.0,
    # Hibernate is disabled when active memory exceeds this share of free swap (%).
    "swap_waterline": 80.0,
    # A battery below this charge (%) reports low_battery.
    "low_battery_percentage": 10.0,
    # sysfs backend polling interval (seconds).
    "poll_interval_s": 2.0,
    # Kernel probe sources. Empty means POWERSTATE_SLEEP_STATE_PATH /
    # POWERSTATE_MEMINFO_PATH, else /sys/power/state and /proc/meminfo.
    "sleep_state_path": "",
    "meminfo_path": "",
    "power_supply_root": "/sys/class/power_supply",
    # External transition actions
    "suspend_command": "/usr/sbin/pm-suspend",
    "hibernate_command": "/usr/sbin/pm-hibernate",
    "powersave_command": "/usr/sbin/pm-powersave",
    # Authorization action ids checked before each transition
    "suspend_action_id": "org.powerstate.suspend",
    "hibernate_action_id": "org.powerstate.hibernate",
    # Lid switch (evdev, with /proc/acpi polling fallback)
    "lid_monitoring_enabled": True,
}
