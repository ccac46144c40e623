from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from powerstate.core.devices.model import CachedReadingsReader, DeviceReadings, DeviceType, PowerDevice
from powerstate.core.logging_utils import log_throttled

if TYPE_CHECKING:
    from powerstate.core.power_management.manager import PowerDaemon

logger = logging.getLogger(__name__)


OBJECT_PATH_PREFIX = "/org/powerstate/devices"

# Attributes whose change means the device's readings need a refresh.
_WATCHED_ATTRS = ("online", "status", "capacity", "present")

_MOUSE_HINTS = ("mouse", "hidpp", "logitech")
_KEYBOARD_HINTS = ("kbd", "keyboard")


def power_supply_root(default: str | Path | None = None) -> Path:
    # Test hook: allow overriding the sysfs root.
    env = os.environ.get("POWERSTATE_SYSFS_POWER_SUPPLY_ROOT")
    if env:
        return Path(env)
    return Path(default) if default else Path("/sys/class/power_supply")


def _read_attr(supply: Path, name: str) -> Optional[str]:
    try:
        return (supply / name).read_text(errors="ignore").strip()
    except OSError:
        return None


def _read_int(supply: Path, name: str) -> Optional[int]:
    raw = _read_attr(supply, name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def iter_supplies(root: Path) -> list[Path]:
    try:
        return sorted(child for child in root.iterdir() if child.is_dir())
    except OSError:
        return []


def classify_supply(supply: Path) -> DeviceType:
    typ = (_read_attr(supply, "type") or "").lower()
    if typ in ("mains", "usb", "usb_c", "usb_pd", "usb_dcp", "usb_cdp"):
        return DeviceType.LINE_POWER
    if typ == "ups":
        return DeviceType.UPS
    if typ != "battery":
        return DeviceType.UNKNOWN

    # Peripheral batteries (wireless mice/keyboards) report scope=Device.
    scope = (_read_attr(supply, "scope") or "").lower()
    if scope != "device":
        return DeviceType.BATTERY

    name = supply.name.lower()
    model = (_read_attr(supply, "model_name") or "").lower()
    if any(h in name or h in model for h in _KEYBOARD_HINTS):
        return DeviceType.KEYBOARD
    if any(h in name or h in model for h in _MOUSE_HINTS):
        return DeviceType.MOUSE
    return DeviceType.UNKNOWN


def object_path_for(supply: Path, device_type: DeviceType) -> str:
    name = re.sub(r"[^A-Za-z0-9_]", "_", supply.name)
    return f"{OBJECT_PATH_PREFIX}/{device_type.value.replace('-', '_')}_{name}"


def read_supply_readings(supply: Path, device_type: DeviceType, *, low_battery_percentage: float) -> DeviceReadings:
    if device_type == DeviceType.LINE_POWER:
        raw = _read_attr(supply, "online")
        online = (raw == "1") if raw in ("0", "1") else None
        return DeviceReadings(online=online, state="online" if online else "offline")

    if device_type == DeviceType.UNKNOWN:
        return DeviceReadings()

    if _read_attr(supply, "present") == "0":
        return DeviceReadings(state="not-present")

    status = (_read_attr(supply, "status") or "unknown").lower()
    capacity = _read_int(supply, "capacity")
    percentage = float(max(0, min(100, capacity))) if capacity is not None else None

    # A discharging mouse says nothing about what powers the system.
    if device_type not in (DeviceType.BATTERY, DeviceType.UPS):
        return DeviceReadings(percentage=percentage, state=status)

    low_battery: Optional[bool] = None
    if percentage is not None:
        low_battery = percentage < float(low_battery_percentage)

    return DeviceReadings(
        on_battery=(status == "discharging"),
        low_battery=low_battery,
        percentage=percentage,
        state=status,
    )


def _attr_signature(supply: Path) -> tuple[Optional[str], ...]:
    return tuple(_read_attr(supply, name) for name in _WATCHED_ATTRS)


class SysfsDeviceReader(CachedReadingsReader):
    """Answers queries from cached readings; `refresh` re-reads sysfs."""

    def __init__(self, *, low_battery_percentage: float = 10.0) -> None:
        self.low_battery_percentage = float(low_battery_percentage)

    def refresh(self, device: PowerDevice) -> bool:
        supply = Path(str(device.native))
        if not supply.exists():
            logger.debug("%s vanished before refresh", device.object_path)
            return False

        readings = read_supply_readings(
            supply,
            device.device_type,
            low_battery_percentage=self.low_battery_percentage,
        )

        if readings == device.readings:
            return False
        device.readings = readings
        return True


class SysfsPowerSupplyBackend:
    """Discover /sys/class/power_supply entries and poll them for changes.

    The kernel offers no cheap change notification for these attributes
    without udev, so live events come from a polling thread.
    """

    def __init__(
        self,
        reader: SysfsDeviceReader,
        *,
        root: str | Path | None = None,
        poll_interval_s: float = 2.0,
    ) -> None:
        self._reader = reader
        self._root = power_supply_root(root)
        self._poll_interval_s = float(poll_interval_s)
        self._known: dict[str, PowerDevice] = {}
        self._signatures: dict[str, tuple[Optional[str], ...]] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def root(self) -> Path:
        return self._root

    def _make_device(self, supply: Path) -> PowerDevice:
        device_type = classify_supply(supply)
        dev = PowerDevice(
            native=str(supply),
            object_path=object_path_for(supply, device_type),
            device_type=device_type,
            attrs={"name": supply.name},
        )
        self._reader.refresh(dev)
        return dev

    def coldplug(self, daemon: "PowerDaemon") -> bool:
        if not self._root.exists():
            logger.warning("No power supply class at %s; no devices to track", self._root)
            return True

        for supply in iter_supplies(self._root):
            key = str(supply)
            if key in self._known:
                continue
            dev = self._make_device(supply)
            self._known[key] = dev
            self._signatures[key] = _attr_signature(supply)
            daemon.on_device_added(key, dev, False)
        return True

    def poll_once(self, daemon: "PowerDaemon") -> None:
        present = {str(s): s for s in iter_supplies(self._root)}

        for key in [k for k in self._known if k not in present]:
            dev = self._known.pop(key)
            self._signatures.pop(key, None)
            daemon.on_device_removed(key, dev)

        for key, supply in present.items():
            dev = self._known.get(key)
            if dev is None:
                dev = self._make_device(supply)
                self._known[key] = dev
                self._signatures[key] = _attr_signature(supply)
                daemon.on_device_added(key, dev, True)
                continue

            sig = _attr_signature(supply)
            if sig == self._signatures.get(key):
                continue
            self._signatures[key] = sig
            self._reader.refresh(dev)
            daemon.on_device_changed(key, dev, True)

    def _poll_loop(self, daemon: "PowerDaemon") -> None:
        while not self._stop.wait(self._poll_interval_s):
            try:
                self.poll_once(daemon)
            except Exception as exc:
                log_throttled(
                    logger,
                    "power_supply_sysfs.poll",
                    interval_s=60,
                    level=logging.WARNING,
                    msg=f"Power supply polling error: {exc}",
                    exc=exc,
                )

    def start(self, daemon: "PowerDaemon") -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll_loop, args=(daemon,), daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None
