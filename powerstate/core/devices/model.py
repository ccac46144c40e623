from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

if TYPE_CHECKING:
    from powerstate.core.power_management.manager import PowerDaemon

logger = logging.getLogger(__name__)


class DeviceType(str, Enum):
    LINE_POWER = "line-power"
    BATTERY = "battery"
    UPS = "ups"
    MOUSE = "mouse"
    KEYBOARD = "keyboard"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DeviceReadings:
    """Last refreshed facts for one device.

    `None` means the device does not support the concept (a mains adapter has
    no charge level; a battery has no `online` flag).
    """

    on_battery: Optional[bool] = None
    low_battery: Optional[bool] = None
    online: Optional[bool] = None
    percentage: Optional[float] = None
    state: str = "unknown"


class PowerDevice:
    """One logical device per physical power source.

    Lifetime is tracked with explicit holds instead of weak references: the
    creator owns the first hold, external holders (a bus export) call
    `acquire()`, and every holder calls `release()` exactly once. When the
    last hold is dropped, disappearance watches run once.
    """

    def __init__(
        self,
        native: Hashable,
        object_path: str,
        device_type: DeviceType = DeviceType.UNKNOWN,
        *,
        readings: DeviceReadings | None = None,
        attrs: dict[str, Any] | None = None,
    ) -> None:
        self.native = native
        self.object_path = object_path
        self.device_type = device_type
        self.readings = readings or DeviceReadings()
        # Backend-private raw attributes (e.g. sysfs file contents).
        self.attrs: dict[str, Any] = dict(attrs or {})

        self._holds = 1
        self._gone = False
        self._lock = threading.Lock()
        self._watches: list[Callable[[PowerDevice], None]] = []
        self._on_changed: list[Callable[[PowerDevice, bool], None]] = []
        self._on_removed: list[Callable[[PowerDevice], None]] = []

    def __repr__(self) -> str:
        return f"PowerDevice({self.object_path!r}, type={self.device_type.value}, holds={self._holds})"

    # ---- lifetime

    @property
    def holds(self) -> int:
        return self._holds

    @property
    def is_gone(self) -> bool:
        return self._gone

    def acquire(self) -> "PowerDevice":
        with self._lock:
            if self._gone:
                raise RuntimeError(f"{self.object_path} already went away")
            self._holds += 1
        return self

    def release(self) -> None:
        with self._lock:
            if self._gone:
                return
            self._holds -= 1
            if self._holds > 0:
                return
            self._gone = True
            watches = list(self._watches)
            self._watches.clear()

        for watch in watches:
            try:
                watch(self)
            except Exception:
                logger.exception("Disappearance watch failed for %s", self.object_path)

    def watch_disappearance(self, callback: Callable[["PowerDevice"], None]) -> None:
        with self._lock:
            if not self._gone:
                self._watches.append(callback)
                return
        callback(self)

    # ---- externally visible state

    def connect_changed(self, callback: Callable[["PowerDevice", bool], None]) -> None:
        self._on_changed.append(callback)

    def connect_removed(self, callback: Callable[["PowerDevice"], None]) -> None:
        self._on_removed.append(callback)

    def changed(self, native: Hashable, emit_signal: bool) -> None:
        """Propagate a backend change into this device's published state."""

        if native is not None and native != self.native:
            logger.debug("%s: native handle moved %r -> %r", self.object_path, self.native, native)
            self.native = native
        for cb in list(self._on_changed):
            try:
                cb(self, bool(emit_signal))
            except Exception:
                logger.exception("Device changed listener failed for %s", self.object_path)

    def removed(self) -> None:
        for cb in list(self._on_removed):
            try:
                cb(self)
            except Exception:
                logger.exception("Device removed listener failed for %s", self.object_path)


class DeviceReader(Protocol):
    """Per-device property queries.

    The aggregate computations only ever read through this interface.
    """

    def get_on_battery(self, device: PowerDevice) -> Optional[bool]: ...

    def get_low_battery(self, device: PowerDevice) -> Optional[bool]: ...

    def get_online(self, device: PowerDevice) -> Optional[bool]: ...

    def get_type(self, device: PowerDevice) -> DeviceType: ...

    def refresh(self, device: PowerDevice) -> bool: ...


class CachedReadingsReader:
    """Reader that answers from `device.readings` and never touches hardware.

    Used when a backend pushes fresh readings into devices itself, and as the
    base for readers that only need to override `refresh`.
    """

    def get_on_battery(self, device: PowerDevice) -> Optional[bool]:
        return device.readings.on_battery

    def get_low_battery(self, device: PowerDevice) -> Optional[bool]:
        return device.readings.low_battery

    def get_online(self, device: PowerDevice) -> Optional[bool]:
        return device.readings.online

    def get_type(self, device: PowerDevice) -> DeviceType:
        return device.device_type

    def refresh(self, device: PowerDevice) -> bool:
        return False


class PowerBackend(Protocol):
    """Device discovery: reports devices to the daemon's handlers.

    `coldplug` must report every present device through
    `daemon.on_device_added(native, device, False)`.
    """

    def coldplug(self, daemon: "PowerDaemon") -> bool: ...

    def start(self, daemon: "PowerDaemon") -> None: ...

    def stop(self) -> None: ...


@dataclass
class StaticBackend:
    """Backend with a fixed device list; handy for tests and `--print-state` dry runs."""

    devices: list[PowerDevice] = field(default_factory=list)

    def coldplug(self, daemon: "PowerDaemon") -> bool:
        for dev in self.devices:
            daemon.on_device_added(dev.native, dev, False)
        return True

    def start(self, daemon: "PowerDaemon") -> None:
        return None

    def stop(self) -> None:
        return None
