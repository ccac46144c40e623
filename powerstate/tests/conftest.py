from __future__ import annotations

import os
import tempfile
from typing import Any, Callable, Optional

import pytest

from powerstate.core.devices.model import DeviceReadings, DeviceType, PowerDevice
from powerstate.core.logging_utils import reset_throttle


# Safety default: during pytest, avoid touching /etc/powerstate or a running
# daemon's lock file in /run.
os.environ.setdefault("POWERSTATE_CONFIG_DIR", tempfile.mkdtemp(prefix="powerstate-test-config-"))
os.environ.setdefault("POWERSTATE_RUNTIME_DIR", tempfile.mkdtemp(prefix="powerstate-test-run-"))

# Never open real input devices during tests.
os.environ.setdefault("POWERSTATE_DISABLE_EVDEV", "1")


@pytest.fixture(autouse=True)
def _reset_log_throttle():
    reset_throttle()
    yield
    reset_throttle()


class FakeReader:
    """DeviceReader answering from per-device dicts; records refresh calls."""

    def __init__(self) -> None:
        self.values: dict[str, dict[str, Any]] = {}
        self.refreshed: list[str] = []

    def set(self, device: PowerDevice, **values: Any) -> None:
        self.values.setdefault(device.object_path, {}).update(values)

    def _get(self, device: PowerDevice, key: str) -> Optional[Any]:
        return self.values.get(device.object_path, {}).get(key)

    def get_on_battery(self, device: PowerDevice) -> Optional[bool]:
        return self._get(device, "on_battery")

    def get_low_battery(self, device: PowerDevice) -> Optional[bool]:
        return self._get(device, "low_battery")

    def get_online(self, device: PowerDevice) -> Optional[bool]:
        return self._get(device, "online")

    def get_type(self, device: PowerDevice) -> DeviceType:
        return device.device_type

    def refresh(self, device: PowerDevice) -> bool:
        self.refreshed.append(device.object_path)
        return False


class CapturingScheduler:
    """Scheduler that records delayed calls instead of starting timers."""

    def __init__(self) -> None:
        self.calls: list[tuple[float, Callable[[], None]]] = []

    def __call__(self, delay_s: float, fn: Callable[[], None]):
        self.calls.append((delay_s, fn))
        return None

    def fire_all(self) -> None:
        calls, self.calls = self.calls, []
        for _, fn in calls:
            fn()


@pytest.fixture
def fake_reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def scheduler() -> CapturingScheduler:
    return CapturingScheduler()


@pytest.fixture
def make_device():
    def _make(name: str, device_type: DeviceType = DeviceType.BATTERY, **readings: Any) -> PowerDevice:
        return PowerDevice(
            native=f"/sys/class/power_supply/{name}",
            object_path=f"/org/powerstate/devices/{name}",
            device_type=device_type,
            readings=DeviceReadings(**readings),
        )

    return _make
