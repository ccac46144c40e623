from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from powerstate.core.devices.model import DeviceReader, PowerDevice


@dataclass(frozen=True)
class AggregatePowerState:
    on_battery: bool
    low_battery: bool
    on_ac: bool

    @property
    def effective_on_battery(self) -> bool:
        """On battery for policy purposes: discharging and no AC supply online."""

        return bool(self.on_battery) and not bool(self.on_ac)


def compute_on_battery(devices: Iterable[PowerDevice], reader: DeviceReader) -> bool:
    """As soon as _any_ device reports discharging, this is true."""

    for dev in devices:
        if reader.get_on_battery(dev) is True:
            return True
    return False


def compute_low_battery(devices: Iterable[PowerDevice], reader: DeviceReader) -> bool:
    """True only when _all_ devices that know their charge level are low.

    Devices that do not report a value don't contradict "all low". With no
    device reporting at all the result is vacuously True; the exposed
    on_low_battery property is gated by on_battery, which hides this for
    desktops.
    """

    for dev in devices:
        if reader.get_low_battery(dev) is False:
            return False
    return True


def compute_on_ac(devices: Iterable[PowerDevice], reader: DeviceReader) -> bool:
    """As soon as _any_ supply goes online, this is true."""

    for dev in devices:
        if reader.get_online(dev) is True:
            return True
    return False


def compute_aggregate(devices: Iterable[PowerDevice], reader: DeviceReader) -> AggregatePowerState:
    # Each aggregate walks the devices on its own: short-circuiting one must
    # not hide devices from the others.
    snapshot = list(devices)
    return AggregatePowerState(
        on_battery=compute_on_battery(snapshot, reader),
        low_battery=compute_low_battery(snapshot, reader),
        on_ac=compute_on_ac(snapshot, reader),
    )
