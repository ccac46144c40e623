from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterator
from typing import Optional

from powerstate.core.utils.exceptions import DuplicateKeyError

from .model import DeviceType, PowerDevice

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Insertion-ordered mapping of native handle -> device.

    Enumeration order is insertion order (not sorted): it is handed to
    listeners verbatim as the device list.
    """

    def __init__(self) -> None:
        self._devices: dict[Hashable, PowerDevice] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, native: object) -> bool:
        return native in self._devices

    def insert(self, native: Hashable, device: PowerDevice) -> None:
        if native in self._devices:
            raise DuplicateKeyError(f"native handle already registered: {native!r}")
        self._devices[native] = device

    def remove(self, native: Hashable) -> None:
        self._devices.pop(native, None)

    def remove_device(self, device: PowerDevice) -> bool:
        """Remove whichever entry holds *device*.

        Disappearance watches only know the device, and its native handle may
        have been updated by a change event since insertion.
        """

        for native, dev in list(self._devices.items()):
            if dev is device:
                del self._devices[native]
                return True
        return False

    def lookup(self, native: Hashable) -> Optional[PowerDevice]:
        return self._devices.get(native)

    def enumerate(self) -> Iterator[PowerDevice]:
        # Walk a key snapshot but resolve values lazily, so entries removed
        # while the caller is iterating are skipped rather than raising.
        for native in list(self._devices):
            dev = self._devices.get(native)
            if dev is not None:
                yield dev

    def count_by_type(
        self,
        device_type: DeviceType,
        *,
        type_of: Optional[Callable[[PowerDevice], DeviceType]] = None,
    ) -> int:
        """Count devices of *device_type*; *type_of* overrides the stored type (e.g. a reader)."""

        get_type = type_of or (lambda dev: dev.device_type)
        return sum(1 for dev in self._devices.values() if get_type(dev) == device_type)
