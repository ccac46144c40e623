from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class DaemonSignal(str, Enum):
    DEVICE_ADDED = "device-added"
    DEVICE_REMOVED = "device-removed"
    DEVICE_CHANGED = "device-changed"
    CHANGED = "changed"


class SignalHub:
    """Observer lists keyed by signal.

    Listeners run synchronously on the emitting thread (the daemon's event
    context). A failing listener is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[DaemonSignal, list[Callable[..., None]]] = {s: [] for s in DaemonSignal}

    def connect(self, signal: DaemonSignal, callback: Callable[..., None]) -> Callable[[], None]:
        """Register *callback*; returns a function that disconnects it."""

        signal = DaemonSignal(signal)
        with self._lock:
            self._listeners[signal].append(callback)

        def _disconnect() -> None:
            with self._lock:
                try:
                    self._listeners[signal].remove(callback)
                except ValueError:
                    pass

        return _disconnect

    def emit(self, signal: DaemonSignal, *args) -> None:
        with self._lock:
            listeners = list(self._listeners[DaemonSignal(signal)])

        logger.debug("emit %s%s", signal.value, args if args else "")
        for cb in listeners:
            try:
                cb(*args)
            except Exception:
                logger.exception("Listener for %s failed", signal.value)
