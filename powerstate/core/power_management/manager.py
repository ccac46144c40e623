"""Power daemon core: device registry, aggregate state and transition gating."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from importlib import metadata
from typing import Any, Optional

from powerstate import __version__
from powerstate.core.config import Config
from powerstate.core.devices.model import DeviceReader, DeviceType, PowerBackend, PowerDevice
from powerstate.core.devices.registry import DeviceRegistry
from powerstate.core.monitoring.lid_monitoring import start_lid_monitoring
from powerstate.core.power_policies.aggregate_policy import compute_aggregate
from powerstate.core.system_power.actions import ActionExecutor, PmPowerSaveSink, PowerSaveSink, SubprocessActionExecutor
from powerstate.core.system_power.capabilities import CapabilityFacts, probe_capabilities
from powerstate.core.transitions.gate import Authority, CallContext, TransitionAction, TransitionGate, TransitionKind
from powerstate.core.utils.exceptions import DuplicateKeyError, NoSuchDeviceError, TransitionOutcome

from .signals import DaemonSignal, SignalHub

logger = logging.getLogger(__name__)


Scheduler = Callable[[float, Callable[[], None]], Any]


def _start_timer(delay_s: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(float(delay_s), fn)
    timer.daemon = True
    timer.start()
    return timer


class PowerDaemon:
    """Track power devices, publish aggregate power state and gate transitions.

    Every handler runs under one re-entrant lock, which is the daemon's single
    serialized event context: backend events, the delayed battery refresh,
    transition requests and property reads never interleave.
    """

    def __init__(
        self,
        backend: PowerBackend,
        reader: DeviceReader,
        *,
        authority: Authority,
        executor: ActionExecutor | None = None,
        power_save: PowerSaveSink | None = None,
        config: Config | None = None,
        capabilities: CapabilityFacts | None = None,
        scheduler: Scheduler | None = None,
        register_service: Callable[["PowerDaemon"], bool] | None = None,
        lid_monitoring: bool | None = None,
    ) -> None:
        self._config = config or Config()
        self._backend = backend
        self._reader = reader
        self._power_save = power_save or PmPowerSaveSink(self._config.powersave_command)
        self._scheduler = scheduler or _start_timer
        self._register_service_hook = register_service
        self._lid_monitoring = self._config.lid_monitoring_enabled if lid_monitoring is None else bool(lid_monitoring)

        self._lock = threading.RLock()
        self._registry = DeviceRegistry()
        self.signals = SignalHub()

        self._on_battery = False
        self._low_battery = False
        self._lid_is_closed = False
        self._lid_is_present = False

        self._pending_refreshes: list[Any] = []
        self.monitoring = False
        self._coldplugging = False

        if capabilities is None:
            capabilities = probe_capabilities(
                sleep_state_path=self._config.sleep_state_path,
                meminfo_path=self._config.meminfo_path,
                swap_waterline=self._config.swap_waterline,
            )
        self._capabilities = capabilities

        self._gate = TransitionGate(
            capabilities=lambda: self._capabilities,
            authority=authority,
            executor=executor or SubprocessActionExecutor(),
            actions={
                TransitionKind.SUSPEND: TransitionAction(
                    action_id=self._config.suspend_action_id,
                    command=self._config.suspend_command,
                ),
                TransitionKind.HIBERNATE: TransitionAction(
                    action_id=self._config.hibernate_action_id,
                    command=self._config.hibernate_command,
                ),
            },
        )

    # ---- exposed properties

    @property
    def daemon_version(self) -> str:
        try:
            return metadata.version("powerstate")
        except metadata.PackageNotFoundError:
            return __version__

    @property
    def can_suspend(self) -> bool:
        with self._lock:
            return self._capabilities.can_suspend

    @property
    def can_hibernate(self) -> bool:
        with self._lock:
            return self._capabilities.can_hibernate

    @property
    def capabilities(self) -> CapabilityFacts:
        with self._lock:
            return self._capabilities

    @property
    def on_battery(self) -> bool:
        with self._lock:
            return self._on_battery

    @property
    def low_battery(self) -> bool:
        with self._lock:
            return self._low_battery

    @property
    def on_low_battery(self) -> bool:
        with self._lock:
            return self._on_battery and self._low_battery

    @property
    def lid_is_closed(self) -> bool:
        with self._lock:
            return self._lid_is_closed

    @property
    def lid_is_present(self) -> bool:
        with self._lock:
            return self._lid_is_present

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "daemon_version": self.daemon_version,
                "can_suspend": self.can_suspend,
                "can_hibernate": self.can_hibernate,
                "on_battery": self._on_battery,
                "on_low_battery": self._on_battery and self._low_battery,
                "lid_is_closed": self._lid_is_closed,
                "lid_is_present": self._lid_is_present,
                "devices": self.enumerate_devices(),
            }

    # ---- exposed methods

    def enumerate_devices(self) -> list[str]:
        with self._lock:
            return [dev.object_path for dev in self._registry.enumerate()]

    def get_device(self, object_path: str) -> PowerDevice:
        with self._lock:
            for dev in self._registry.enumerate():
                if dev.object_path == object_path:
                    return dev
        raise NoSuchDeviceError(f"No such device: {object_path}")

    def count_devices_of_type(self, device_type: DeviceType) -> int:
        with self._lock:
            return self._registry.count_by_type(device_type, type_of=self._reader.get_type)

    def suspend(self, context: CallContext) -> TransitionOutcome:
        with self._lock:
            return self._gate.request(TransitionKind.SUSPEND, context)

    def hibernate(self, context: CallContext) -> TransitionOutcome:
        with self._lock:
            return self._gate.request(TransitionKind.HIBERNATE, context)

    def recheck_capabilities(self) -> CapabilityFacts:
        facts = probe_capabilities(
            sleep_state_path=self._config.sleep_state_path,
            meminfo_path=self._config.meminfo_path,
            swap_waterline=self._config.swap_waterline,
        )
        with self._lock:
            changed = facts.can_suspend != self._capabilities.can_suspend or (
                facts.can_hibernate != self._capabilities.can_hibernate
            )
            self._capabilities = facts
            if changed:
                self.signals.emit(DaemonSignal.CHANGED)
        return facts

    # ---- lid

    def set_lid_is_closed(self, lid_is_closed: bool, notify: bool) -> bool:
        """Store the lid state; only live updates (notify=True) emit CHANGED.

        The startup value is stored silently: announcing "lid closed" the
        moment the daemon starts would make session managers suspend the
        machine right away.
        """

        lid_is_closed = bool(lid_is_closed)
        with self._lock:
            logger.debug("lid_is_closed=%s", lid_is_closed)
            if self._lid_is_closed == lid_is_closed:
                logger.debug("ignoring duplicate")
                return False

            self._lid_is_closed = lid_is_closed
            if not notify:
                logger.debug("not emitting lid change event for daemon startup")
            else:
                self.signals.emit(DaemonSignal.CHANGED)
            return True

    def set_lid_is_present(self, lid_is_present: bool) -> None:
        with self._lock:
            self._lid_is_present = bool(lid_is_present)

    # ---- backend events

    def on_device_added(self, native: Optional[Hashable], device: Optional[PowerDevice], emit_signal: bool) -> None:
        if native is None or device is None:
            logger.warning("Ignoring device-added with missing native handle or device")
            return

        with self._lock:
            logger.debug("added: native:%r, device:%s (%s)", native, device.object_path, emit_signal)
            try:
                self._registry.insert(native, device)
            except DuplicateKeyError as exc:
                logger.error("Ignoring device-added for %s: %s", device.object_path, exc)
                return

            # Remove the entry once the last holder lets go of the device.
            device.watch_disappearance(self._device_went_away)

            if emit_signal:
                self.signals.emit(DaemonSignal.DEVICE_ADDED, device.object_path)

            # Coldplug adds are batched; startup computes the initial aggregates.
            if not self._coldplugging:
                self._update_aggregates()

    def on_device_changed(self, native: Optional[Hashable], device: Optional[PowerDevice], emit_signal: bool) -> None:
        if native is None or device is None:
            logger.warning("Ignoring device-changed with missing native handle or device")
            return

        with self._lock:
            logger.debug("changed: native:%r, device:%s (%s)", native, device.object_path, emit_signal)
            device.changed(native, emit_signal)
            if emit_signal:
                self.signals.emit(DaemonSignal.DEVICE_CHANGED, device.object_path)

            # Refresh batteries when the AC state changes: now, and again in a
            # little while for controllers that lag behind the AC event.
            if self._reader.get_type(device) == DeviceType.LINE_POWER:
                self.refresh_battery_devices()
                self._schedule_delayed_refresh()

            self._update_aggregates()

    def on_device_removed(self, native: Optional[Hashable], device: Optional[PowerDevice]) -> None:
        if native is None or device is None:
            logger.warning("Ignoring device-removed with missing native handle or device")
            return

        with self._lock:
            logger.debug("removed: native:%r, device:%s", native, device.object_path)
            device.removed()
            self.signals.emit(DaemonSignal.DEVICE_REMOVED, device.object_path)
            device.release()
            self._update_aggregates()

    def _device_went_away(self, device: PowerDevice) -> None:
        with self._lock:
            if self._registry.remove_device(device):
                logger.debug("%s went away", device.object_path)

    # ---- refresh / aggregates

    def refresh_battery_devices(self) -> None:
        with self._lock:
            for dev in self._registry.enumerate():
                if self._reader.get_type(dev) != DeviceType.BATTERY:
                    continue
                try:
                    self._reader.refresh(dev)
                except Exception as exc:
                    logger.warning("Failed to refresh %s: %s", dev.object_path, exc)

    def _schedule_delayed_refresh(self) -> None:
        delay_s = float(self._config.refresh_delay_s)
        handle = self._scheduler(delay_s, self._delayed_refresh)
        if handle is not None:
            self._pending_refreshes.append(handle)

    def _delayed_refresh(self) -> None:
        with self._lock:
            logger.debug("doing the delayed refresh")
            self._pending_refreshes = [h for h in self._pending_refreshes if _is_pending(h)]
            # Devices removed since the refresh was scheduled are simply no
            # longer in the registry.
            self.refresh_battery_devices()
            self._update_aggregates()

    def _update_aggregates(self) -> None:
        state = compute_aggregate(self._registry.enumerate(), self._reader)

        on_battery = state.effective_on_battery
        if on_battery != self._on_battery:
            self._on_battery = on_battery
            logger.debug("now on_battery = %s", "yes" if on_battery else "no")
            self.signals.emit(DaemonSignal.CHANGED)
            self._apply_power_save(on_battery)

        low_battery = state.low_battery
        if low_battery != self._low_battery:
            self._low_battery = low_battery
            logger.debug("now low_battery = %s", "yes" if low_battery else "no")
            self.signals.emit(DaemonSignal.CHANGED)

    def _apply_power_save(self, on_battery: bool) -> None:
        try:
            self._power_save.apply(bool(on_battery))
        except Exception as exc:
            logger.warning("Power-save policy failed: %s", exc)

    # ---- lifecycle

    def _register_service(self) -> bool:
        if self._register_service_hook is None:
            logger.info("Power daemon %s ready", self.daemon_version)
            return True
        try:
            return bool(self._register_service_hook(self))
        except Exception as exc:
            logger.exception("Service registration failed: %s", exc)
            return False

    def startup(self) -> bool:
        if not self._register_service():
            logger.warning("failed to register")
            return False

        with self._lock:
            self._coldplugging = True
            try:
                ok = bool(self._backend.coldplug(self))
            except Exception as exc:
                logger.exception("Coldplug error: %s", exc)
                ok = False
            finally:
                self._coldplugging = False
            if not ok:
                logger.warning("failed to coldplug backend")
                return False

            state = compute_aggregate(self._registry.enumerate(), self._reader)
            self._on_battery = state.effective_on_battery
            self._low_battery = state.low_battery
            logger.info(
                "Coldplugged %d device(s): on_battery=%s low_battery=%s",
                len(self._registry),
                self._on_battery,
                self._low_battery,
            )
            self._apply_power_save(self._on_battery)
        return True

    def start_monitoring(self) -> None:
        """Start live backend events and lid monitoring."""

        if self.monitoring:
            return
        self.monitoring = True

        self._backend.start(self)

        if self._lid_monitoring:
            start_lid_monitoring(
                is_running=lambda: self.monitoring,
                on_lid_present=self.set_lid_is_present,
                on_lid_state=self.set_lid_is_closed,
                logger=logger,
            )

    def shutdown(self) -> None:
        """Stop monitors and drop pending delayed refreshes."""

        self.stop_monitoring()

    def stop_monitoring(self) -> None:
        self.monitoring = False
        try:
            self._backend.stop()
        except Exception as exc:
            logger.warning("Backend stop failed: %s", exc)

        with self._lock:
            pending, self._pending_refreshes = self._pending_refreshes, []
        for handle in pending:
            cancel = getattr(handle, "cancel", None)
            if callable(cancel):
                cancel()


def _is_pending(handle: Any) -> bool:
    is_alive = getattr(handle, "is_alive", None)
    if callable(is_alive):
        try:
            return bool(is_alive())
        except Exception:
            return False
    return False
