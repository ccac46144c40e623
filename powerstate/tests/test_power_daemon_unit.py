from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from powerstate import __version__
from powerstate.core.config import Config
from powerstate.core.devices.model import DeviceType, PowerDevice, StaticBackend
from powerstate.core.power_management import manager as manager_mod
from powerstate.core.power_management.manager import PowerDaemon
from powerstate.core.power_management.signals import DaemonSignal
from powerstate.core.system_power.actions import ActionResult
from powerstate.core.system_power.capabilities import CapabilityFacts
from powerstate.core.transitions.gate import CallContext
from powerstate.core.utils.exceptions import NoSuchDeviceError, NotSupportedError, TransitionOutcome


_ALL_CAPABLE = CapabilityFacts(kernel_can_suspend=True, kernel_can_hibernate=True, kernel_has_swap_space=True)


class _Recorder:
    def __init__(self, daemon: PowerDaemon) -> None:
        self.events: list[tuple] = []
        for sig in DaemonSignal:
            daemon.signals.connect(sig, lambda *args, _sig=sig: self.events.append((_sig, *args)))

    def count(self, sig: DaemonSignal) -> int:
        return sum(1 for e in self.events if e[0] == sig)


def _daemon(reader, scheduler, *, devices=(), backend=None, facts=_ALL_CAPABLE, authority=None, **kwargs):
    power_save = MagicMock()
    executor = MagicMock()
    executor.run.return_value = ActionResult(ok=True)
    daemon = PowerDaemon(
        backend or StaticBackend(list(devices)),
        reader,
        authority=authority or MagicMock(),
        executor=executor,
        power_save=power_save,
        config=Config(),
        capabilities=facts,
        scheduler=scheduler,
        **kwargs,
    )
    return daemon, power_save, executor


@pytest.fixture
def battery_and_ac(fake_reader, make_device):
    bat = make_device("BAT0", DeviceType.BATTERY)
    ac = make_device("AC", DeviceType.LINE_POWER)
    fake_reader.set(bat, on_battery=True, low_battery=False)
    fake_reader.set(ac, online=False)
    return bat, ac


class TestAggregateNotifications:
    def test_end_to_end_battery_then_ac_online(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, power_save, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)

        daemon.on_device_added(bat.native, bat, True)
        daemon.on_device_added(ac.native, ac, True)

        assert daemon.on_battery is True
        assert rec.count(DaemonSignal.CHANGED) == 1
        assert rec.count(DaemonSignal.DEVICE_ADDED) == 2
        power_save.apply.assert_called_once_with(True)

        fake_reader.set(ac, online=True)
        daemon.on_device_changed(ac.native, ac, True)

        assert daemon.on_battery is False
        assert rec.count(DaemonSignal.CHANGED) == 2
        assert rec.count(DaemonSignal.DEVICE_CHANGED) == 1
        power_save.apply.assert_called_with(False)

    def test_repeated_change_without_new_data_is_silent(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, power_save, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)
        daemon.on_device_added(ac.native, ac, True)
        fake_reader.set(ac, online=True)
        daemon.on_device_changed(ac.native, ac, True)
        rec = _Recorder(daemon)
        calls_before = power_save.apply.call_count

        daemon.on_device_changed(ac.native, ac, True)

        assert rec.count(DaemonSignal.CHANGED) == 0
        assert power_save.apply.call_count == calls_before

    def test_low_battery_change_does_not_drive_power_save(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, power_save, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)
        daemon.on_device_added(ac.native, ac, True)
        rec = _Recorder(daemon)
        power_save.reset_mock()

        fake_reader.set(bat, low_battery=True)
        daemon.on_device_changed(bat.native, bat, True)

        assert daemon.low_battery is True
        assert daemon.on_low_battery is True
        assert rec.count(DaemonSignal.CHANGED) == 1
        power_save.apply.assert_not_called()

    def test_on_low_battery_requires_on_battery(self, fake_reader, scheduler, make_device) -> None:
        ac = make_device("AC", DeviceType.LINE_POWER)
        fake_reader.set(ac, online=True)
        daemon, _, _ = _daemon(fake_reader, scheduler, devices=[ac])

        assert daemon.startup() is True

        # No battery reports a level, so low_battery is vacuously true.
        assert daemon.low_battery is True
        assert daemon.on_low_battery is False


class TestDebouncedRefresh:
    def test_line_power_change_schedules_exactly_one_refresh(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)
        daemon.on_device_added(ac.native, ac, True)

        daemon.on_device_changed(ac.native, ac, True)

        assert len(scheduler.calls) == 1
        assert scheduler.calls[0][0] == pytest.approx(3.0)
        # Immediate refresh of battery devices only.
        assert fake_reader.refreshed == [bat.object_path]

    def test_battery_change_schedules_nothing(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, _ = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)

        daemon.on_device_changed(bat.native, bat, True)

        assert scheduler.calls == []
        assert fake_reader.refreshed == []

    def test_delayed_refresh_skips_devices_removed_meanwhile(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)
        daemon.on_device_added(ac.native, ac, True)
        daemon.on_device_changed(ac.native, ac, True)

        daemon.on_device_removed(bat.native, bat)
        fake_reader.refreshed.clear()

        scheduler.fire_all()

        assert fake_reader.refreshed == []
        assert daemon.enumerate_devices() == [ac.object_path]

    def test_delayed_refresh_recomputes_aggregates(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)
        daemon.on_device_added(ac.native, ac, True)
        daemon.on_device_changed(ac.native, ac, True)
        rec = _Recorder(daemon)

        # The battery controller catches up after the AC event.
        fake_reader.set(bat, on_battery=False)
        scheduler.fire_all()

        assert daemon.on_battery is False
        assert rec.count(DaemonSignal.CHANGED) == 1
        assert fake_reader.refreshed == [bat.object_path, bat.object_path]

    def test_shutdown_cancels_pending_timers(self, fake_reader, battery_and_ac) -> None:
        _, ac = battery_and_ac
        handle = MagicMock()
        daemon, _, _ = _daemon(fake_reader, lambda delay, fn: handle)
        daemon.on_device_added(ac.native, ac, True)
        daemon.on_device_changed(ac.native, ac, True)

        daemon.shutdown()

        handle.cancel.assert_called_once()


class TestDeviceLifetime:
    def test_removal_releases_registry_entry(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, _ = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)
        daemon.on_device_added(bat.native, bat, True)

        daemon.on_device_removed(bat.native, bat)

        assert bat.native not in daemon.registry
        assert bat.is_gone
        assert (DaemonSignal.DEVICE_REMOVED, bat.object_path) in rec.events

    def test_external_holder_keeps_entry_until_release(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, _ = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler)
        daemon.on_device_added(bat.native, bat, True)
        bat.acquire()

        daemon.on_device_removed(bat.native, bat)
        assert bat.native in daemon.registry

        bat.release()
        assert bat.native not in daemon.registry

    def test_null_events_are_ignored(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, _ = battery_and_ac
        daemon, power_save, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)

        daemon.on_device_added(None, bat, True)
        daemon.on_device_added(bat.native, None, True)
        daemon.on_device_changed(bat.native, None, True)
        daemon.on_device_removed(None, None)

        assert len(daemon.registry) == 0
        assert rec.events == []
        power_save.apply.assert_not_called()

    def test_duplicate_add_is_ignored(self, fake_reader, scheduler, make_device) -> None:
        first = make_device("BAT0")
        second = make_device("BAT0")
        daemon, _, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)

        daemon.on_device_added(first.native, first, True)
        daemon.on_device_added(second.native, second, True)

        assert daemon.registry.lookup(first.native) is first
        assert rec.count(DaemonSignal.DEVICE_ADDED) == 1

    def test_get_device_and_counts(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler, devices=[bat, ac])
        daemon.startup()

        assert daemon.get_device(bat.object_path) is bat
        assert daemon.count_devices_of_type(DeviceType.BATTERY) == 1
        assert daemon.count_devices_of_type(DeviceType.UPS) == 0

        # The reader has the final say on the type.
        fake_reader.get_type = lambda dev: DeviceType.UPS
        assert daemon.count_devices_of_type(DeviceType.UPS) == 2
        with pytest.raises(NoSuchDeviceError):
            daemon.get_device("/org/powerstate/devices/nope")


class TestStartup:
    def test_silent_add_after_startup_recomputes_aggregates(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, _ = battery_and_ac
        daemon, power_save, _ = _daemon(fake_reader, scheduler)
        assert daemon.startup() is True
        rec = _Recorder(daemon)

        daemon.on_device_added(bat.native, bat, False)

        assert daemon.enumerate_devices() == [bat.object_path]
        assert daemon.on_battery is True
        assert daemon.low_battery is False
        assert rec.count(DaemonSignal.DEVICE_ADDED) == 0
        # on_battery and low_battery both moved.
        assert rec.count(DaemonSignal.CHANGED) == 2
        power_save.apply.assert_called_with(True)

    def test_coldplug_error_does_not_leave_adds_batched(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, _ = battery_and_ac
        backend = MagicMock()
        backend.coldplug.side_effect = RuntimeError("sysfs exploded")
        daemon, _, _ = _daemon(fake_reader, scheduler, backend=backend)

        assert daemon.startup() is False
        daemon.on_device_added(bat.native, bat, False)

        assert daemon.on_battery is True

    def test_coldplug_is_silent_and_computes_initial_state(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, power_save, _ = _daemon(fake_reader, scheduler, devices=[bat, ac])
        rec = _Recorder(daemon)

        assert daemon.startup() is True

        assert rec.events == []
        assert daemon.enumerate_devices() == [bat.object_path, ac.object_path]
        assert daemon.on_battery is True
        power_save.apply.assert_called_once_with(True)

    def test_failed_coldplug_fails_startup(self, fake_reader, scheduler) -> None:
        backend = MagicMock()
        backend.coldplug.return_value = False
        daemon, power_save, _ = _daemon(fake_reader, scheduler, backend=backend)

        assert daemon.startup() is False
        power_save.apply.assert_not_called()

    def test_failed_registration_skips_coldplug(self, fake_reader, scheduler) -> None:
        backend = MagicMock()
        daemon, _, _ = _daemon(fake_reader, scheduler, backend=backend, register_service=lambda _d: False)

        assert daemon.startup() is False
        backend.coldplug.assert_not_called()

    def test_snapshot_and_version(self, fake_reader, scheduler, battery_and_ac) -> None:
        bat, ac = battery_and_ac
        daemon, _, _ = _daemon(fake_reader, scheduler, devices=[bat, ac])
        daemon.startup()

        snap = daemon.snapshot()

        assert snap["daemon_version"] == __version__
        assert snap["can_suspend"] is True
        assert snap["can_hibernate"] is True
        assert snap["on_battery"] is True
        assert snap["on_low_battery"] is False
        assert snap["devices"] == [bat.object_path, ac.object_path]

    def test_start_monitoring_starts_backend_and_lid(self, fake_reader, scheduler, monkeypatch) -> None:
        backend = MagicMock()
        lid = MagicMock(return_value=True)
        monkeypatch.setattr(manager_mod, "start_lid_monitoring", lid)
        daemon, _, _ = _daemon(fake_reader, scheduler, backend=backend)

        daemon.start_monitoring()
        daemon.start_monitoring()

        backend.start.assert_called_once_with(daemon)
        lid.assert_called_once()
        kwargs = lid.call_args.kwargs
        assert kwargs["on_lid_state"] == daemon.set_lid_is_closed
        assert kwargs["is_running"]() is True

        daemon.shutdown()
        backend.stop.assert_called_once()
        assert kwargs["is_running"]() is False


class TestLid:
    def test_startup_value_is_stored_silently(self, fake_reader, scheduler) -> None:
        daemon, _, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)

        assert daemon.set_lid_is_closed(True, False) is True

        assert daemon.lid_is_closed is True
        assert rec.events == []

    def test_live_change_emits_once_and_duplicates_are_ignored(self, fake_reader, scheduler) -> None:
        daemon, _, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)

        assert daemon.set_lid_is_closed(True, True) is True
        assert daemon.set_lid_is_closed(True, True) is False

        assert rec.count(DaemonSignal.CHANGED) == 1

    def test_lid_presence_is_silent(self, fake_reader, scheduler) -> None:
        daemon, _, _ = _daemon(fake_reader, scheduler)
        rec = _Recorder(daemon)

        daemon.set_lid_is_present(True)

        assert daemon.lid_is_present is True
        assert rec.events == []


class TestTransitions:
    def test_suspend_runs_configured_command(self, fake_reader, scheduler) -> None:
        authority = MagicMock()
        authority.resolve_subject.return_value = "caller"
        authority.check_authorization.return_value = True
        daemon, _, executor = _daemon(fake_reader, scheduler, authority=authority)

        assert daemon.suspend(CallContext(pid=123)) is TransitionOutcome.ALLOWED_AND_EXECUTED

        executor.run.assert_called_once_with("/usr/sbin/pm-suspend")
        assert authority.check_authorization.call_args.args[1] == "org.powerstate.suspend"

    def test_hibernate_without_capability(self, fake_reader, scheduler) -> None:
        authority = MagicMock()
        facts = CapabilityFacts(kernel_can_suspend=True)
        daemon, _, executor = _daemon(fake_reader, scheduler, authority=authority, facts=facts)

        assert daemon.can_hibernate is False
        with pytest.raises(NotSupportedError):
            daemon.hibernate(CallContext(pid=123))

        authority.check_authorization.assert_not_called()
        executor.run.assert_not_called()

    def test_recheck_capabilities_emits_on_change(self, fake_reader, scheduler, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("POWERSTATE_CONFIG_DIR", str(tmp_path / "cfg"))
        state = tmp_path / "state"
        state.write_text("mem\n")
        config = Config()
        config.sleep_state_path = str(state)

        daemon = PowerDaemon(
            StaticBackend([]),
            fake_reader,
            authority=MagicMock(),
            power_save=MagicMock(),
            config=config,
            capabilities=CapabilityFacts(),
            scheduler=scheduler,
        )
        rec = _Recorder(daemon)

        facts = daemon.recheck_capabilities()
        assert facts.can_suspend is True
        assert daemon.can_suspend is True
        assert rec.count(DaemonSignal.CHANGED) == 1

        daemon.recheck_capabilities()
        assert rec.count(DaemonSignal.CHANGED) == 1
