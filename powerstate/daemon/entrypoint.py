"""Daemon entrypoint.

This module owns the startup sequence (logging, single-instance, coldplug)
and then keeps the process alive while monitors feed the daemon.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Sequence

from powerstate import __version__
from powerstate.core.config import Config
from powerstate.core.monitoring.power_supply_sysfs import SysfsDeviceReader, SysfsPowerSupplyBackend
from powerstate.core.power_management.manager import PowerDaemon
from powerstate.core.system_power.actions import NullPowerSaveSink, PmPowerSaveSink, PowerSaveSink, SubprocessActionExecutor
from powerstate.core.transitions.authority import PkcheckAuthority

from .startup import acquire_single_instance_or_exit, configure_logging

logger = logging.getLogger(__name__)


def build_daemon(
    config: Config,
    *,
    lid_monitoring: bool | None = None,
    power_save: PowerSaveSink | None = None,
) -> PowerDaemon:
    reader = SysfsDeviceReader(low_battery_percentage=config.low_battery_percentage)
    backend = SysfsPowerSupplyBackend(
        reader,
        root=config.power_supply_root,
        poll_interval_s=config.poll_interval_s,
    )
    return PowerDaemon(
        backend,
        reader,
        authority=PkcheckAuthority(),
        executor=SubprocessActionExecutor(),
        power_save=power_save or PmPowerSaveSink(config.powersave_command),
        config=config,
        lid_monitoring=lid_monitoring,
    )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="powerstate-daemon",
        description="Track power devices and gate suspend/hibernate.",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--no-lid", action="store_true", help="do not monitor the lid switch")
    parser.add_argument(
        "--print-state",
        action="store_true",
        help="coldplug, print the daemon properties as JSON and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _serve(daemon: PowerDaemon) -> None:
    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGHUP, _on_signal)

    daemon.start_monitoring()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        daemon.shutdown()


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    try:
        configure_logging(debug=args.debug)

        config = Config()
        if args.print_state:
            # A dry run must not flip the machine's power-save policy.
            daemon = build_daemon(config, lid_monitoring=False, power_save=NullPowerSaveSink())
            if not daemon.startup():
                sys.exit(1)
            print(json.dumps(daemon.snapshot(), indent=2, sort_keys=True))
            return

        daemon = build_daemon(config, lid_monitoring=False if args.no_lid else None)
        acquire_single_instance_or_exit()
        if not daemon.startup():
            logger.error("Could not start up")
            sys.exit(1)
        _serve(daemon)

    except KeyboardInterrupt:
        logger.info("Shutting down...")
        sys.exit(0)
    except Exception as exc:
        logger.exception("Unhandled error: %s", exc)
        sys.exit(1)
