from __future__ import annotations

import glob
import os
import threading
import time
from collections.abc import Callable
from typing import Any, Optional


LidStateCallback = Callable[[bool, bool], Any]


def _parse_lid_state(content: str | None) -> str | None:
    if not content:
        return None
    s = str(content).strip().lower()
    if "open" in s:
        return "open"
    if "closed" in s:
        return "closed"
    return None


def find_lid_state_file() -> Optional[str]:
    lid_files = sorted(glob.glob("/proc/acpi/button/lid/*/state"))
    return lid_files[0] if lid_files else None


def read_lid_closed(path: str) -> Optional[bool]:
    try:
        with open(path) as f:
            state = _parse_lid_state(f.read())
    except OSError:
        return None
    if state is None:
        return None
    return state == "closed"


def try_open_evdev_lid_switch():
    """Return an evdev InputDevice exposing SW_LID, or None."""

    if str(os.environ.get("POWERSTATE_DISABLE_EVDEV", "")).strip().lower() in {"1", "true", "yes"}:
        return None

    try:
        import evdev  # type: ignore
    except Exception:
        return None

    try:
        paths = evdev.list_devices()
    except Exception:
        return None

    for path in paths:
        try:
            dev = evdev.InputDevice(path)
        except Exception:
            continue
        try:
            caps = dev.capabilities(verbose=False)
            if evdev.ecodes.SW_LID in caps.get(evdev.ecodes.EV_SW, []):
                return dev
        except Exception:
            pass
        try:
            dev.close()
        except Exception:
            pass
    return None


def monitor_evdev_lid(
    dev,
    *,
    is_running: Callable[[], bool],
    on_lid_state: LidStateCallback,
    logger,
) -> None:
    """Feed live SW_LID events (value 1 = closed) into *on_lid_state*."""

    import evdev  # type: ignore

    try:
        for event in dev.read_loop():
            if not is_running():
                break
            if event.type != evdev.ecodes.EV_SW or event.code != evdev.ecodes.SW_LID:
                continue
            closed = bool(event.value)
            logger.info("Lid %s", "closed" if closed else "opened")
            on_lid_state(closed, True)
    except OSError as exc:
        logger.warning("Lid switch device went away: %s", exc)
    finally:
        try:
            dev.close()
        except Exception:
            pass


def poll_lid_state_file(
    lid_file: str,
    *,
    is_running: Callable[[], bool],
    on_lid_state: LidStateCallback,
    logger,
    initial: Optional[bool] = None,
    interval_s: float = 0.5,
) -> None:
    """Poll an ACPI lid state file and report changes as live updates.

    *initial* is the value already reported at startup; the first poll is
    compared against it so a change in between is not lost.
    """

    last_state = initial if initial is not None else read_lid_closed(lid_file)
    while is_running():
        time.sleep(interval_s)
        try:
            with open(lid_file) as f:
                parsed = _parse_lid_state(f.read())
        except Exception as e:
            logger.exception("Error reading lid state: %s", e)
            break

        if parsed is None:
            continue
        closed = parsed == "closed"
        if closed != last_state:
            logger.info("Lid state changed: %s -> %s", last_state, parsed)
            on_lid_state(closed, True)
            last_state = closed


def start_lid_monitoring(
    *,
    is_running: Callable[[], bool],
    on_lid_present: Callable[[bool], Any],
    on_lid_state: LidStateCallback,
    logger,
) -> bool:
    """Detect the lid, store its startup state silently, then watch it.

    Prefers the kernel's SW_LID input switch (evdev); falls back to polling
    /proc/acpi/button/lid/*/state. Returns False when the host has no lid.
    """

    dev = try_open_evdev_lid_switch()
    lid_file = find_lid_state_file()

    if dev is None and lid_file is None:
        logger.info("No lid switch found")
        on_lid_present(False)
        return False

    on_lid_present(True)

    # evdev has no cheap "current switch state" query; the ACPI file does.
    initial = read_lid_closed(lid_file) if lid_file is not None else None
    if initial is not None:
        on_lid_state(initial, False)

    if dev is not None:
        logger.info("Monitoring lid switch from: %s", getattr(dev, "path", dev))
        target = lambda: monitor_evdev_lid(dev, is_running=is_running, on_lid_state=on_lid_state, logger=logger)
    else:
        logger.info("Monitoring lid state from: %s", lid_file)
        target = lambda: poll_lid_state_file(
            lid_file,
            is_running=is_running,
            on_lid_state=on_lid_state,
            logger=logger,
            initial=initial,
        )

    threading.Thread(target=target, daemon=True).start()
    return True
