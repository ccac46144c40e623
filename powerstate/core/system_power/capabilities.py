from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from powerstate.core.utils.exceptions import ProbeReadFailedError

logger = logging.getLogger(__name__)


_SLEEP_STATE_DEFAULT = Path("/sys/power/state")
_MEMINFO_DEFAULT = Path("/proc/meminfo")

# If using more memory compared to usable swap, disable hibernate.
DEFAULT_SWAP_WATERLINE = 80.0


@dataclass(frozen=True)
class SleepStates:
    can_suspend: bool
    can_hibernate: bool
    error: Optional[ProbeReadFailedError] = None


@dataclass(frozen=True)
class CapabilityFacts:
    kernel_can_suspend: bool = False
    kernel_can_hibernate: bool = False
    kernel_has_swap_space: bool = False
    swap_headroom: float = 0.0
    probe_errors: tuple[ProbeReadFailedError, ...] = ()

    @property
    def can_suspend(self) -> bool:
        return bool(self.kernel_can_suspend)

    @property
    def can_hibernate(self) -> bool:
        return bool(self.kernel_can_hibernate) and bool(self.kernel_has_swap_space)


def _sleep_state_path() -> Path:
    # Test hook: allow overriding the sysfs source.
    p = os.environ.get("POWERSTATE_SLEEP_STATE_PATH")
    return Path(p) if p else _SLEEP_STATE_DEFAULT


def _meminfo_path() -> Path:
    p = os.environ.get("POWERSTATE_MEMINFO_PATH")
    return Path(p) if p else _MEMINFO_DEFAULT


def read_probe_source(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError as exc:
        raise ProbeReadFailedError(str(path), exc.strerror or str(exc)) from exc


def parse_sleep_states(contents: str) -> SleepStates:
    """Parse `/sys/power/state`, e.g. ``freeze mem disk``."""

    tokens = set(str(contents or "").split())
    return SleepStates(can_suspend="mem" in tokens, can_hibernate="disk" in tokens)


def probe_sleep_states(path: Path | None = None) -> SleepStates:
    """See what the kernel can do.

    An unreadable source is not fatal: both transitions are reported
    unsupported and the error is returned for the caller to record.
    """

    path = Path(path) if path is not None else _sleep_state_path()
    try:
        contents = read_probe_source(path)
    except ProbeReadFailedError as exc:
        logger.warning("%s", exc)
        return SleepStates(can_suspend=False, can_hibernate=False, error=exc)
    return parse_sleep_states(contents)


def _meminfo_value(rest: str) -> Optional[int]:
    fields = rest.split()
    if not fields:
        return None
    try:
        return int(fields[0])
    except ValueError:
        return None


def parse_swap_headroom(contents: str) -> float:
    """Return active memory as a percentage of free swap.

    Both figures come from `/proc/meminfo` in the same unit (kB). Missing or
    zero figures mean "not a concern" and return 0.
    """

    active = 0
    swap_free = 0
    for line in str(contents or "").splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key == "SwapFree":
            swap_free = _meminfo_value(rest) or 0
        elif key == "Active":
            active = _meminfo_value(rest) or 0

    percentage = 0.0
    if swap_free > 0 and active > 0:
        percentage = float((active * 100) // swap_free)
    logger.debug("total swap available %i kb, active memory %i kb (%.1f%%)", swap_free, active, percentage)
    return percentage


def probe_swap_headroom(path: Path | None = None, *, errors: list[ProbeReadFailedError] | None = None) -> float:
    """Sample memory pressure; an unreadable source counts as no pressure (0).

    Read failures are appended to *errors* when given.
    """

    path = Path(path) if path is not None else _meminfo_path()
    try:
        contents = read_probe_source(path)
    except ProbeReadFailedError as exc:
        logger.warning("%s", exc)
        if errors is not None:
            errors.append(exc)
        return 0.0
    return parse_swap_headroom(contents)


def probe_capabilities(
    *,
    sleep_state_path: Path | str | None = None,
    meminfo_path: Path | str | None = None,
    swap_waterline: float = DEFAULT_SWAP_WATERLINE,
) -> CapabilityFacts:
    """Probe suspend/hibernate support once.

    Memory pressure is sampled here only; it is not monitored afterwards.
    """

    states = probe_sleep_states(Path(sleep_state_path) if sleep_state_path else None)
    errors: list[ProbeReadFailedError] = []
    if states.error is not None:
        errors.append(states.error)

    has_swap_space = False
    headroom = 0.0
    if states.can_hibernate:
        headroom = probe_swap_headroom(Path(meminfo_path) if meminfo_path else None, errors=errors)
        if headroom < float(swap_waterline):
            has_swap_space = True
        else:
            logger.debug("not enough swap to enable hibernate")

    facts = CapabilityFacts(
        kernel_can_suspend=states.can_suspend,
        kernel_can_hibernate=states.can_hibernate,
        kernel_has_swap_space=has_swap_space,
        swap_headroom=headroom,
        probe_errors=tuple(errors),
    )
    logger.info(
        "Kernel capabilities: suspend=%s hibernate=%s swap_ok=%s (headroom %.0f%%, waterline %.0f%%)",
        facts.kernel_can_suspend,
        facts.kernel_can_hibernate,
        facts.kernel_has_swap_space,
        headroom,
        float(swap_waterline),
    )
    return facts
