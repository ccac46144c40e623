from __future__ import annotations

from .actions import ActionExecutor, ActionResult, PmPowerSaveSink, PowerSaveSink, SubprocessActionExecutor
from .capabilities import CapabilityFacts, SleepStates, probe_capabilities, probe_sleep_states, probe_swap_headroom

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "CapabilityFacts",
    "PmPowerSaveSink",
    "PowerSaveSink",
    "SleepStates",
    "SubprocessActionExecutor",
    "probe_capabilities",
    "probe_sleep_states",
    "probe_swap_headroom",
]
