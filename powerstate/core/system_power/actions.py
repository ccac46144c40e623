from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from powerstate.core.utils.exceptions import is_permission_denied

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int | None = None


class ActionExecutor(Protocol):
    def run(self, command: str) -> ActionResult: ...


class PowerSaveSink(Protocol):
    def apply(self, on_battery: bool) -> bool: ...


class SubprocessActionExecutor:
    """Run a transition command synchronously and capture its diagnostics.

    There is no timeout: suspend/hibernate helpers return only after resume.
    """

    def run(self, command: str) -> ActionResult:
        argv = shlex.split(command)
        if not argv:
            return ActionResult(ok=False, stderr="empty command")

        logger.debug("executing command: %s", command)
        try:
            cp = subprocess.run(argv, check=False, capture_output=True, text=True)
        except OSError as exc:
            reason = "permission denied" if is_permission_denied(exc) else (exc.strerror or str(exc))
            logger.warning("Failed to spawn %s: %s", command, reason)
            return ActionResult(ok=False, stderr=f"Failed to spawn: {reason}")

        if cp.returncode != 0:
            logger.warning("%s exited with status %s", command, cp.returncode)
        return ActionResult(
            ok=cp.returncode == 0,
            stdout=cp.stdout or "",
            stderr=cp.stderr or "",
            returncode=cp.returncode,
        )


class PmPowerSaveSink:
    """Push the on-battery policy to pm-utils' power.d scripts.

    Fire-and-forget: the daemon never waits for the hooks to finish.
    """

    def __init__(self, command: str = "/usr/sbin/pm-powersave") -> None:
        self.command = command

    def apply(self, on_battery: bool) -> bool:
        argv = [*shlex.split(self.command), "true" if on_battery else "false"]
        logger.debug("executing command: %s", " ".join(argv))
        try:
            subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            logger.warning("failed to run script: %s", exc)
            return False
        return True


class NullPowerSaveSink:
    def apply(self, on_battery: bool) -> bool:
        logger.debug("power-save policy not applied (on_battery=%s)", on_battery)
        return True
