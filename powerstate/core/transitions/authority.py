from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .gate import CallContext

logger = logging.getLogger(__name__)


_PROC_ROOT_DEFAULT = Path("/proc")


@dataclass(frozen=True)
class UnixProcessSubject:
    pid: int
    start_time: int
    uid: Optional[int] = None

    def pkcheck_process_arg(self) -> str:
        # pid,start-time[,uid] pins the check to this exact process even if
        # the pid is recycled while the prompt is up.
        if self.uid is None:
            return f"{self.pid},{self.start_time}"
        return f"{self.pid},{self.start_time},{self.uid}"


def _proc_root() -> Path:
    root = os.environ.get("POWERSTATE_PROC_ROOT")
    return Path(root) if root else _PROC_ROOT_DEFAULT


def read_process_start_time(pid: int, *, proc_root: Path | None = None) -> Optional[int]:
    """Return field 22 (starttime) of /proc/<pid>/stat, or None if the process is gone."""

    root = proc_root or _proc_root()
    try:
        raw = (root / str(int(pid)) / "stat").read_text(errors="ignore")
    except OSError:
        return None

    # comm (field 2) may contain spaces and parens; split after the last ')'.
    _, sep, rest = raw.rpartition(")")
    if not sep:
        return None
    fields = rest.split()
    # rest starts at field 3 (state); starttime is field 22.
    try:
        return int(fields[19])
    except (IndexError, ValueError):
        return None


class PkcheckAuthority:
    """Authorization via polkit's `pkcheck` helper.

    Root callers are authorized without consulting polkit. Any interactive
    prompt is polkit's business; we only consume the exit status.
    """

    def __init__(self, *, pkcheck: str | None = None, proc_root: Path | None = None) -> None:
        self._pkcheck = pkcheck
        self._proc_root = proc_root

    def resolve_subject(self, context: CallContext) -> Optional[UnixProcessSubject]:
        if context is None or context.pid is None:
            return None
        start_time = read_process_start_time(context.pid, proc_root=self._proc_root)
        if start_time is None:
            logger.warning("Caller pid %s vanished before it could be authorized", context.pid)
            return None
        return UnixProcessSubject(pid=int(context.pid), start_time=start_time, uid=context.uid)

    def check_authorization(self, subject: UnixProcessSubject, action_id: str, context: CallContext) -> bool:
        if subject.uid == 0:
            return True

        pkcheck = self._pkcheck or shutil.which("pkcheck")
        if not pkcheck:
            logger.warning("pkcheck not available; denying %s", action_id)
            return False

        argv = [
            pkcheck,
            "--action-id",
            action_id,
            "--process",
            subject.pkcheck_process_arg(),
            "--allow-user-interaction",
        ]
        try:
            cp = subprocess.run(argv, check=False, capture_output=True, text=True)
        except OSError as exc:
            logger.warning("Failed to run pkcheck: %s", exc)
            return False

        if cp.returncode != 0:
            logger.debug("pkcheck denied %s for %s (status %s): %s", action_id, subject, cp.returncode, (cp.stderr or "").strip())
            return False
        return True
