from __future__ import annotations

import logging
import os
import sys
from contextlib import suppress

from powerstate.core.config import lock_file_path

logger = logging.getLogger(__name__)

_instance_lock_fh = None


def configure_logging(*, debug: bool = False) -> None:
    """Configure root logging for the daemon.

    If callers already configured logging handlers, we don't override them.
    """

    if logging.getLogger().handlers:
        return

    level = logging.DEBUG if (debug or os.environ.get("POWERSTATE_DEBUG")) else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def acquire_single_instance_lock() -> bool:
    """Ensure only one daemon owns the device registry.

    Returns False when another process holds the lock. Raises OSError when the
    lock file itself cannot be created (e.g. /run not writable).
    """

    global _instance_lock_fh

    try:
        import fcntl  # Linux/Unix
    except Exception:
        return True

    lock_path = lock_file_path()
    with suppress(OSError):
        lock_path.parent.mkdir(parents=True, exist_ok=True)

    fh = open(lock_path, "a+")
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fh.close()
        return False

    _instance_lock_fh = fh
    fh.seek(0)
    fh.truncate()
    fh.write(f"pid={os.getpid()}\n")
    fh.flush()
    return True


def acquire_single_instance_or_exit() -> None:
    """Acquire the single-instance lock; exit 0 if another daemon runs, 1 if no lock file."""

    try:
        if acquire_single_instance_lock():
            return
    except OSError as exc:
        logger.error("Cannot create lock file %s: %s", lock_file_path(), exc)
        sys.exit(1)

    logger.error("powerstate daemon is already running (lock held). Not starting a second instance.")
    sys.exit(0)
