from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class _Throttle:
    last_logged: float
    suppressed: int = 0


_throttles: dict[str, _Throttle] = {}
_lock = threading.Lock()


def log_throttled(
    logger,
    key: str,
    *,
    interval_s: float,
    level: int,
    msg: str,
    exc: BaseException | None = None,
) -> bool:
    """Log *msg* at most once per *interval_s* for *key*.

    Pollers hit the same failure every few seconds; repeats inside the window
    are counted and the count is appended to the next message that gets out.
    Returns True if something was logged.
    """

    now = time.monotonic()
    with _lock:
        state = _throttles.get(key)
        if state is not None and (now - state.last_logged) < interval_s:
            state.suppressed += 1
            return False
        suppressed = state.suppressed if state is not None else 0
        _throttles[key] = _Throttle(last_logged=now)

    if suppressed:
        msg = f"{msg} ({suppressed} similar message(s) suppressed)"

    if exc is None:
        logger.log(level, msg)
    else:
        logger.log(level, msg, exc_info=(type(exc), exc, exc.__traceback__))
    return True


def reset_throttle(key: str | None = None) -> None:
    with _lock:
        if key is None:
            _throttles.clear()
        else:
            _throttles.pop(key, None)
