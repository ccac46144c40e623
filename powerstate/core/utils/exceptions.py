from __future__ import annotations

from enum import Enum


class TransitionOutcome(str, Enum):
    ALLOWED_AND_EXECUTED = "allowed-and-executed"
    DENIED_NO_CAPABILITY = "denied-no-capability"
    DENIED_NOT_AUTHORIZED = "denied-not-authorized"
    FAILED_EXTERNAL_ACTION = "failed-external-action"
    FAILED_INTERNAL = "failed-internal"


class PowerDaemonError(Exception):
    """Base error returned to callers of the daemon ("GeneralError")."""

    kind = "GeneralError"
    outcome = TransitionOutcome.FAILED_INTERNAL


class NotSupportedError(PowerDaemonError):
    kind = "NotSupported"
    outcome = TransitionOutcome.DENIED_NO_CAPABILITY


class NotAuthorizedError(PowerDaemonError):
    kind = "NotAuthorized"
    outcome = TransitionOutcome.DENIED_NOT_AUTHORIZED


class NoSuchDeviceError(PowerDaemonError):
    kind = "NoSuchDevice"


class ExternalActionFailedError(PowerDaemonError):
    kind = "ExternalActionFailed"
    outcome = TransitionOutcome.FAILED_EXTERNAL_ACTION

    def __init__(self, command: str, *, stdout: str = "", stderr: str = "") -> None:
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Failed to run {command}: stdout:{stdout}, stderr:{stderr}")


class DuplicateKeyError(PowerDaemonError):
    """A native handle was inserted twice into the device registry."""

    kind = "DuplicateKey"


class ProbeReadFailedError(PowerDaemonError):
    kind = "ProbeReadFailed"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"failed to open {path}: {reason}")


def is_permission_denied(exc: Exception) -> bool:
    """Best-effort check for permission/authorization failures.

    Used to give a useful diagnostic when a transition command can't even be
    launched (missing execute bit, sandboxed service user).
    """

    if isinstance(exc, PermissionError):
        return True

    errno = getattr(exc, "errno", None)
    if errno in (1, 13):
        # EPERM=1, EACCES=13
        return True

    try:
        msg = str(exc).lower()
    except Exception:
        return False

    return "permission denied" in msg or "access denied" in msg or "not permitted" in msg
