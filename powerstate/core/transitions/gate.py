from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from powerstate.core.system_power.actions import ActionExecutor
from powerstate.core.system_power.capabilities import CapabilityFacts
from powerstate.core.utils.exceptions import (
    ExternalActionFailedError,
    NotAuthorizedError,
    NotSupportedError,
    PowerDaemonError,
    TransitionOutcome,
)

logger = logging.getLogger(__name__)


class TransitionKind(str, Enum):
    SUSPEND = "suspend"
    HIBERNATE = "hibernate"


@dataclass(frozen=True)
class CallContext:
    """Who is asking. Filled in by the transport layer."""

    pid: Optional[int] = None
    uid: Optional[int] = None
    sender: Optional[str] = None


class Authority(Protocol):
    def resolve_subject(self, context: CallContext) -> Optional[Any]: ...

    def check_authorization(self, subject: Any, action_id: str, context: CallContext) -> bool: ...


@dataclass(frozen=True)
class TransitionAction:
    action_id: str
    command: str


class TransitionGate:
    """Decide whether a suspend/hibernate request may run, and run it.

    Capability is checked before authorization: it is cheap, and there is no
    point prompting the user for a transition the kernel can't perform.
    """

    def __init__(
        self,
        *,
        capabilities: Callable[[], CapabilityFacts],
        authority: Authority,
        executor: ActionExecutor,
        actions: dict[TransitionKind, TransitionAction],
    ) -> None:
        self._capabilities = capabilities
        self._authority = authority
        self._executor = executor
        self._actions = dict(actions)

    def _check_capability(self, kind: TransitionKind, facts: CapabilityFacts) -> None:
        if kind == TransitionKind.SUSPEND:
            if not facts.kernel_can_suspend:
                raise NotSupportedError("No kernel support")
            return

        if not facts.kernel_can_hibernate:
            raise NotSupportedError("No kernel support")
        if not facts.kernel_has_swap_space:
            raise NotSupportedError("Not enough swap space")

    def request(self, kind: TransitionKind, context: CallContext) -> TransitionOutcome:
        kind = TransitionKind(kind)
        action = self._actions.get(kind)
        if action is None:
            raise NotSupportedError(f"No action configured for {kind.value}")

        try:
            self._check_capability(kind, self._capabilities())
        except NotSupportedError as exc:
            logger.info("%s denied: %s", kind.value, exc)
            raise

        subject = self._authority.resolve_subject(context)
        if subject is None:
            logger.warning("%s: could not resolve caller identity for %s", kind.value, context)
            raise PowerDaemonError("Unable to identify caller")

        if not self._authority.check_authorization(subject, action.action_id, context):
            logger.info("%s denied: %s not authorized for %s", kind.value, subject, action.action_id)
            raise NotAuthorizedError(f"Not authorized for {action.action_id}")

        logger.info("%s authorized for %s; running %s", kind.value, subject, action.command)
        result = self._executor.run(action.command)
        if not result.ok:
            raise ExternalActionFailedError(action.command, stdout=result.stdout, stderr=result.stderr)

        return TransitionOutcome.ALLOWED_AND_EXECUTED
