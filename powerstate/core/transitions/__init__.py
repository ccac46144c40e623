from __future__ import annotations

from .authority import PkcheckAuthority, UnixProcessSubject
from .gate import Authority, CallContext, TransitionAction, TransitionGate, TransitionKind

__all__ = [
    "Authority",
    "CallContext",
    "PkcheckAuthority",
    "TransitionAction",
    "TransitionGate",
    "TransitionKind",
    "UnixProcessSubject",
]
