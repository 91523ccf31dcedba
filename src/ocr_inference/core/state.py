"""Engine lifecycle state machine.

Every state change goes through ``next_state``. READY_FALLBACK can only be
left for DISPOSED, and DISPOSED accepts nothing.
"""

from enum import Enum
from typing import Dict, Tuple

from ..exceptions import EngineDisposedError, InvalidStateTransition
from ..types import EngineState


class EngineEvent(Enum):
    BEGIN_INIT = "begin_init"
    PRIMARY_READY = "primary_ready"
    FALLBACK_READY = "fallback_ready"
    INIT_FAILED = "init_failed"
    DISPOSE = "dispose"


_TRANSITIONS: Dict[Tuple[EngineState, EngineEvent], EngineState] = {
    (EngineState.UNINITIALIZED, EngineEvent.BEGIN_INIT): EngineState.INITIALIZING,
    (EngineState.INITIALIZING, EngineEvent.PRIMARY_READY): EngineState.READY_PRIMARY,
    (EngineState.INITIALIZING, EngineEvent.FALLBACK_READY): EngineState.READY_FALLBACK,
    (EngineState.INITIALIZING, EngineEvent.INIT_FAILED): EngineState.UNINITIALIZED,
    (EngineState.READY_PRIMARY, EngineEvent.FALLBACK_READY): EngineState.READY_FALLBACK,
}


def next_state(state: EngineState, event: EngineEvent) -> EngineState:
    """Pure transition function."""
    if state is EngineState.DISPOSED:
        raise EngineDisposedError(event.value)
    if event is EngineEvent.DISPOSE:
        return EngineState.DISPOSED
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidStateTransition(state, event) from None


def is_ready(state: EngineState) -> bool:
    return state in (EngineState.READY_PRIMARY, EngineState.READY_FALLBACK)


__all__ = ["EngineEvent", "next_state", "is_ready"]
