from __future__ import annotations

from typing import Dict, List

from ..domain.models import TurnState

# Turn lifecycle: a new turn may start from Idle or from any terminal state.
TURN_TRANSITIONS: Dict[TurnState, List[TurnState]] = {
    TurnState.IDLE: [TurnState.STREAMING],
    TurnState.STREAMING: [TurnState.COMPLETE, TurnState.CANCELLED, TurnState.ERRORED],
    TurnState.COMPLETE: [TurnState.STREAMING, TurnState.IDLE],
    TurnState.CANCELLED: [TurnState.STREAMING, TurnState.IDLE],
    TurnState.ERRORED: [TurnState.STREAMING, TurnState.IDLE],
}

TERMINAL_STATES = frozenset({TurnState.COMPLETE, TurnState.CANCELLED, TurnState.ERRORED})


def is_valid_transition(current: TurnState, target: TurnState) -> bool:
    return target in TURN_TRANSITIONS.get(current, [])


def is_terminal(state: TurnState) -> bool:
    return state in TERMINAL_STATES
