from enum import Enum


class TurnState(str, Enum):
    IDLE = "idle"
    BATCHING = "batching"
    EVALUATING = "evaluating"
    SUPPRESSED = "suppressed"
    HANDOFF_SENT = "handoff_sent"
    GENERATING = "generating"
    REPLIED = "replied"


TERMINAL_STATES = {TurnState.SUPPRESSED, TurnState.HANDOFF_SENT, TurnState.REPLIED}

VALID_TRANSITIONS = {
    TurnState.IDLE: [TurnState.BATCHING],
    TurnState.BATCHING: [TurnState.EVALUATING],
    TurnState.EVALUATING: [TurnState.SUPPRESSED, TurnState.HANDOFF_SENT, TurnState.GENERATING],
    # A failed or duplicate generation ends the turn without a reply.
    TurnState.GENERATING: [TurnState.REPLIED, TurnState.SUPPRESSED],
    TurnState.SUPPRESSED: [TurnState.IDLE],
    TurnState.HANDOFF_SENT: [TurnState.IDLE],
    TurnState.REPLIED: [TurnState.IDLE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: TurnState, to_state: TurnState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: TurnState, to_state: TurnState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: TurnState, to_state: TurnState) -> TurnState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def is_terminal(state: TurnState) -> bool:
    return state in TERMINAL_STATES
