from enum import Enum


class VerificationState(str, Enum):
    NEW = "new"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"


VALID_TRANSITIONS = {
    VerificationState.NEW: [VerificationState.PENDING_VERIFICATION, VerificationState.VERIFIED],
    VerificationState.PENDING_VERIFICATION: [VerificationState.VERIFIED],
    VerificationState.VERIFIED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: VerificationState, to_state: VerificationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def parse_state(value) -> VerificationState:
    """Unknown stored values are treated as new."""
    try:
        return VerificationState(value)
    except ValueError:
        return VerificationState.NEW


def can_transition(from_state: VerificationState, to_state: VerificationState) -> bool:
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: VerificationState, to_state: VerificationState) -> VerificationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def start_challenge(current_state: VerificationState) -> VerificationState:
    """/start sent: the user now owes an answer."""
    return transition(current_state, VerificationState.PENDING_VERIFICATION)


def pass_challenge(current_state: VerificationState) -> VerificationState:
    return transition(current_state, VerificationState.VERIFIED)


def force_verified(current_state: VerificationState) -> VerificationState:
    """Operator bypass. Idempotent, never raises."""
    return VerificationState.VERIFIED


def normalize_answer(value: str) -> str:
    return (value or "").strip().casefold()


def accepted_answers(expected: str) -> set[str]:
    """Pipe-delimited alternatives, e.g. "8|27|29"."""
    return {normalize_answer(item) for item in (expected or "").split("|") if normalize_answer(item)}


def is_correct_answer(answer: str, expected: str) -> bool:
    return normalize_answer(answer) in accepted_answers(expected)
