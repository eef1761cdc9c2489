from enum import Enum
from typing import List, Type
from dataclasses import dataclass


class SubmissionState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TournamentState(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str


class StateMachine:
    STATES: Type[Enum] = None
    INITIAL_STATE: Enum = None
    TRANSITIONS: List[Transition] = []

    def __init__(self, initial_state: Enum = None):
        self._state = initial_state if initial_state is not None else self.INITIAL_STATE
        self._history: List[tuple] = []

    @property
    def state(self) -> Enum:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return [t.action for t in self.TRANSITIONS if t.from_state == self._state]

    def can_transition(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str) -> Enum:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                old_state = self._state
                self._state = t.to_state
                self._history.append((old_state, action, self._state))
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    @classmethod
    def from_state_string(cls, state_str: str) -> "StateMachine":
        """Raises ValueError for a string that is not one of STATES."""
        return cls(initial_state=cls.STATES(state_str))


MODERATION_ACTIONS = {
    SubmissionState.APPROVED: "approve",
    SubmissionState.REJECTED: "reject",
    SubmissionState.PENDING: "reset",
}


def _moderation_transitions() -> List[Transition]:
    return [
        Transition(from_state, to_state, action)
        for from_state in SubmissionState
        for to_state, action in MODERATION_ACTIONS.items()
    ]


class SubmissionStateMachine(StateMachine):
    """
    Moderation lifecycle of a clip submission.

    ``pending`` is the initial state. Moderation is an overwrite: approve,
    reject and reset are accepted from every state, so a decision can be
    re-opened or repeated.
    """
    STATES = SubmissionState
    INITIAL_STATE = SubmissionState.PENDING

    ACTION_FOR_STATUS = MODERATION_ACTIONS
    TRANSITIONS = _moderation_transitions()

    def moderate(self, new_status: str) -> SubmissionState:
        target = SubmissionState(new_status)
        return self.transition(self.ACTION_FOR_STATUS[target])


class TournamentStateMachine(StateMachine):
    STATES = TournamentState
    INITIAL_STATE = TournamentState.UPCOMING

    TRANSITIONS = [
        Transition(TournamentState.UPCOMING, TournamentState.ACTIVE, "start"),
        Transition(TournamentState.UPCOMING, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.ACTIVE, TournamentState.ENDED, "end"),
        Transition(TournamentState.ACTIVE, TournamentState.CANCELLED, "cancel"),
    ]

    @property
    def accepts_submissions(self) -> bool:
        return self._state == TournamentState.ACTIVE
