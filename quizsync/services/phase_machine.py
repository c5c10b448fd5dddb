from enum import Enum

from quizsync.models.session import Phase
from quizsync.services.errors import InvalidTransition


class Action(str, Enum):
    START = "start"
    TIMEOUT = "timeout"
    ADVANCE = "advance"
    NEXT = "next"
    END = "end"


_ALLOWED = {
    Action.START: {Phase.LOBBY},
    Action.TIMEOUT: {Phase.QUESTION},
    Action.ADVANCE: {Phase.QUESTION},
    Action.NEXT: {Phase.RESULTS},
    Action.END: {Phase.RESULTS},
}


class PhaseMachine:
    """Host-owned game loop: lobby, question, results, ... finished."""

    def __init__(self, question_count: int, phase: Phase = Phase.LOBBY, current_question_index: int = 0):
        if question_count < 1:
            raise ValueError("A game needs at least one question")
        self.question_count = question_count
        self.phase = phase
        self.current_question_index = current_question_index

    @property
    def has_next_question(self) -> bool:
        return self.current_question_index + 1 < self.question_count

    @property
    def finished(self) -> bool:
        return self.phase == Phase.FINISHED

    def can(self, action: Action) -> bool:
        return self.phase in _ALLOWED[action]

    def apply(self, action: Action) -> Phase:
        if not self.can(action):
            raise InvalidTransition(self.phase.value, action.value)

        if action == Action.START:
            self.phase = Phase.QUESTION
            self.current_question_index = 0
        elif action in (Action.TIMEOUT, Action.ADVANCE):
            self.phase = Phase.RESULTS
        elif action == Action.NEXT and self.has_next_question:
            self.phase = Phase.QUESTION
            self.current_question_index += 1
        else:
            self.phase = Phase.FINISHED
        return self.phase
