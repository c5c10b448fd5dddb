class QuizSyncError(Exception):
    """Base class for errors raised by the game services."""


class SessionNotFound(QuizSyncError):
    def __init__(self, key: str):
        super().__init__(f"Game {key} not found.")
        self.key = key


class SessionAlreadyStarted(QuizSyncError):
    def __init__(self, session_id: str):
        super().__init__("This game has already started.")
        self.session_id = session_id


class InvalidJoinRequest(QuizSyncError):
    pass


class DuplicateSubmission(QuizSyncError):
    def __init__(self, player_id: str, question_id: str):
        super().__init__(
            f"Player {player_id} already answered question {question_id}."
        )
        self.player_id = player_id
        self.question_id = question_id


class InvalidTransition(QuizSyncError):
    def __init__(self, phase: str, action: str):
        super().__init__(f"Cannot {action} while the game is in phase {phase}.")
        self.phase = phase
        self.action = action


class NotEnoughPlayers(QuizSyncError):
    pass


class StoreUnavailable(QuizSyncError):
    """The store connection has not been opened yet."""


class PlayerNotFound(QuizSyncError):
    def __init__(self, player_id: str):
        super().__init__(f"Player {player_id} is not part of this game.")
        self.player_id = player_id
