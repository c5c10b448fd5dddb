from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SessionStatus(str, Enum):
    LOBBY = "lobby"
    PLAYING = "playing"
    FINISHED = "finished"


class Phase(str, Enum):
    LOBBY = "lobby"
    QUESTION = "question"
    RESULTS = "results"
    FINISHED = "finished"


class GameSession(BaseModel):
    id: str
    pin: str
    quiz_id: str
    host_id: str
    status: SessionStatus = SessionStatus.LOBBY
    phase: Phase = Phase.LOBBY
    current_question_index: int = 0
    # Epoch seconds at which the active question opened, None outside a question
    question_started_at: Optional[float] = None
    created_at: float
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
