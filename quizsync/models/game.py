from typing import List, Optional

from pydantic import BaseModel

from quizsync.models.events import LeaderboardEntry
from quizsync.models.session import Phase


class GameState(BaseModel):
    """Broadcast-derived projection of a running session; never persisted."""

    phase: Phase = Phase.LOBBY
    current_question_index: int = 0
    time_remaining: int = 0


class SessionSnapshot(BaseModel):
    """Authoritative state served to late joiners and reconnecting clients."""

    session_id: str
    pin: str
    status: str
    phase: Phase
    current_question_index: int
    question_started_at: Optional[float] = None
    time_remaining: int
    question_count: int
    players: List[LeaderboardEntry]
