from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from quizsync.models.session import Phase


class EventType(str, Enum):
    PLAYER_JOINED = "player-joined"
    PLAYER_LEFT = "player-left"
    TIMER_TICK = "timer-tick"
    PHASE_CHANGED = "phase-changed"
    LEADERBOARD_SNAPSHOT = "leaderboard-snapshot"
    # Store change notification, published on the changes channel
    ROW_CHANGED = "row-changed"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PlayerJoined(_Payload):
    id: str
    nickname: str
    score: int = 0
    avatar_url: Optional[str] = None


class PlayerLeft(_Payload):
    id: str


class TimerTick(_Payload):
    time_remaining: int = Field(alias="timeRemaining")


class PhaseChanged(_Payload):
    phase: Phase
    current_question_index: Optional[int] = Field(default=None, alias="currentQuestionIndex")
    correct_answer_index: Optional[int] = Field(default=None, alias="correctAnswerIndex")


class LeaderboardEntry(_Payload):
    id: str
    nickname: str
    score: int


class LeaderboardSnapshot(_Payload):
    players: List[LeaderboardEntry]


class RowChanged(_Payload):
    table: str
    id: str


class BusMessage(BaseModel):
    """Envelope for everything carried by the realtime bus."""

    event: EventType
    payload: Dict[str, Any] = {}

    def to_wire(self) -> dict:
        return {"event": self.event.value, "payload": self.payload}
