import time
from typing import List, Optional

from quizsync.database.store import SessionStore
from quizsync.models.game import SessionSnapshot
from quizsync.models.question import Question
from quizsync.models.session import GameSession, Phase
from quizsync.services import leaderboard
from quizsync.services.errors import SessionNotFound


def time_remaining(
    session: GameSession, questions: List[Question], now: Optional[float] = None
) -> int:
    """Seconds left on the active question according to the stored start time."""
    if session.phase != Phase.QUESTION or session.question_started_at is None:
        return 0
    if not 0 <= session.current_question_index < len(questions):
        return 0
    now = time.time() if now is None else now
    limit = questions[session.current_question_index].time_limit
    elapsed = int(max(0.0, now - session.question_started_at))
    return max(0, limit - elapsed)


async def load_snapshot(
    store: SessionStore, session_id: str, now: Optional[float] = None
) -> SessionSnapshot:
    session = await store.get_session(session_id)
    if not session:
        raise SessionNotFound(session_id)
    questions = await store.get_questions(session.quiz_id)
    players = await store.list_players(session_id)

    return SessionSnapshot(
        session_id=session.id,
        pin=session.pin,
        status=session.status.value,
        phase=session.phase,
        current_question_index=session.current_question_index,
        question_started_at=session.question_started_at,
        time_remaining=time_remaining(session, questions, now),
        question_count=len(questions),
        players=leaderboard.snapshot(players),
    )
