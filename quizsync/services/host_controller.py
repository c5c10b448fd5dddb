import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pymongo.errors import PyMongoError

from quizsync.config import Settings, get_settings
from quizsync.database.store import SessionStore
from quizsync.models.events import (
    EventType,
    LeaderboardSnapshot,
    PhaseChanged,
    PlayerJoined,
    PlayerLeft,
    RowChanged,
    TimerTick,
)
from quizsync.models.player import Player
from quizsync.models.question import Question
from quizsync.models.session import GameSession, Phase, SessionStatus
from quizsync.realtime.bus import RealtimeBus
from quizsync.services import leaderboard, scoring
from quizsync.services.errors import NotEnoughPlayers, SessionNotFound
from quizsync.services.game_clock import GameClock
from quizsync.services.phase_machine import Action, PhaseMachine

logger = logging.getLogger(__name__)

Listener = Callable[[dict], Awaitable[None]]


class HostController:
    """
    The single authority over one session's game loop.

    Every transition flips the phase machine before the first await, so a
    repeated or overlapping call sees the new phase and returns False
    instead of publishing twice. The host is also the only scorer: answers
    are scored when their question closes.
    """

    def __init__(
        self,
        store: SessionStore,
        bus: RealtimeBus,
        session_id: str,
        settings: Optional[Settings] = None,
        listener: Optional[Listener] = None,
    ):
        self.store = store
        self.bus = bus
        self.session_id = session_id
        self.settings = settings or get_settings()
        self.listener = listener

        self.session: Optional[GameSession] = None
        self.questions: List[Question] = []
        self.machine: Optional[PhaseMachine] = None
        self.players: Dict[str, Player] = {}
        self.departed: Set[str] = set()
        self.time_remaining = 0
        self.question_started_at: Optional[float] = None
        self.notices: List[str] = []

        self.clock = GameClock(
            self._on_tick, self._on_expire, self.settings.tick_interval_seconds
        )
        self.realtime = bus.client()

    @property
    def phase(self) -> Phase:
        return self.machine.phase if self.machine else Phase.LOBBY

    @property
    def current_question(self) -> Optional[Question]:
        if not self.machine:
            return None
        return self.questions[self.machine.current_question_index]

    async def open(self):
        self.session = await self.store.get_session(self.session_id)
        if not self.session:
            raise SessionNotFound(self.session_id)

        self.questions = await self.store.get_questions(self.session.quiz_id)
        self.machine = PhaseMachine(
            len(self.questions),
            phase=self.session.phase,
            current_question_index=self.session.current_question_index,
        )

        self.realtime.on(EventType.PLAYER_JOINED, self._on_player_joined)
        self.realtime.on(EventType.PLAYER_LEFT, self._on_player_left)
        self.realtime.on(EventType.ROW_CHANGED, self._on_row_changed)
        self.realtime.on_resync(self.resync)
        await self.realtime.connect(self.session_id)
        logger.info(f"Host connected to session {self.session_id}")

    async def close(self):
        self.clock.cancel()
        await self.realtime.disconnect()
        logger.info(f"Host left session {self.session_id}")

    async def resync(self):
        """Reload the player list from the store after (re)subscribing."""
        players = await self.store.list_players(self.session_id)
        self.players = {p.id: p for p in players}
        await self._emit()

    # Transitions

    async def start(self) -> bool:
        if not self.machine or not self.machine.can(Action.START):
            logger.warning(f"Ignoring start for session {self.session_id} in phase {self.phase.value}")
            return False

        player_count = await self.store.count_players(self.session_id)
        if player_count < self.settings.min_players_to_start:
            raise NotEnoughPlayers(
                f"At least {self.settings.min_players_to_start} player(s) must join before starting."
            )
        # Another start may have run while the count was awaited
        if not self.machine.can(Action.START):
            return False

        self.machine.apply(Action.START)
        await self._persist(
            {"status": SessionStatus.PLAYING.value, "started_at": time.time()}
        )
        logger.info(f"Session {self.session_id} started with {player_count} players")
        await self._open_question()
        return True

    async def advance(self, action: Action = Action.ADVANCE) -> bool:
        """Close the active question early, or on timeout, and show results."""
        if not self.machine or not self.machine.can(action):
            logger.info(f"{action.value} ignored for session {self.session_id}: phase is {self.phase.value}")
            return False

        self.machine.apply(action)
        self.clock.cancel()
        self.time_remaining = 0
        self.question_started_at = None
        question = self.current_question

        await self._persist(
            {"phase": Phase.RESULTS.value, "question_started_at": None}
        )
        await self.realtime.publish(
            EventType.PHASE_CHANGED,
            PhaseChanged(
                phase=Phase.RESULTS,
                current_question_index=self.machine.current_question_index,
                correct_answer_index=question.correct_answer_index,
            ).to_wire(),
        )
        await self._finalize_question(question)
        await self._publish_leaderboard()
        await self._emit()
        return True

    async def next(self) -> bool:
        if not self.machine or not self.machine.can(Action.NEXT):
            logger.info(f"next ignored for session {self.session_id}: phase is {self.phase.value}")
            return False

        if self.machine.apply(Action.NEXT) == Phase.QUESTION:
            await self._open_question()
        else:
            await self._finish()
        return True

    async def end(self) -> bool:
        if not self.machine or not self.machine.can(Action.END):
            logger.info(f"end ignored for session {self.session_id}: phase is {self.phase.value}")
            return False

        self.machine.apply(Action.END)
        await self._finish()
        return True

    async def _open_question(self):
        question = self.current_question
        index = self.machine.current_question_index
        self.question_started_at = time.time()
        self.time_remaining = question.time_limit

        await self._persist(
            {
                "phase": Phase.QUESTION.value,
                "current_question_index": index,
                "question_started_at": self.question_started_at,
            }
        )
        await self.realtime.publish(
            EventType.PHASE_CHANGED,
            PhaseChanged(phase=Phase.QUESTION, current_question_index=index).to_wire(),
        )
        # A quick advance during the awaits above already closed this question
        if self.machine.phase == Phase.QUESTION and self.machine.current_question_index == index:
            self.clock.start(question.time_limit)
        logger.info(f"Question {index + 1}/{len(self.questions)} open for session {self.session_id}")
        await self._emit()

    async def _finish(self):
        self.clock.cancel()
        self.time_remaining = 0
        self.question_started_at = None
        await self._persist(
            {
                "status": SessionStatus.FINISHED.value,
                "phase": Phase.FINISHED.value,
                "question_started_at": None,
                "ended_at": time.time(),
            }
        )
        await self.realtime.publish(
            EventType.PHASE_CHANGED, PhaseChanged(phase=Phase.FINISHED).to_wire()
        )
        await self._publish_leaderboard()
        logger.info(f"Session {self.session_id} finished")
        await self._emit()

    # Clock callbacks

    async def _on_tick(self, remaining: int):
        if self.phase != Phase.QUESTION:
            return
        self.time_remaining = remaining
        await self.realtime.publish(
            EventType.TIMER_TICK, TimerTick(time_remaining=remaining).to_wire()
        )
        await self._emit()

    async def _on_expire(self):
        await self.advance(Action.TIMEOUT)

    # Scoring

    async def _finalize_question(self, question: Question):
        try:
            answers = await self.store.list_unscored_answers(self.session_id, question.id)
        except PyMongoError as e:
            logger.error(f"Could not load answers for question {question.id}: {e}")
            self.notices.append("Scores for this question could not be loaded.")
            return

        for answer in answers:
            is_correct = answer.answer_index == question.correct_answer_index
            points = scoring.award(question.time_limit, answer.time_taken, is_correct)
            try:
                if not await self.store.set_answer_points(answer, points):
                    continue
                if points:
                    await self.store.increment_score(self.session_id, answer.player_id, points)
            except PyMongoError as e:
                logger.error(f"Error scoring answer {answer.id} for player {answer.player_id}: {e}")
                self.notices.append("A score update failed; the game continues.")
        logger.info(f"Scored {len(answers)} answers for question {question.id}")

    async def _publish_leaderboard(self):
        try:
            players = await self.store.list_players(self.session_id)
        except PyMongoError as e:
            logger.error(f"Could not load leaderboard for session {self.session_id}: {e}")
            return
        self.players = {p.id: p for p in players}
        await self.realtime.publish(
            EventType.LEADERBOARD_SNAPSHOT,
            LeaderboardSnapshot(players=leaderboard.snapshot(players)).to_wire(),
        )

    # Bus handlers

    async def _on_player_joined(self, payload: dict):
        joined = PlayerJoined(**payload)
        self.departed.discard(joined.id)
        self.players[joined.id] = Player(
            id=joined.id,
            session_id=self.session_id,
            nickname=joined.nickname,
            avatar_url=joined.avatar_url,
            score=joined.score,
        )
        await self._emit()

    async def _on_player_left(self, payload: dict):
        self.departed.add(PlayerLeft(**payload).id)
        await self._emit()

    async def _on_row_changed(self, payload: dict):
        if RowChanged(**payload).table == "players":
            await self.resync()

    # Persistence and output

    async def _persist(self, fields: dict):
        try:
            await self.store.update_session(self.session_id, fields)
        except PyMongoError as e:
            logger.error(f"Error updating session {self.session_id}: {e}")
            self.notices.append("The game state could not be saved; the game continues.")
            return
        if self.session:
            self.session = self.session.model_copy(update=fields)

    def snapshot(self) -> dict:
        question = self.current_question if self.phase in (Phase.QUESTION, Phase.RESULTS) else None
        return {
            "type": "host_state",
            "session_id": self.session_id,
            "pin": self.session.pin if self.session else None,
            "phase": self.phase.value,
            "current_question_index": self.machine.current_question_index if self.machine else 0,
            "total_questions": len(self.questions),
            "time_remaining": self.time_remaining,
            "question": question.model_dump() if question else None,
            "players": [
                {**p.summary(), "avatar_url": p.avatar_url, "connected": p.id not in self.departed}
                for p in leaderboard.rank(self.players.values())
            ],
            "notices": list(self.notices),
        }

    async def _emit(self):
        if self.listener is None:
            return
        try:
            await self.listener(self.snapshot())
        except Exception as e:
            logger.error(f"Error sending host state for session {self.session_id}: {e}")
