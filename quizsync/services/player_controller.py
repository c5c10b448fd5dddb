import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from pymongo.errors import PyMongoError

from quizsync.database.store import SessionStore, new_id
from quizsync.models.answer import AnswerSubmission
from quizsync.models.events import (
    EventType,
    LeaderboardEntry,
    LeaderboardSnapshot,
    PhaseChanged,
    PlayerJoined,
    PlayerLeft,
    RowChanged,
    TimerTick,
)
from quizsync.models.game import GameState
from quizsync.models.player import Player
from quizsync.models.question import Question
from quizsync.models.session import Phase
from quizsync.realtime.bus import RealtimeBus
from quizsync.services import leaderboard
from quizsync.services.errors import DuplicateSubmission, PlayerNotFound, SessionNotFound
from quizsync.services.session_state import load_snapshot

logger = logging.getLogger(__name__)

Listener = Callable[[dict], Awaitable[None]]


class ViewState(str, Enum):
    WAITING = "waiting"
    ANSWERING = "answering"
    SUBMITTED = "submitted"
    VIEWING_RESULTS = "viewing-results"
    FINISHED = "finished"


class PlayerController:
    """
    What one player sees of a session, folded from bus events.

    The controller never decides the phase. It follows phase-changed
    broadcasts, renders timer ticks, and writes this player's own answer
    rows. Scores come from the host through leaderboard snapshots and store
    change notifications.
    """

    def __init__(
        self,
        store: SessionStore,
        bus: RealtimeBus,
        session_id: str,
        player_id: str,
        listener: Optional[Listener] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.bus = bus
        self.session_id = session_id
        self.player_id = player_id
        self.listener = listener
        self._now = clock

        self.player: Optional[Player] = None
        self.questions: List[Question] = []
        self.state = GameState()
        self.players: List[LeaderboardEntry] = []
        self.submitted = False
        self.selected_answer: Optional[int] = None
        self.last_answer_correct: Optional[bool] = None
        self.correct_answer_index: Optional[int] = None
        # Set when phase-changed(question) arrives; elapsed time is measured from here
        self.question_started_at: Optional[float] = None
        self._tick_received_at: Optional[float] = None
        self.notices: List[str] = []

        self.realtime = bus.client()

    @property
    def view_state(self) -> ViewState:
        phase = self.state.phase
        if phase == Phase.QUESTION:
            return ViewState.SUBMITTED if self.submitted else ViewState.ANSWERING
        if phase == Phase.RESULTS:
            return ViewState.VIEWING_RESULTS
        if phase == Phase.FINISHED:
            return ViewState.FINISHED
        return ViewState.WAITING

    @property
    def current_question(self) -> Optional[Question]:
        index = self.state.current_question_index
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None

    @property
    def score(self) -> int:
        for entry in self.players:
            if entry.id == self.player_id:
                return entry.score
        return self.player.score if self.player else 0

    async def open(self):
        session = await self.store.get_session(self.session_id)
        if not session:
            raise SessionNotFound(self.session_id)
        self.player = await self.store.get_player(self.player_id)
        if not self.player or self.player.session_id != self.session_id:
            raise PlayerNotFound(self.player_id)
        self.questions = await self.store.get_questions(session.quiz_id)

        self.realtime.on(EventType.PHASE_CHANGED, self._on_phase_changed)
        self.realtime.on(EventType.TIMER_TICK, self._on_timer_tick)
        self.realtime.on(EventType.PLAYER_JOINED, self._on_player_joined)
        self.realtime.on(EventType.PLAYER_LEFT, self._on_player_left)
        self.realtime.on(EventType.LEADERBOARD_SNAPSHOT, self._on_leaderboard)
        self.realtime.on(EventType.ROW_CHANGED, self._on_row_changed)
        self.realtime.on_resync(self.resync)
        await self.realtime.connect(self.session_id)
        logger.info(f"Player {self.player.nickname} following session {self.session_id}")

    async def close(self):
        await self.realtime.publish(
            EventType.PLAYER_LEFT, PlayerLeft(id=self.player_id).to_wire()
        )
        await self.realtime.disconnect()

    async def resync(self):
        """Rebuild local state from the store; missed broadcasts are never replayed."""
        now = self._now()
        snap = await load_snapshot(self.store, self.session_id, now=now)
        question_changed = (snap.phase, snap.current_question_index) != (
            self.state.phase,
            self.state.current_question_index,
        )

        self.state = GameState(
            phase=snap.phase,
            current_question_index=snap.current_question_index,
            time_remaining=snap.time_remaining,
        )
        self._tick_received_at = now
        self.players = snap.players

        if snap.phase == Phase.QUESTION:
            self.question_started_at = snap.question_started_at or now
            if question_changed:
                self._reset_answer()
            await self._restore_submission()
        elif snap.phase == Phase.RESULTS and self.current_question:
            self.correct_answer_index = self.current_question.correct_answer_index
            await self._restore_submission()

        logger.debug(
            f"Player {self.player_id} resynced: phase={snap.phase.value} question={snap.current_question_index}"
        )
        await self._emit()

    async def _restore_submission(self):
        question = self.current_question
        if question is None:
            return
        existing = await self.store.find_answer(self.session_id, self.player_id, question.id)
        if existing:
            self.submitted = True
            self.selected_answer = existing.answer_index
            self.last_answer_correct = existing.is_correct

    def _reset_answer(self):
        self.submitted = False
        self.selected_answer = None
        self.last_answer_correct = None
        self.correct_answer_index = None

    async def submit(self, answer_index: int) -> bool:
        """Record this player's answer for the active question.

        Returns True only when a new answer row was written.
        """
        if self.state.phase != Phase.QUESTION or self.submitted:
            logger.debug(f"Answer from {self.player_id} ignored in view {self.view_state.value}")
            return False
        question = self.current_question
        if question is None or not 0 <= answer_index < len(question.answers):
            logger.warning(f"Answer index {answer_index} from {self.player_id} is out of range")
            return False

        # Claim the slot before the first await so a second tap is rejected
        self.submitted = True
        self.selected_answer = answer_index
        now = self._now()
        started = self.question_started_at if self.question_started_at is not None else now
        is_correct = answer_index == question.correct_answer_index
        self.last_answer_correct = is_correct

        answer = AnswerSubmission(
            id=new_id(),
            session_id=self.session_id,
            player_id=self.player_id,
            question_id=question.id,
            answer_index=answer_index,
            is_correct=is_correct,
            time_taken=int(max(0.0, now - started)),
            submitted_at=now,
        )
        try:
            await self.store.insert_answer(answer)
        except DuplicateSubmission:
            logger.info(f"Player {self.player_id} already answered question {question.id}")
            await self._emit()
            return False
        except PyMongoError as e:
            logger.error(f"Error saving answer for player {self.player_id}: {e}")
            self._reset_answer()
            self.notices.append("Your answer could not be saved. Please try again.")
            await self._emit()
            return False

        await self._emit()
        return True

    def display_time_remaining(self) -> int:
        """Countdown for display only, interpolated since the last tick."""
        if self.state.phase != Phase.QUESTION:
            return 0
        if self._tick_received_at is None:
            return self.state.time_remaining
        since_tick = int(max(0.0, self._now() - self._tick_received_at))
        return max(0, self.state.time_remaining - since_tick)

    # Bus handlers

    async def _on_phase_changed(self, payload: dict):
        changed = PhaseChanged(**payload)
        index = changed.current_question_index
        if index is None:
            index = self.state.current_question_index
        new_question = changed.phase == Phase.QUESTION and (
            self.state.phase != Phase.QUESTION or index != self.state.current_question_index
        )

        self.state = GameState(
            phase=changed.phase,
            current_question_index=index,
            time_remaining=self.state.time_remaining,
        )
        if new_question:
            now = self._now()
            self._reset_answer()
            self.question_started_at = now
            self._tick_received_at = now
            question = self.current_question
            self.state.time_remaining = question.time_limit if question else 0
        elif changed.phase != Phase.QUESTION:
            self.state.time_remaining = 0
            if changed.correct_answer_index is not None:
                self.correct_answer_index = changed.correct_answer_index
        await self._emit()

    async def _on_timer_tick(self, payload: dict):
        if self.state.phase != Phase.QUESTION:
            logger.debug(f"Dropping stale timer tick in phase {self.state.phase.value}")
            return
        self.state.time_remaining = TimerTick(**payload).time_remaining
        self._tick_received_at = self._now()
        await self._emit()

    async def _on_player_joined(self, payload: dict):
        joined = PlayerJoined(**payload)
        others = [p for p in self.players if p.id != joined.id]
        entry = LeaderboardEntry(id=joined.id, nickname=joined.nickname, score=joined.score)
        self.players = leaderboard.rank(others + [entry])
        await self._emit()

    async def _on_player_left(self, payload: dict):
        left = PlayerLeft(**payload)
        self.players = [p for p in self.players if p.id != left.id]
        await self._emit()

    async def _on_leaderboard(self, payload: dict):
        self.players = leaderboard.rank(LeaderboardSnapshot(**payload).players)
        await self._emit()

    async def _on_row_changed(self, payload: dict):
        if RowChanged(**payload).table != "players":
            return
        players = await self.store.list_players(self.session_id)
        self.players = leaderboard.snapshot(players)
        await self._emit()

    def view(self) -> dict:
        question = self.current_question
        show_question = question is not None and self.state.phase in (Phase.QUESTION, Phase.RESULTS)
        return {
            "type": "player_state",
            "view": self.view_state.value,
            "phase": self.state.phase.value,
            "current_question_index": self.state.current_question_index,
            "time_remaining": self.display_time_remaining(),
            "question": question.public() if show_question else None,
            "correct_answer_index": self.correct_answer_index if self.state.phase == Phase.RESULTS else None,
            "submitted": self.submitted,
            "selected_answer": self.selected_answer,
            "last_answer_correct": self.last_answer_correct,
            "score": self.score,
            "players": [p.model_dump() for p in self.players],
            "notices": list(self.notices),
        }

    async def _emit(self):
        if self.listener is None:
            return
        try:
            await self.listener(self.view())
        except Exception as e:
            logger.error(f"Error sending player state to {self.player_id}: {e}")
