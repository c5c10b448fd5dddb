import logging
import uuid
from typing import TYPE_CHECKING, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from quizsync.models.answer import AnswerSubmission
from quizsync.models.player import Player
from quizsync.models.question import Question, Quiz
from quizsync.models.session import GameSession, SessionStatus
from quizsync.services.errors import DuplicateSubmission

if TYPE_CHECKING:
    from quizsync.realtime.bus import RealtimeBus

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


class SessionStore:
    """
    Row store for quizzes, sessions, players and answers backed by MongoDB.

    When a bus is attached, every write to a player or answer row is followed
    by a change notification on the session's changes channel.
    """

    def __init__(self, db: AsyncIOMotorDatabase, bus: Optional["RealtimeBus"] = None):
        self.db = db
        self.bus = bus
        self.quizzes = db.quizzes
        self.questions = db.questions
        self.sessions = db.sessions
        self.players = db.players
        self.answers = db.answers

    def _get_db_projection(self):
        return {"_id": 0}

    async def ensure_indexes(self):
        await self.sessions.create_index("id", unique=True)
        await self.sessions.create_index("pin")
        await self.players.create_index("id", unique=True)
        await self.players.create_index(
            [("session_id", ASCENDING), ("score", DESCENDING)]
        )
        await self.questions.create_index(
            [("quiz_id", ASCENDING), ("order_index", ASCENDING)]
        )
        await self.answers.create_index("id", unique=True)
        # One scored answer per player per question per session
        await self.answers.create_index(
            [
                ("session_id", ASCENDING),
                ("player_id", ASCENDING),
                ("question_id", ASCENDING),
            ],
            unique=True,
        )
        logger.info("Session store indexes ensured")

    async def _notify(self, session_id: str, table: str, row_id: str):
        if self.bus is None:
            return
        try:
            await self.bus.notify_change(session_id, table, row_id)
        except Exception as e:
            logger.warning(f"Change notification for {table}/{row_id} not sent: {e}")

    # Quizzes and questions

    async def create_quiz(self, quiz: Quiz, questions: Iterable[Question]) -> Quiz:
        await self.quizzes.insert_one(quiz.model_dump())
        docs = [q.model_dump() for q in questions]
        if docs:
            await self.questions.insert_many(docs)
        logger.info(f"Quiz {quiz.id} stored with {len(docs)} questions")
        return quiz

    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        doc = await self.quizzes.find_one(
            {"id": quiz_id}, projection=self._get_db_projection()
        )
        return Quiz(**doc) if doc else None

    async def get_questions(self, quiz_id: str) -> List[Question]:
        cursor = self.questions.find(
            {"quiz_id": quiz_id},
            projection=self._get_db_projection(),
            sort=[("order_index", ASCENDING)],
        )
        return [Question(**doc) async for doc in cursor]

    # Sessions

    async def create_session(self, session: GameSession) -> GameSession:
        result = await self.sessions.insert_one(session.model_dump(mode="json"))
        logger.info(
            f"Session {session.id} created with pin {session.pin}, Inserted ID: {result.inserted_id}"
        )
        return session

    async def get_session(self, session_id: str) -> Optional[GameSession]:
        logger.debug(f"Fetching session {session_id}")
        doc = await self.sessions.find_one(
            {"id": session_id}, projection=self._get_db_projection()
        )
        return GameSession(**doc) if doc else None

    async def find_live_session_by_pin(self, pin: str) -> Optional[GameSession]:
        doc = await self.sessions.find_one(
            {"pin": pin, "status": {"$ne": SessionStatus.FINISHED.value}},
            projection=self._get_db_projection(),
        )
        return GameSession(**doc) if doc else None

    async def update_session(self, session_id: str, update_data: dict):
        logger.debug(f"Updating session {session_id}: {update_data}")
        result = await self.sessions.update_one(
            {"id": session_id}, {"$set": update_data}
        )
        logger.debug(
            f"DB update result for {session_id}: Matched={result.matched_count}, Modified={result.modified_count}"
        )
        return result

    # Players

    async def insert_player(self, player: Player) -> Player:
        await self.players.insert_one(player.model_dump())
        logger.debug(f"Player {player.nickname} stored for session {player.session_id}")
        await self._notify(player.session_id, "players", player.id)
        return player

    async def get_player(self, player_id: str) -> Optional[Player]:
        doc = await self.players.find_one(
            {"id": player_id}, projection=self._get_db_projection()
        )
        return Player(**doc) if doc else None

    async def list_players(self, session_id: str) -> List[Player]:
        cursor = self.players.find(
            {"session_id": session_id},
            projection=self._get_db_projection(),
            sort=[("score", DESCENDING), ("joined_at", ASCENDING)],
        )
        return [Player(**doc) async for doc in cursor]

    async def count_players(self, session_id: str) -> int:
        return await self.players.count_documents({"session_id": session_id})

    async def increment_score(self, session_id: str, player_id: str, points: int):
        result = await self.players.update_one(
            {"id": player_id, "session_id": session_id}, {"$inc": {"score": points}}
        )
        logger.debug(
            f"Score +{points} for player {player_id}: Matched={result.matched_count}, Modified={result.modified_count}"
        )
        await self._notify(session_id, "players", player_id)
        return result

    # Answers

    async def insert_answer(self, answer: AnswerSubmission) -> AnswerSubmission:
        try:
            await self.answers.insert_one(answer.model_dump())
        except DuplicateKeyError:
            logger.warning(
                f"Rejected second answer from player {answer.player_id} for question {answer.question_id}"
            )
            raise DuplicateSubmission(answer.player_id, answer.question_id)
        await self._notify(answer.session_id, "answers", answer.id)
        return answer

    async def find_answer(
        self, session_id: str, player_id: str, question_id: str
    ) -> Optional[AnswerSubmission]:
        doc = await self.answers.find_one(
            {"session_id": session_id, "player_id": player_id, "question_id": question_id},
            projection=self._get_db_projection(),
        )
        return AnswerSubmission(**doc) if doc else None

    async def list_unscored_answers(
        self, session_id: str, question_id: str
    ) -> List[AnswerSubmission]:
        cursor = self.answers.find(
            {"session_id": session_id, "question_id": question_id, "points_earned": None},
            projection=self._get_db_projection(),
            sort=[("submitted_at", ASCENDING)],
        )
        return [AnswerSubmission(**doc) async for doc in cursor]

    async def set_answer_points(self, answer: AnswerSubmission, points: int) -> bool:
        """Record points on an answer that has not been scored yet.

        Returns False when another finalization already scored it.
        """
        result = await self.answers.update_one(
            {"id": answer.id, "points_earned": None},
            {"$set": {"points_earned": points}},
        )
        if result.modified_count:
            await self._notify(answer.session_id, "answers", answer.id)
        return bool(result.modified_count)
