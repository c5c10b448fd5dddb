import json
import logging
import time
from pathlib import Path
from typing import List, Optional

from quizsync.database.store import SessionStore, new_id
from quizsync.models.question import Question, Quiz

logger = logging.getLogger(__name__)

DEFAULT_QUIZ_FILE = Path(__file__).with_name("default_quiz.json")


class QuizService:
    def __init__(self, store: SessionStore, quiz_file: Path = DEFAULT_QUIZ_FILE):
        self.store = store
        self.quiz_file = Path(quiz_file)
        self.quizzes = self._load_quizzes()

    def _load_quizzes(self) -> dict:
        try:
            with open(self.quiz_file, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.warning(f"Quiz file {self.quiz_file} was not found.")
            return {}

    async def get_questions(self, quiz_id: str) -> List[Question]:
        return await self.store.get_questions(quiz_id)

    async def seed_default_quiz(self, host_id: Optional[str] = None) -> Quiz:
        """Store a copy of the bundled default quiz and return it."""
        quiz_data = self.quizzes.get("default")
        if not quiz_data or not quiz_data.get("questions"):
            raise ValueError("No default questions available")

        quiz = Quiz(
            id=new_id(),
            title=quiz_data.get("title", "Quiz"),
            description=quiz_data.get("description"),
            host_id=host_id,
            created_at=time.time(),
        )
        questions = [
            Question(id=new_id(), quiz_id=quiz.id, order_index=i, **q)
            for i, q in enumerate(quiz_data["questions"])
        ]
        return await self.store.create_quiz(quiz, questions)
