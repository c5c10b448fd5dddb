from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class Quiz(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    host_id: Optional[str] = None
    created_at: Optional[float] = None


class Question(BaseModel):
    id: str
    quiz_id: str
    question_text: str
    answers: List[str] = Field(min_length=2, max_length=4)
    correct_answer_index: int  # Index into answers
    time_limit: int = Field(default=20, gt=0)
    order_index: int = 0

    @model_validator(mode="after")
    def check_correct_answer(self):
        if not 0 <= self.correct_answer_index < len(self.answers):
            raise ValueError("correct_answer_index must point at one of the answers")
        return self

    def public(self) -> dict:
        """Question data safe to show a player before the reveal."""
        return {
            "id": self.id,
            "question_text": self.question_text,
            "answers": self.answers,
            "time_limit": self.time_limit,
        }
