from typing import Optional

from pydantic import BaseModel


class AnswerSubmission(BaseModel):
    id: str
    session_id: str
    player_id: str
    question_id: str
    answer_index: int
    is_correct: bool
    time_taken: int  # Whole seconds between the question opening and submission
    points_earned: Optional[int] = None  # Set by the host when the question closes
    submitted_at: float
