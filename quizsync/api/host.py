from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from quizsync.database.store import SessionStore
from quizsync.dependencies import get_quiz_service, get_store
from quizsync.services.lobby_service import create_session
from quizsync.services.quiz_service import QuizService

router = APIRouter()


class NewSessionRequest(BaseModel):
    host_id: str
    quiz_id: Optional[str] = None


@router.post("/new")
async def create_new_session(
    body: NewSessionRequest,
    store: SessionStore = Depends(get_store),
    quiz_service: QuizService = Depends(get_quiz_service),
):
    quiz_id = body.quiz_id
    if quiz_id is None:
        quiz = await quiz_service.seed_default_quiz(host_id=body.host_id)
        quiz_id = quiz.id
    elif not await store.get_quiz(quiz_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Quiz {quiz_id} not found",
        )

    if not await quiz_service.get_questions(quiz_id):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="A quiz needs at least one question before it can be hosted",
        )

    session = await create_session(store, quiz_id, body.host_id)
    return {"session_id": session.id, "pin": session.pin}
