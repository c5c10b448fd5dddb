from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from quizsync.database.store import SessionStore
from quizsync.dependencies import get_bus, get_store
from quizsync.realtime.bus import RealtimeBus
from quizsync.services.errors import (
    InvalidJoinRequest,
    SessionAlreadyStarted,
    SessionNotFound,
)
from quizsync.services.lobby_service import join_session
from quizsync.services.session_state import load_snapshot

router = APIRouter()


class JoinRequest(BaseModel):
    pin: str
    nickname: str
    avatar_url: Optional[str] = None


@router.post("/join")
async def join_game(
    body: JoinRequest,
    store: SessionStore = Depends(get_store),
    bus: RealtimeBus = Depends(get_bus),
):
    try:
        player = await join_session(store, bus, body.pin, body.nickname, body.avatar_url)
    except SessionNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Game not found. Check your PIN.",
        )
    except SessionAlreadyStarted as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidJoinRequest as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        )
    return {"session_id": player.session_id, "player_id": player.id}


@router.get("/sessions/{session_id}/state")
async def get_session_state(session_id: str, store: SessionStore = Depends(get_store)):
    try:
        snapshot = await load_snapshot(store, session_id)
    except SessionNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Game {session_id} not found",
        )
    return snapshot.model_dump(mode="json")
