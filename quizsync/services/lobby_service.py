import logging
import secrets
import time
from typing import Optional

from quizsync.config import Settings, get_settings
from quizsync.database.store import SessionStore, new_id
from quizsync.models.events import EventType, PlayerJoined
from quizsync.models.player import Player
from quizsync.models.session import GameSession, SessionStatus
from quizsync.realtime.bus import RealtimeBus
from quizsync.services.errors import (
    InvalidJoinRequest,
    SessionAlreadyStarted,
    SessionNotFound,
)

logger = logging.getLogger(__name__)


def generate_pin(length: int = 6) -> str:
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


async def create_session(
    store: SessionStore,
    quiz_id: str,
    host_id: str,
    settings: Optional[Settings] = None,
) -> GameSession:
    settings = settings or get_settings()

    pin = generate_pin(settings.pin_length)
    # Pins only need to be unique among sessions that are still live
    while await store.find_live_session_by_pin(pin):
        pin = generate_pin(settings.pin_length)

    session = GameSession(
        id=new_id(),
        pin=pin,
        quiz_id=quiz_id,
        host_id=host_id,
        created_at=time.time(),
    )
    return await store.create_session(session)


async def join_session(
    store: SessionStore,
    bus: RealtimeBus,
    pin: str,
    nickname: str,
    avatar_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Player:
    """Admit a player into a session that is still in its lobby."""
    settings = settings or get_settings()
    pin = (pin or "").strip()
    nickname = (nickname or "").strip()

    if not pin or not nickname:
        raise InvalidJoinRequest("Please enter both PIN and nickname.")
    if len(pin) != settings.pin_length or not pin.isdigit():
        raise InvalidJoinRequest(f"PIN must be {settings.pin_length} digits.")
    if len(nickname) > settings.max_nickname_length:
        raise InvalidJoinRequest(
            f"Nickname must be at most {settings.max_nickname_length} characters."
        )

    session = await store.find_live_session_by_pin(pin)
    if not session:
        logger.info(f"Join rejected: no live session with pin {pin}")
        raise SessionNotFound(pin)
    if session.status != SessionStatus.LOBBY:
        logger.info(f"Join rejected: session {session.id} is {session.status.value}")
        raise SessionAlreadyStarted(session.id)

    player = Player(
        id=new_id(),
        session_id=session.id,
        nickname=nickname,
        avatar_url=avatar_url,
        joined_at=time.time(),
    )
    await store.insert_player(player)
    logger.info(f"Player {nickname} joined session {session.id}")

    await bus.publish(
        session.id,
        EventType.PLAYER_JOINED,
        PlayerJoined(
            id=player.id,
            nickname=player.nickname,
            score=player.score,
            avatar_url=player.avatar_url,
        ).to_wire(),
    )
    return player
