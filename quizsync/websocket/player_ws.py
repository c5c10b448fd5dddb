import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from quizsync.database.store import SessionStore
from quizsync.realtime.bus import RealtimeBus
from quizsync.services.errors import QuizSyncError
from quizsync.services.player_controller import PlayerController

logger = logging.getLogger(__name__)


async def _send_error(websocket: WebSocket, message: str):
    await websocket.send_text(json.dumps({"type": "error", "message": message}))


async def player_websocket(
    websocket: WebSocket,
    session_id: str,
    player_id: str,
    store: SessionStore,
    bus: RealtimeBus,
):
    await websocket.accept()

    async def send_view(view: dict):
        await websocket.send_text(json.dumps(view))

    controller = PlayerController(store, bus, session_id, player_id, listener=send_view)
    try:
        await controller.open()
    except QuizSyncError as e:
        logger.error(f"Player {player_id} could not open session {session_id}: {e}")
        await _send_error(websocket, str(e))
        await websocket.close()
        return

    try:
        while True:
            data = await websocket.receive_text()
            try:
                payload = json.loads(data)
            except ValueError:
                await _send_error(websocket, "Messages must be JSON.")
                continue
            if not isinstance(payload, dict):
                await _send_error(websocket, "Messages must be JSON objects.")
                continue
            logger.debug(f"Player {player_id} message for session {session_id}: {payload}")

            action = payload.get("action")
            if action == "submit_answer" and isinstance(payload.get("answer_index"), int):
                await controller.submit(payload["answer_index"])
            elif action == "sync":
                await controller.resync()
            else:
                await _send_error(websocket, f"Unknown action {action!r}.")
    except WebSocketDisconnect:
        logger.info(f"Player {player_id} disconnected from session {session_id}")
    finally:
        await controller.close()
