import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from quizsync.database.store import SessionStore
from quizsync.realtime.bus import RealtimeBus
from quizsync.services.errors import QuizSyncError
from quizsync.services.host_controller import HostController

logger = logging.getLogger(__name__)


async def _send_error(websocket: WebSocket, message: str):
    await websocket.send_text(json.dumps({"type": "error", "message": message}))


async def host_websocket(
    websocket: WebSocket,
    session_id: str,
    store: SessionStore,
    bus: RealtimeBus,
):
    await websocket.accept()

    async def send_state(state: dict):
        await websocket.send_text(json.dumps(state))

    controller = HostController(store, bus, session_id, listener=send_state)
    try:
        await controller.open()
    except QuizSyncError as e:
        logger.error(f"Host could not open session {session_id}: {e}")
        await _send_error(websocket, str(e))
        await websocket.close()
        return

    actions = {
        "start": controller.start,
        "advance": controller.advance,
        "next": controller.next,
        "end": controller.end,
    }
    try:
        while True:
            data = await websocket.receive_text()
            try:
                payload = json.loads(data)
            except ValueError:
                await _send_error(websocket, "Messages must be JSON.")
                continue
            action = payload.get("action") if isinstance(payload, dict) else None
            logger.info(f"Host message received for session {session_id}: {action}")

            handler = actions.get(action)
            if handler is None:
                await _send_error(websocket, f"Unknown action {action!r}.")
                continue
            try:
                await handler()
            except QuizSyncError as e:
                await _send_error(websocket, str(e))
    except WebSocketDisconnect:
        logger.info(f"Host disconnected from session {session_id}")
    finally:
        await controller.close()
