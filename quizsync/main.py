import logging

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from quizsync.api import host, player
from quizsync.config import get_settings
from quizsync.database.database import close_db, connect_db, get_database
from quizsync.database.store import SessionStore
from quizsync.dependencies import get_bus, get_store
from quizsync.realtime.bus import RealtimeBus
from quizsync.websocket import host_ws, player_ws

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()
settings = get_settings()
app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def read_root():
    return {"message": "Welcome to the QuizSync server!"}


@app.on_event("startup")
async def startup_event():
    await connect_db()
    bus = get_bus()
    await bus.connect()
    await SessionStore(get_database(), bus=bus).ensure_indexes()


@app.on_event("shutdown")
async def shutdown_event():
    await get_bus().close()
    await close_db()


app.include_router(host.router, prefix="/api/host", tags=["host"])
app.include_router(player.router, prefix="/api", tags=["player"])


@app.websocket("/ws/host/{session_id}")
async def host_websocket_endpoint(
    websocket: WebSocket,
    session_id: str,
    store: SessionStore = Depends(get_store),
    bus: RealtimeBus = Depends(get_bus),
):
    await host_ws.host_websocket(websocket, session_id, store, bus)


@app.websocket("/ws/play/{session_id}/{player_id}")
async def player_websocket_endpoint(
    websocket: WebSocket,
    session_id: str,
    player_id: str,
    store: SessionStore = Depends(get_store),
    bus: RealtimeBus = Depends(get_bus),
):
    await player_ws.player_websocket(websocket, session_id, player_id, store, bus)
