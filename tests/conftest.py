import asyncio
import time

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from mongomock_motor import AsyncMongoMockClient

from quizsync.config import Settings
from quizsync.database.store import SessionStore, new_id
from quizsync.models.events import EventType
from quizsync.models.player import Player
from quizsync.models.question import Question, Quiz
from quizsync.realtime.bus import RealtimeBus
from quizsync.services.lobby_service import create_session


async def wait_for(predicate, timeout: float = 3.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class EventRecorder:
    """Realtime client that keeps every event it receives, in order."""

    def __init__(self, bus: RealtimeBus):
        self.client = bus.client(reconnect_delay=0.01)
        self.events = []
        for event in EventType:
            self.client.on(event, self._recorder(event))

    def _recorder(self, event):
        async def record(payload):
            self.events.append((event, payload))

        return record

    def of(self, event: EventType):
        return [payload for e, payload in self.events if e == event]

    async def connect(self, session_id: str):
        await self.client.connect(session_id)

    async def disconnect(self):
        await self.client.disconnect()


@pytest.fixture
def settings():
    # Long ticks keep the clock out of the way unless a test asks for speed
    return Settings(_env_file=None, tick_interval_seconds=60.0)


@pytest.fixture
def fast_settings():
    return Settings(_env_file=None, tick_interval_seconds=0.01)


@pytest_asyncio.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def bus(redis_client):
    return RealtimeBus(redis_client=redis_client, retry_delay=0.01)


@pytest_asyncio.fixture
async def store(bus):
    db = AsyncMongoMockClient()[f"quizsync_{new_id()[:8]}"]
    store = SessionStore(db, bus=bus)
    await store.ensure_indexes()
    return store


@pytest_asyncio.fixture
async def recorder(bus):
    recorder = EventRecorder(bus)
    yield recorder
    await recorder.disconnect()


async def make_quiz(store: SessionStore, time_limits=(20, 20, 20)) -> Quiz:
    quiz = Quiz(id=new_id(), title="Capitals", created_at=time.time())
    questions = [
        Question(
            id=new_id(),
            quiz_id=quiz.id,
            question_text=f"Question {i + 1}",
            answers=["A", "B", "C", "D"],
            correct_answer_index=i % 4,
            time_limit=limit,
            order_index=i,
        )
        for i, limit in enumerate(time_limits)
    ]
    return await store.create_quiz(quiz, questions)


async def add_player(store: SessionStore, session_id: str, nickname: str) -> Player:
    player = Player(id=new_id(), session_id=session_id, nickname=nickname, joined_at=time.time())
    return await store.insert_player(player)


@pytest_asyncio.fixture
async def quiz(store):
    return await make_quiz(store)


@pytest_asyncio.fixture
async def game_session(store, quiz, settings):
    return await create_session(store, quiz.id, host_id="host-1", settings=settings)
