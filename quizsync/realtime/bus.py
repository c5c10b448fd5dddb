import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from quizsync.models.events import BusMessage, EventType, RowChanged

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[None]]
ResyncHook = Callable[[], Awaitable[None]]

TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


def game_channel(session_id: str) -> str:
    return f"game:{session_id}"


def changes_channel(session_id: str) -> str:
    return f"changes:{session_id}"


class RealtimeBus:
    """
    Session-scoped publish/subscribe over Redis.

    Delivery is best effort: a publish reaches whoever is subscribed at that
    moment and nothing is stored for later subscribers.
    """

    def __init__(
        self,
        redis_url: str = "redis://127.0.0.1:6379",
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        redis_client: Optional[Redis] = None,
    ):
        self.redis_url = redis_url
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.redis: Optional[Redis] = redis_client

    async def connect(self):
        """Connect to Redis if not already connected with retry logic"""
        if self.redis is not None:
            return

        retry_count = 0
        while True:
            try:
                client = redis.from_url(
                    self.redis_url, encoding="utf-8", decode_responses=True
                )
                await client.ping()
                self.redis = client
                logger.info(f"Connected to Redis at {self.redis_url}")
                return
            except TRANSPORT_ERRORS as e:
                retry_count += 1
                logger.warning(f"Redis connection attempt {retry_count} failed: {e}")
                if retry_count >= self.retry_attempts:
                    logger.error(
                        f"Failed to connect to Redis after {self.retry_attempts} attempts"
                    )
                    raise
                await asyncio.sleep(self.retry_delay)

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis connection closed")

    async def _send(self, channel: str, message: BusMessage) -> int:
        try:
            await self.connect()
            receivers = await self.redis.publish(channel, json.dumps(message.to_wire()))
        except (RedisError, OSError) as e:
            logger.error(f"Error publishing {message.event.value} on {channel}: {e}")
            return 0
        logger.debug(f"Published {message.event.value} on {channel} to {receivers} subscribers")
        return receivers

    async def publish(self, session_id: str, event: EventType, payload: dict) -> int:
        """Broadcast an event to the current subscribers of a session.

        Returns the number of subscribers Redis delivered to, 0 on failure.
        """
        return await self._send(
            game_channel(session_id), BusMessage(event=event, payload=payload)
        )

    async def notify_change(self, session_id: str, table: str, row_id: str) -> int:
        payload = RowChanged(table=table, id=row_id).to_wire()
        return await self._send(
            changes_channel(session_id),
            BusMessage(event=EventType.ROW_CHANGED, payload=payload),
        )

    def client(self, reconnect_delay: Optional[float] = None) -> "RealtimeClient":
        return RealtimeClient(
            self,
            reconnect_delay=self.retry_delay if reconnect_delay is None else reconnect_delay,
        )


class RealtimeClient:
    """
    One subscription to one session's broadcast and change channels.

    After every subscription, the first one and each one following a
    dropped transport, the resync hook runs before any further event is
    dispatched, so callers can re-fetch authoritative state.
    """

    def __init__(self, bus: RealtimeBus, reconnect_delay: float = 1.0):
        self.bus = bus
        self.reconnect_delay = reconnect_delay
        self.session_id: Optional[str] = None
        self.reconnects = 0
        self._handlers: Dict[str, List[Handler]] = {}
        self._resync: Optional[ResyncHook] = None
        self._pubsub: Optional[PubSub] = None
        self._listener: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._listener is not None and not self._listener.done()

    def on(self, event: EventType, handler: Handler) -> "RealtimeClient":
        self._handlers.setdefault(event.value, []).append(handler)
        return self

    def on_resync(self, hook: ResyncHook) -> "RealtimeClient":
        self._resync = hook
        return self

    async def connect(self, session_id: str):
        if self.session_id is not None:
            raise RuntimeError(f"Realtime client already bound to session {self.session_id}")
        self.session_id = session_id
        await self._subscribe()
        await self._run_resync()
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"Realtime client subscribed to session {session_id}")

    async def disconnect(self):
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._close_pubsub()
        if self.session_id is not None:
            logger.info(f"Realtime client left session {self.session_id}")
        self.session_id = None

    async def publish(self, event: EventType, payload: dict) -> int:
        if self.session_id is None:
            logger.warning(f"Dropping {event.value}: realtime client is not connected")
            return 0
        return await self.bus.publish(self.session_id, event, payload)

    async def _subscribe(self):
        await self.bus.connect()
        self._pubsub = self.bus.redis.pubsub()
        await self._pubsub.subscribe(
            game_channel(self.session_id), changes_channel(self.session_id)
        )

    async def _close_pubsub(self):
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.aclose()
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Ignoring error while closing subscription: {e}")

    async def _run_resync(self):
        if self._resync is None:
            return
        try:
            await self._resync()
        except Exception as e:
            logger.error(f"Resync for session {self.session_id} failed: {e}")

    async def _listen(self):
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except TRANSPORT_ERRORS as e:
                logger.warning(f"Realtime transport for session {self.session_id} dropped: {e}")
                await self._reconnect()
                continue
            if message is None:
                await asyncio.sleep(0.01)
                continue
            await self._dispatch(message["data"])

    async def _reconnect(self):
        while True:
            await self._close_pubsub()
            try:
                await self._subscribe()
            except TRANSPORT_ERRORS as e:
                logger.warning(f"Resubscribe to session {self.session_id} failed: {e}")
                await asyncio.sleep(self.reconnect_delay)
                continue
            self.reconnects += 1
            logger.info(f"Resubscribed to session {self.session_id}, resyncing state")
            await self._run_resync()
            return

    async def _dispatch(self, raw):
        try:
            message = BusMessage(**json.loads(raw))
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Dropping malformed bus message {raw!r}: {e}")
            return

        for handler in self._handlers.get(message.event.value, []):
            try:
                await handler(message.payload)
            except Exception as e:
                logger.error(f"Handler for {message.event.value} failed: {e}")
