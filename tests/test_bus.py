import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import EventRecorder, wait_for
from quizsync.models.events import EventType


async def test_publish_reaches_current_subscribers(bus, recorder):
    await recorder.connect("session-1")
    other = EventRecorder(bus)
    await other.connect("session-1")

    delivered = await bus.publish("session-1", EventType.TIMER_TICK, {"timeRemaining": 7})

    await wait_for(lambda: recorder.events and other.events)
    assert delivered >= 2
    assert recorder.of(EventType.TIMER_TICK) == [{"timeRemaining": 7}]
    assert other.of(EventType.TIMER_TICK) == [{"timeRemaining": 7}]
    await other.disconnect()


async def test_events_are_scoped_to_their_session(bus, recorder):
    await recorder.connect("session-1")
    await bus.publish("session-2", EventType.PLAYER_LEFT, {"id": "p1"})
    await bus.publish("session-1", EventType.PLAYER_LEFT, {"id": "p2"})

    await wait_for(lambda: recorder.events)
    await asyncio.sleep(0.05)
    assert recorder.of(EventType.PLAYER_LEFT) == [{"id": "p2"}]


async def test_late_subscriber_gets_resync_not_replay(bus):
    for remaining in (19, 18, 17):
        await bus.publish("session-1", EventType.TIMER_TICK, {"timeRemaining": remaining})

    late = EventRecorder(bus)
    resyncs = []

    async def resync():
        resyncs.append("fetched")

    late.client.on_resync(resync)
    await late.connect("session-1")
    await asyncio.sleep(0.05)

    assert resyncs == ["fetched"]
    assert late.events == []
    await late.disconnect()


async def test_dropped_transport_resubscribes_and_resyncs(bus):
    recorder = EventRecorder(bus)
    resyncs = []

    async def resync():
        resyncs.append(len(resyncs))

    recorder.client.on_resync(resync)
    await recorder.connect("session-1")

    async def broken(*args, **kwargs):
        raise RedisConnectionError("Connection reset by peer")

    recorder.client._pubsub.get_message = broken
    await wait_for(lambda: recorder.client.reconnects == 1)
    assert len(resyncs) == 2

    await bus.publish("session-1", EventType.PHASE_CHANGED, {"phase": "results"})
    await wait_for(lambda: recorder.events)
    assert recorder.of(EventType.PHASE_CHANGED) == [{"phase": "results"}]
    await recorder.disconnect()


async def test_failing_handler_does_not_stop_delivery(bus, recorder):
    async def explode(payload):
        raise RuntimeError("render failed")

    recorder.client.on(EventType.TIMER_TICK, explode)
    await recorder.connect("session-1")

    await bus.publish("session-1", EventType.TIMER_TICK, {"timeRemaining": 3})
    await bus.publish("session-1", EventType.TIMER_TICK, {"timeRemaining": 2})
    await wait_for(lambda: len(recorder.of(EventType.TIMER_TICK)) == 2)


async def test_malformed_messages_are_dropped(bus, redis_client, recorder):
    await recorder.connect("session-1")
    await redis_client.publish("game:session-1", "not json")
    await redis_client.publish("game:session-1", '{"event": "no-such-event"}')
    await bus.publish("session-1", EventType.PLAYER_LEFT, {"id": "p1"})

    await wait_for(lambda: recorder.events)
    assert recorder.events == [(EventType.PLAYER_LEFT, {"id": "p1"})]


async def test_disconnect_stops_delivery(bus, recorder):
    await recorder.connect("session-1")
    await recorder.disconnect()
    assert not recorder.client.connected

    assert await bus.publish("session-1", EventType.PLAYER_LEFT, {"id": "p1"}) == 0
    assert await recorder.client.publish(EventType.PLAYER_LEFT, {"id": "p1"}) == 0
    assert recorder.events == []


async def test_client_can_rejoin_after_disconnect(bus, recorder):
    await recorder.connect("session-1")
    await recorder.disconnect()
    await recorder.connect("session-2")

    await bus.publish("session-2", EventType.PLAYER_LEFT, {"id": "p9"})
    await wait_for(lambda: recorder.events)
    assert recorder.of(EventType.PLAYER_LEFT) == [{"id": "p9"}]
