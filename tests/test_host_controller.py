import asyncio
import time

import pytest
import pytest_asyncio
from pymongo.errors import PyMongoError

from conftest import add_player, make_quiz, wait_for
from quizsync.database.store import new_id
from quizsync.models.answer import AnswerSubmission
from quizsync.models.events import EventType
from quizsync.models.session import Phase, SessionStatus
from quizsync.services.errors import NotEnoughPlayers, SessionNotFound
from quizsync.services.host_controller import HostController
from quizsync.services.lobby_service import create_session, join_session


@pytest_asyncio.fixture
async def host(store, bus, game_session, settings):
    host = HostController(store, bus, game_session.id, settings=settings)
    await host.open()
    yield host
    await host.close()


async def _answer(store, session_id, player, question, answer_index, time_taken):
    return await store.insert_answer(
        AnswerSubmission(
            id=new_id(),
            session_id=session_id,
            player_id=player.id,
            question_id=question.id,
            answer_index=answer_index,
            is_correct=answer_index == question.correct_answer_index,
            time_taken=time_taken,
            submitted_at=time.time(),
        )
    )


async def test_open_unknown_session(store, bus, settings):
    host = HostController(store, bus, "missing", settings=settings)
    with pytest.raises(SessionNotFound):
        await host.open()


async def test_start_needs_a_player(host, store, game_session):
    with pytest.raises(NotEnoughPlayers):
        await host.start()
    assert host.phase == Phase.LOBBY
    assert (await store.get_session(game_session.id)).status == SessionStatus.LOBBY


async def test_start_opens_first_question(host, store, game_session, recorder):
    await recorder.connect(game_session.id)
    await add_player(store, game_session.id, "ada")

    assert await host.start()

    session = await store.get_session(game_session.id)
    assert session.status == SessionStatus.PLAYING
    assert session.phase == Phase.QUESTION
    assert session.current_question_index == 0
    assert session.started_at is not None
    assert session.question_started_at is not None
    assert host.clock.running
    assert host.time_remaining == 20

    await wait_for(lambda: recorder.of(EventType.PHASE_CHANGED))
    assert recorder.of(EventType.PHASE_CHANGED) == [
        {"phase": "question", "currentQuestionIndex": 0}
    ]
    assert not await host.start()


async def test_double_advance_publishes_results_once(host, store, game_session, recorder):
    await recorder.connect(game_session.id)
    await add_player(store, game_session.id, "ada")
    await host.start()

    first = await host.advance()
    second = await host.advance()

    assert (first, second) == (True, False)
    assert not host.clock.running
    await wait_for(lambda: recorder.of(EventType.LEADERBOARD_SNAPSHOT))
    results = [p for p in recorder.of(EventType.PHASE_CHANGED) if p["phase"] == "results"]
    assert results == [
        {"phase": "results", "currentQuestionIndex": 0, "correctAnswerIndex": 0}
    ]


async def test_overlapping_advances_are_idempotent(host, store, game_session, recorder):
    await recorder.connect(game_session.id)
    await add_player(store, game_session.id, "ada")
    await host.start()

    outcomes = await asyncio.gather(host.advance(), host.advance(), host.advance())

    assert sorted(outcomes) == [False, False, True]
    await wait_for(lambda: recorder.of(EventType.LEADERBOARD_SNAPSHOT))
    results = [p for p in recorder.of(EventType.PHASE_CHANGED) if p["phase"] == "results"]
    assert len(results) == 1


async def test_clock_ticks_then_times_out(store, bus, fast_settings, recorder):
    quiz = await make_quiz(store, time_limits=(3, 3))
    session = await create_session(store, quiz.id, "host-1", settings=fast_settings)
    await add_player(store, session.id, "ada")
    await recorder.connect(session.id)
    host = HostController(store, bus, session.id, settings=fast_settings)
    await host.open()

    await host.start()
    await wait_for(lambda: host.phase == Phase.RESULTS)
    await wait_for(lambda: recorder.of(EventType.LEADERBOARD_SNAPSHOT))

    assert recorder.of(EventType.TIMER_TICK) == [
        {"timeRemaining": 2},
        {"timeRemaining": 1},
        {"timeRemaining": 0},
    ]
    phases = [p["phase"] for p in recorder.of(EventType.PHASE_CHANGED)]
    assert phases == ["question", "results"]
    # A manual advance after the timeout changes nothing
    assert not await host.advance()
    await host.close()


async def test_results_score_every_answer_once(host, store, game_session, quiz):
    ada = await add_player(store, game_session.id, "ada")
    bob = await add_player(store, game_session.id, "bob")
    cyd = await add_player(store, game_session.id, "cyd")
    question = (await store.get_questions(quiz.id))[0]
    await host.start()

    await _answer(store, game_session.id, ada, question, question.correct_answer_index, 5)
    await _answer(store, game_session.id, bob, question, question.correct_answer_index, 95)
    await _answer(store, game_session.id, cyd, question, 3, 1)
    await host.advance()

    scores = {p.nickname: p.score for p in await store.list_players(game_session.id)}
    assert scores == {"ada": 950, "bob": 100, "cyd": 0}
    assert (await store.find_answer(game_session.id, cyd.id, question.id)).points_earned == 0

    # Finalizing the same question again must not award twice
    await host._finalize_question(question)
    scores = {p.nickname: p.score for p in await store.list_players(game_session.id)}
    assert scores == {"ada": 950, "bob": 100, "cyd": 0}


async def test_host_recomputes_correctness(host, store, game_session, quiz):
    ada = await add_player(store, game_session.id, "ada")
    question = (await store.get_questions(quiz.id))[0]
    await host.start()

    answer = AnswerSubmission(
        id=new_id(),
        session_id=game_session.id,
        player_id=ada.id,
        question_id=question.id,
        answer_index=2,
        is_correct=True,
        time_taken=0,
        submitted_at=time.time(),
    )
    await store.insert_answer(answer)
    await host.advance()

    assert (await store.get_player(ada.id)).score == 0


async def test_leaderboard_snapshot_is_ranked(host, store, game_session, quiz, recorder):
    await recorder.connect(game_session.id)
    slow = await add_player(store, game_session.id, "slow")
    fast = await add_player(store, game_session.id, "fast")
    question = (await store.get_questions(quiz.id))[0]
    await host.start()
    await _answer(store, game_session.id, slow, question, 0, 30)
    await _answer(store, game_session.id, fast, question, 0, 2)
    await host.advance()

    await wait_for(lambda: recorder.of(EventType.LEADERBOARD_SNAPSHOT))
    snapshot = recorder.of(EventType.LEADERBOARD_SNAPSHOT)[0]["players"]
    assert [(p["nickname"], p["score"]) for p in snapshot] == [("fast", 980), ("slow", 700)]


async def test_next_walks_questions_then_finishes(host, store, game_session, recorder):
    await recorder.connect(game_session.id)
    await add_player(store, game_session.id, "ada")
    statuses = []

    async def track():
        statuses.append((await store.get_session(game_session.id)).status)

    await track()
    await host.start()
    await track()
    for expected_index in (1, 2):
        assert not await host.next()
        await host.advance()
        assert await host.next()
        assert host.machine.current_question_index == expected_index
        await track()
    await host.advance()
    assert await host.next()
    await track()

    assert host.phase == Phase.FINISHED
    session = await store.get_session(game_session.id)
    assert session.ended_at is not None
    assert session.question_started_at is None
    assert statuses == ["lobby", "playing", "playing", "playing", "finished"]

    for action in (host.start, host.advance, host.next, host.end):
        assert not await action()
    assert (await store.get_session(game_session.id)).status == SessionStatus.FINISHED

    await wait_for(lambda: any(p["phase"] == "finished" for p in recorder.of(EventType.PHASE_CHANGED)))
    phases = [p["phase"] for p in recorder.of(EventType.PHASE_CHANGED)]
    assert phases == ["question", "results"] * 3 + ["finished"]


async def test_end_from_results_finishes_early(host, store, game_session):
    await add_player(store, game_session.id, "ada")
    await host.start()
    assert not await host.end()
    await host.advance()

    assert await host.end()
    assert host.phase == Phase.FINISHED
    assert (await store.get_session(game_session.id)).status == SessionStatus.FINISHED


async def test_failed_score_write_does_not_stop_the_game(host, store, game_session, quiz, monkeypatch):
    ada = await add_player(store, game_session.id, "ada")
    question = (await store.get_questions(quiz.id))[0]
    await host.start()
    await _answer(store, game_session.id, ada, question, 0, 1)

    async def failing_increment(*args, **kwargs):
        raise PyMongoError("write concern timeout")

    monkeypatch.setattr(store, "increment_score", failing_increment)
    assert await host.advance()
    assert host.phase == Phase.RESULTS
    assert host.notices

    assert await host.next()
    assert host.phase == Phase.QUESTION


async def test_player_messages_cannot_change_phase(host, store, bus, game_session):
    await add_player(store, game_session.id, "ada")
    await host.start()

    await bus.publish(game_session.id, EventType.PHASE_CHANGED, {"phase": "finished"})
    await bus.publish(game_session.id, EventType.TIMER_TICK, {"timeRemaining": 0})
    await asyncio.sleep(0.05)
    assert host.phase == Phase.QUESTION
    assert (await store.get_session(game_session.id)).status == SessionStatus.PLAYING


async def test_host_tracks_joins_and_departures(host, store, bus, game_session, settings):
    states = []

    async def listen(state):
        states.append(state)

    host.listener = listen
    player = await join_session(store, bus, game_session.pin, "ada", settings=settings)
    await wait_for(lambda: player.id in host.players)

    await bus.publish(game_session.id, EventType.PLAYER_LEFT, {"id": player.id})
    await wait_for(lambda: player.id in host.departed)
    latest = host.snapshot()["players"]
    assert latest == [
        {"id": player.id, "nickname": "ada", "score": 0, "avatar_url": None, "connected": False}
    ]
    assert states
