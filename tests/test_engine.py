import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import ConflictError, InternalConsistencyError, InvalidStateError
from app.domain.services import broadcaster as events
from app.infrastructure.db.models.transaction import TransactionKind
from app.infrastructure.db.models.wheel import WheelStatus


async def _eventually(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _wheel_with_players(container, admin_id, make_user, *, fee=10, players=3, max_players=None):
    wheel = await container.wheels.create_wheel(await admin_id(), fee, max_players)
    uids = []
    for _ in range(players):
        uid = await make_user(coins=1000)
        await container.wheels.join_wheel(wheel.id, uid)
        uids.append(uid)
    return wheel, uids


async def test_below_quorum_deadline_aborts_and_refunds(container, recorder, admin_id, make_user, wait_status):
    wheel, uids = await _wheel_with_players(container, admin_id, make_user, fee=500, players=2)
    for uid in uids:
        assert await container.ledger.balance(uid) == 500

    container.engine.schedule_auto_start(wheel.id, 0.01)
    aborted = await wait_status(wheel.id, WheelStatus.ABORTED)
    await _eventually(lambda: events.WHEEL_ABORTED in recorder.names())

    assert aborted.winner_id is None
    for uid in uids:
        assert await container.ledger.balance(uid) == 1000
        refunds = [t for t in await container.ledger.history(uid) if t.kind == TransactionKind.REFUND]
        assert [(t.amount, t.meta) for t in refunds] == [(500, f"wheel:{wheel.id}")]

    assert events.WHEEL_STARTED not in recorder.names()
    assert recorder.of(events.WHEEL_ABORTED) == [{"wheel_id": wheel.id, "refunded": uids}]
    assert not container.engine.is_scheduled(wheel.id)


async def test_five_players_run_to_a_single_winner(container, recorder, admin_id, make_user, wait_status):
    wheel, uids = await _wheel_with_players(container, admin_id, make_user, fee=10, players=5)

    await container.wheels.manual_start(wheel.id)
    finished = await wait_status(wheel.id, WheelStatus.FINISHED)
    await _eventually(lambda: events.WHEEL_FINISHED in recorder.names())

    eliminated = [p["eliminated"] for p in recorder.of(events.WHEEL_ELIMINATED)]
    assert len(eliminated) == 4
    assert len(set(eliminated)) == 4
    assert finished.winner_id in uids
    assert finished.winner_id not in eliminated
    assert [p["remaining"] for p in recorder.of(events.WHEEL_ELIMINATED)] == [4, 3, 2, 1]

    names = recorder.names()
    assert names.index(events.WHEEL_STARTED) < names.index(events.WHEEL_ELIMINATED)
    assert names[-1] == events.WHEEL_FINISHED
    (done,) = recorder.of(events.WHEEL_FINISHED)
    assert done["winner"] == finished.winner_id
    assert done["payout"] == 100

    assert await container.ledger.balance(finished.winner_id) == 1000 - 10 + 100
    for uid in set(uids) - {finished.winner_id}:
        assert await container.ledger.balance(uid) == 990

    participants = await container.store.list_participants(wheel.id)
    assert sum(1 for j in participants if j.eliminated_at is None) == 1


async def test_manual_start_requires_quorum(container, recorder, admin_id, make_user):
    wheel, _ = await _wheel_with_players(container, admin_id, make_user, players=2)

    with pytest.raises(InvalidStateError):
        await container.wheels.manual_start(wheel.id)
    assert (await container.store.get_wheel(wheel.id)).status == WheelStatus.PENDING


async def test_deadline_after_manual_start_is_noop(container, recorder, admin_id, make_user):
    wheel, _ = await _wheel_with_players(container, admin_id, make_user, players=3)

    await container.wheels.manual_start(wheel.id)
    assert await container.engine.run_start_deadline(wheel.id) is None

    assert recorder.names().count(events.WHEEL_STARTED) == 1
    with pytest.raises(InvalidStateError):
        await container.wheels.manual_start(wheel.id)


async def test_deadline_after_abort_is_noop(container, recorder, admin_id, make_user):
    wheel, uids = await _wheel_with_players(container, admin_id, make_user, fee=50, players=3)

    assert await container.wheels.abort_wheel(wheel.id) == uids
    assert await container.engine.run_start_deadline(wheel.id) is None
    with pytest.raises(InvalidStateError):
        await container.wheels.abort_wheel(wheel.id)

    for uid in uids:
        assert await container.ledger.balance(uid) == 1000
    assert recorder.names().count(events.WHEEL_ABORTED) == 1
    assert events.WHEEL_STARTED not in recorder.names()


async def test_abort_of_running_wheel_is_rejected(container, recorder, admin_id, make_user):
    wheel, _ = await _wheel_with_players(container, admin_id, make_user, players=3)
    container.engine.config.tick = 60.0
    await container.wheels.manual_start(wheel.id)

    with pytest.raises(InvalidStateError):
        await container.wheels.abort_wheel(wheel.id)
    assert (await container.store.get_wheel(wheel.id)).status == WheelStatus.RUNNING


async def test_cancel_is_idempotent(container, recorder, admin_id):
    wheel = await container.wheels.create_wheel(await admin_id(), 10)
    rt_task = container.engine._runtimes[wheel.id].start_task

    assert container.engine.is_scheduled(wheel.id)
    assert container.engine.cancel(wheel.id) is True
    assert container.engine.cancel(wheel.id) is False
    assert not container.engine.is_scheduled(wheel.id)

    await asyncio.gather(rt_task, return_exceptions=True)
    assert rt_task.cancelled()


async def test_tick_without_active_players_is_an_error(container, admin_id, make_user):
    wheel = await container.store.create_wheel(await admin_id(), 10)
    a, b = await make_user(), await make_user()
    for uid in (a, b):
        await container.store.join_wheel(wheel.id, uid)
    await container.store.start_wheel(wheel.id)
    for uid in (a, b):
        await container.store.mark_eliminated(wheel.id, uid)

    with pytest.raises(InternalConsistencyError):
        await container.engine.tick(wheel.id)

    # цикл, поднятый восстановлением, останавливается, а колесо не "завершается"
    restored = await container.engine.recover()
    assert restored["running"] == [wheel.id]
    await _eventually(lambda: not container.engine.is_scheduled(wheel.id))
    loaded = await container.store.get_wheel(wheel.id)
    assert loaded.status == WheelStatus.RUNNING
    assert loaded.winner_id is None


async def test_coins_are_conserved_when_winner_takes_the_pot(container, recorder, admin_id, make_user, wait_status):
    container.engine.config.payout = lambda pot, players: pot
    wheel, uids = await _wheel_with_players(container, admin_id, make_user, fee=40, players=4)

    await container.wheels.manual_start(wheel.id)
    finished = await wait_status(wheel.id, WheelStatus.FINISHED)

    total = 0
    for uid in uids:
        balance = await container.ledger.balance(uid)
        journal = sum(t.amount for t in await container.ledger.history(uid))
        assert balance == journal
        total += balance
    assert total == 4 * 1000
    assert await container.ledger.balance(finished.winner_id) == 1000 - 40 + 160


async def test_concurrent_joins_never_exceed_max_players(container, recorder, admin_id, make_user, wait_status):
    wheel = await container.wheels.create_wheel(await admin_id(), 10, max_players=3)
    uids = [await make_user(coins=100) for _ in range(6)]

    results = await asyncio.gather(
        *(container.wheels.join_wheel(wheel.id, uid) for uid in uids),
        return_exceptions=True,
    )

    joined = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, BaseException)]
    assert len(joined) == 3
    assert all(isinstance(e, (ConflictError, InvalidStateError)) for e in rejected)
    assert await container.store.count_joins(wheel.id) == 3

    joined_ids = {j.user_id for j in joined}
    for uid in set(uids) - joined_ids:
        assert await container.ledger.balance(uid) == 100

    # заполнилось с кворумом: стартует без таймера и доигрывается
    await wait_status(wheel.id, WheelStatus.FINISHED)
    assert recorder.names().count(events.WHEEL_STARTED) == 1


async def test_recover_rearms_pending_wheels(container, admin_id):
    wheel = await container.store.create_wheel(await admin_id(), 10)
    assert not container.engine.is_scheduled(wheel.id)

    restored = await container.engine.recover()

    assert restored == {"pending": [wheel.id], "running": []}
    assert container.engine.is_scheduled(wheel.id)


def _failing(method, failures: int):
    calls = {"n": 0}

    async def wrapper(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] <= failures:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
        return await method(*args, **kwargs)

    return wrapper, calls


async def test_elimination_survives_storage_errors(
    container, recorder, admin_id, make_user, wait_status, monkeypatch
):
    wheel, uids = await _wheel_with_players(container, admin_id, make_user, players=3)
    await container.wheels.manual_start(wheel.id)

    flaky, calls = _failing(container.store.find_active_participants, failures=2)
    monkeypatch.setattr(container.store, "find_active_participants", flaky)

    finished = await wait_status(wheel.id, WheelStatus.FINISHED)
    await _eventually(lambda: events.WHEEL_FINISHED in recorder.names())

    # сбой чтения не принят за "никого не осталось"
    assert calls["n"] > 2
    assert len(recorder.of(events.WHEEL_ELIMINATED)) == 2
    assert recorder.names().count(events.WHEEL_FINISHED) == 1
    assert finished.winner_id in uids


async def test_auto_start_retries_after_storage_error(
    container, recorder, admin_id, make_user, wait_status, monkeypatch
):
    wheel, _ = await _wheel_with_players(container, admin_id, make_user, players=3)

    flaky, calls = _failing(container.store.find_wheel, failures=1)
    monkeypatch.setattr(container.store, "find_wheel", flaky)

    await container.engine.schedule_auto_start(wheel.id, 0.01)

    assert calls["n"] >= 2
    assert recorder.names().count(events.WHEEL_STARTED) == 1
    assert events.WHEEL_ABORTED not in recorder.names()
    await wait_status(wheel.id, WheelStatus.FINISHED)
