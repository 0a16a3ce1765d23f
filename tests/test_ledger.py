import pytest

from app.core.exceptions import InsufficientFundsError, UserNotFound, ValidationError
from app.domain.services.ledger import Transfer
from app.infrastructure.db.models.transaction import TransactionKind

pytestmark = pytest.mark.asyncio


async def test_signup_coins_are_journaled(container, make_user):
    uid = await make_user(coins=300)

    assert await container.ledger.balance(uid) == 300
    history = await container.ledger.history(uid)
    assert [(t.amount, t.kind, t.meta) for t in history] == [(300, TransactionKind.TOPUP, "signup")]


async def test_transfer_updates_balance_and_writes_transaction(container, make_user):
    uid = await make_user(coins=100)

    tx = await container.ledger.transfer(uid, -40, TransactionKind.ENTRY, "wheel:1")

    assert tx.amount == -40
    assert tx.kind == TransactionKind.ENTRY
    assert await container.ledger.balance(uid) == 60
    assert (await container.ledger.history(uid, meta="wheel:1"))[0].id == tx.id


async def test_overdraft_rejected_without_side_effects(container, make_user):
    uid = await make_user(coins=50)

    with pytest.raises(InsufficientFundsError) as ei:
        await container.ledger.transfer(uid, -51, TransactionKind.ENTRY)

    assert ei.value.status_code == 402
    assert await container.ledger.balance(uid) == 50
    assert len(await container.ledger.history(uid)) == 1  # только signup


async def test_batch_is_all_or_nothing(container, make_user):
    rich = await make_user(coins=500)
    poor = await make_user(coins=10)

    with pytest.raises(InsufficientFundsError):
        await container.ledger.transfer_many(
            [
                Transfer(rich, -100, TransactionKind.ENTRY),
                Transfer(poor, -100, TransactionKind.ENTRY),
            ]
        )

    assert await container.ledger.balance(rich) == 500
    assert await container.ledger.balance(poor) == 10


async def test_zero_and_non_integer_delta_rejected():
    with pytest.raises(ValidationError):
        Transfer("u1", 0, TransactionKind.TOPUP)
    with pytest.raises(ValidationError):
        Transfer("u1", 1.5, TransactionKind.TOPUP)  # type: ignore[arg-type]


async def test_unknown_user(container):
    with pytest.raises(UserNotFound):
        await container.ledger.transfer("nope", 10, TransactionKind.TOPUP)
    with pytest.raises(UserNotFound):
        await container.ledger.balance("nope")


async def test_history_is_newest_first_and_paginated(container, make_user):
    uid = await make_user(coins=0)
    for amount in (1, 2, 3):
        await container.ledger.transfer(uid, amount, TransactionKind.TOPUP)

    items = await container.ledger.history(uid)
    assert [t.amount for t in items] == [3, 2, 1]
    assert [t.amount for t in await container.ledger.history(uid, skip=1, limit=1)] == [2]

    with pytest.raises(ValidationError):
        await container.ledger.history(uid, limit=0)
