"""
Manual refund reconciliation for reservations whose automatic refund failed.

A reservation is refunded only when it has a debit, no refund and no
generation record; without --apply nothing is written.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from scripts.reconcile_scene_refund import reconcile

pytestmark = pytest.mark.asyncio

RESERVATION_ID = "CRS-ABC123DEF456"
DEBIT = {
    "transaction_id": "CTX-1",
    "user_id": "u1",
    "transaction_type": "SCENE_GENERATION",
    "amount": -1,
    "balance_after": 0,
    "reservation_id": RESERVATION_ID,
}


def _db(entries, record=None):
    cursor = MagicMock()
    cursor.sort = MagicMock(return_value=cursor)
    cursor.to_list = AsyncMock(return_value=entries)
    ledger = MagicMock()
    ledger.find = MagicMock(return_value=cursor)
    ledger.insert_one = AsyncMock()
    users = MagicMock()
    users.find_one_and_update = AsyncMock(return_value={"credits": 1})
    generations = MagicMock()
    generations.find_one = AsyncMock(return_value=record)
    return {"scene_credit_transactions": ledger, "users": users, "scene_generations": generations}


async def test_dry_run_writes_nothing():
    db = _db([DEBIT])

    assert await reconcile(db, RESERVATION_ID) is False
    db["users"].find_one_and_update.assert_not_called()


async def test_apply_refunds_with_manual_refund_entry():
    db = _db([DEBIT])

    assert await reconcile(db, RESERVATION_ID, apply=True) is True

    args, _ = db["users"].find_one_and_update.call_args
    assert args[0] == {"user_id": "u1"}
    assert args[1]["$inc"] == {"credits": 1}
    entry = db["scene_credit_transactions"].insert_one.call_args[0][0]
    assert entry["transaction_type"] == "MANUAL_REFUND"
    assert entry["reservation_id"] == RESERVATION_ID


async def test_already_refunded_is_left_alone():
    refund = dict(DEBIT, transaction_id="CTX-2", transaction_type="REFUND", amount=1)
    db = _db([DEBIT, refund])

    assert await reconcile(db, RESERVATION_ID, apply=True) is True
    db["users"].find_one_and_update.assert_not_called()


async def test_completed_generation_keeps_the_credit():
    db = _db([DEBIT], record={"generation_id": "GEN-1", "reservation_id": RESERVATION_ID})

    assert await reconcile(db, RESERVATION_ID, apply=True) is True
    db["users"].find_one_and_update.assert_not_called()


async def test_unknown_reservation():
    db = _db([])

    assert await reconcile(db, RESERVATION_ID, apply=True) is False
    db["users"].find_one_and_update.assert_not_called()
