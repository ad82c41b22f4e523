"""Scene Spawner Credit Service

Credit Ledger Guard for scene generation:
- Atomic check-and-decrement of a user's balance (one credit per run)
- Best-effort refund when a run fails after the reservation
- Audit ledger entry for every debit and refund

The decrement is a single find_one_and_update on the user document, so two
concurrent reservations can never both take the last credit. The refund is a
separate compensating write and is NOT transactional with the debit.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
import logging

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import database
from scenespawner.errors import UserNotFound, InsufficientCredits, TransientStoreError
from scenespawner.models.credits import (
    CreditReservation,
    CreditTransaction,
    CreditTransactionType,
    SCENE_CREDIT_COST,
)

logger = logging.getLogger(__name__)


class CreditService:
    """Per-user credit balance guard."""

    USERS = "users"
    LEDGER = "scene_credit_transactions"

    def __init__(self, db=None):
        self.db = db

    def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def reserve_credit(self, user_id: str) -> CreditReservation:
        """Take one credit from the user's balance.

        Raises UserNotFound if there is no account, InsufficientCredits if the
        balance is <= 0, TransientStoreError if the store fails.
        """
        db = self._get_db()
        try:
            updated = await db[self.USERS].find_one_and_update(
                {"user_id": user_id, "credits": {"$gt": 0}},
                {
                    "$inc": {"credits": -SCENE_CREDIT_COST},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                },
                projection={"_id": 0, "credits": 1},
                return_document=ReturnDocument.AFTER,
            )
            if updated is None:
                # Nothing decremented: tell a missing account from an empty balance
                account = await db[self.USERS].find_one(
                    {"user_id": user_id},
                    {"_id": 0, "user_id": 1, "credits": 1},
                )
        except PyMongoError as e:
            logger.error(f"Credit transaction failed for user {user_id}: {e}")
            raise TransientStoreError() from e

        if updated is None:
            if account is None:
                logger.warning(f"Credit reservation rejected: user {user_id} not found")
                raise UserNotFound("User document not found.")
            logger.warning(
                f"Insufficient credits for user {user_id}. Has {account.get('credits', 0)}, needs {SCENE_CREDIT_COST}"
            )
            raise InsufficientCredits()

        reservation = CreditReservation(
            user_id=user_id,
            remaining_credits=updated.get("credits", 0),
        )
        await self._record_transaction(CreditTransaction(
            user_id=user_id,
            transaction_type=CreditTransactionType.SCENE_GENERATION,
            amount=-reservation.amount,
            balance_after=reservation.remaining_credits,
            reservation_id=reservation.reservation_id,
            description="Scene generation",
        ))

        logger.info(
            f"Reserved {reservation.amount} credit for user {user_id} "
            f"[reservation={reservation.reservation_id}]. Remaining: {reservation.remaining_credits}"
        )
        return reservation

    async def refund_credit(
        self,
        reservation: CreditReservation,
        reason: str = "Refund for failed scene generation",
        transaction_type: CreditTransactionType = CreditTransactionType.REFUND,
    ) -> int:
        """Give the reserved credit back. Returns the balance after the refund.

        Unconditional increment. Raises on store failure or missing account so
        the caller can escalate; never retries.
        """
        db = self._get_db()
        try:
            updated = await db[self.USERS].find_one_and_update(
                {"user_id": reservation.user_id},
                {
                    "$inc": {"credits": reservation.amount},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                },
                projection={"_id": 0, "credits": 1},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise TransientStoreError(f"Refund write failed: {e}") from e

        if updated is None:
            raise UserNotFound(f"Cannot refund: user {reservation.user_id} not found.")

        reservation.refunded = True
        balance = updated.get("credits", 0)
        await self._record_transaction(CreditTransaction(
            user_id=reservation.user_id,
            transaction_type=transaction_type,
            amount=reservation.amount,
            balance_after=balance,
            reservation_id=reservation.reservation_id,
            description=reason,
        ))

        logger.info(
            f"Refunded {reservation.amount} credit to user {reservation.user_id} "
            f"[reservation={reservation.reservation_id}]. New balance: {balance}"
        )
        return balance

    async def _record_transaction(self, transaction: CreditTransaction) -> None:
        """Append to the audit ledger. The balance change is already committed."""
        db = self._get_db()
        try:
            await db[self.LEDGER].insert_one(transaction.model_dump())
        except PyMongoError as e:
            logger.error(
                f"Ledger write failed for {transaction.transaction_type.value} "
                f"[reservation={transaction.reservation_id}]: {e}"
            )

    async def get_balance(self, user_id: str) -> int:
        db = self._get_db()
        user = await db[self.USERS].find_one({"user_id": user_id}, {"_id": 0, "credits": 1})
        if not user:
            raise UserNotFound()
        return user.get("credits", 0)

    async def get_transaction_history(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Get credit ledger entries for a user, newest first."""
        db = self._get_db()
        cursor = db[self.LEDGER].find(
            {"user_id": user_id},
            {"_id": 0}
        ).sort("created_at", -1).skip(offset).limit(limit)
        return await cursor.to_list(limit)

    async def get_reservation_entries(self, reservation_id: str) -> List[Dict[str, Any]]:
        """All ledger entries for one reservation, oldest first (reconciliation)."""
        db = self._get_db()
        cursor = db[self.LEDGER].find(
            {"reservation_id": reservation_id},
            {"_id": 0}
        ).sort("created_at", 1)
        return await cursor.to_list(None)


# Global service instance
credit_service = CreditService()
