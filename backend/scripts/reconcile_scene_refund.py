"""
Reconcile a scene generation whose automatic refund failed.

Look for the CRITICAL "Failed to refund credit" log line; it carries the
reservation id. A reservation is refunded here only if it has a debit, no
refund, and no generation record.

Usage (from backend/):
  python -m scripts.reconcile_scene_refund --reservation-id CRS-XXXXXXXXXXXX
  python -m scripts.reconcile_scene_refund --reservation-id CRS-XXXXXXXXXXXX --apply
"""
import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
from scenespawner.models.credits import CreditReservation, CreditTransactionType
from scenespawner.services.credit_service import CreditService
from scenespawner.services.generation_record_service import GenerationRecordService

REFUND_TYPES = {CreditTransactionType.REFUND.value, CreditTransactionType.MANUAL_REFUND.value}


async def reconcile(db, reservation_id: str, apply: bool = False) -> bool:
    credit_service = CreditService(db=db)
    generation_record_service = GenerationRecordService(db=db)

    entries = await credit_service.get_reservation_entries(reservation_id)
    debits = [e for e in entries if e["transaction_type"] == CreditTransactionType.SCENE_GENERATION.value]
    refunds = [e for e in entries if e["transaction_type"] in REFUND_TYPES]

    if not debits:
        print(f"No debit found for reservation {reservation_id}")
        return False
    if refunds:
        print(f"Reservation {reservation_id} already refunded ({refunds[0]['transaction_id']})")
        return True

    record = await generation_record_service.find_by_reservation(reservation_id)
    if record:
        print(f"Reservation {reservation_id} produced generation {record['generation_id']}; credit was earned")
        return True

    debit = debits[0]
    print(f"Reservation {reservation_id}: user {debit['user_id']} debited {abs(debit['amount'])} credit, never refunded")
    if not apply:
        print("Dry run. Re-run with --apply to refund.")
        return False

    reservation = CreditReservation(
        reservation_id=reservation_id,
        user_id=debit["user_id"],
        amount=abs(debit["amount"]),
        remaining_credits=debit.get("balance_after") or 0,
    )
    balance = await credit_service.refund_credit(
        reservation,
        reason="Manual reconciliation of failed automatic refund",
        transaction_type=CreditTransactionType.MANUAL_REFUND,
    )
    print(f"Refunded. New balance for {reservation.user_id}: {balance}")
    return True


def main():
    parser = argparse.ArgumentParser(description="Refund a scene generation credit after a failed automatic refund")
    parser.add_argument("--reservation-id", required=True, help="Credit reservation ID (CRS-...)")
    parser.add_argument("--apply", action="store_true", help="Apply the refund (default is a dry run)")
    args = parser.parse_args()

    async def _():
        async with get_db_context() as db:
            return await reconcile(db, args.reservation_id, apply=args.apply)

    ok = asyncio.run(_())
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
