"""Scene Spawner Credit Models

The balance itself is a plain integer `credits` on the user document. These
models describe a single reservation and the audit ledger entries written for
every debit and refund.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid


# Credits spent per scene generation
SCENE_CREDIT_COST = 1


class CreditTransactionType(str, Enum):
    """Types of credit movements written by the scene workflow"""
    SCENE_GENERATION = "SCENE_GENERATION"  # Debit when a generation starts
    REFUND = "REFUND"                      # Compensation for a failed generation
    MANUAL_REFUND = "MANUAL_REFUND"        # Reconciliation after a failed refund


class CreditReservation(BaseModel):
    """One credit taken from a user's balance for a single generation run.

    reservation_id is the correlation id for every log line and ledger entry
    of the run.
    """
    reservation_id: str = Field(default_factory=lambda: f"CRS-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    amount: int = SCENE_CREDIT_COST
    remaining_credits: int
    refunded: bool = False
    reserved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CreditTransaction(BaseModel):
    """Ledger entry. Every credit movement is recorded for audit."""
    transaction_id: str = Field(default_factory=lambda: f"CTX-{uuid.uuid4().hex[:12].upper()}")
    user_id: str

    transaction_type: CreditTransactionType
    amount: int  # Positive for refunds, negative for debits
    balance_after: Optional[int] = None

    reservation_id: Optional[str] = None
    description: str

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}


class CreditBalanceResponse(BaseModel):
    user_id: str
    credits: int
    recent_transactions: List[CreditTransaction] = []
