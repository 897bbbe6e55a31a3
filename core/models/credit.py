"""Credit ledger domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class TransactionType(str, Enum):
    """Direction of a ledger entry."""

    SPEND = "spend"
    EARN = "earn"
    REFUND = "refund"
    BONUS = "bonus"


class TransactionSource(str, Enum):
    """What caused a ledger entry."""

    CHOICE = "choice"
    REVIEW = "review"
    ACHIEVEMENT = "achievement"
    REFILL = "refill"
    PURCHASE = "purchase"
    COMPLETION = "completion"


class CreditTransaction(BaseModel):
    """One ledger entry as stored. Amount is always positive."""

    id: UUID
    user_id: UUID
    transaction_type: TransactionType
    source: TransactionSource
    amount: int = Field(..., gt=0)
    balance_before: int
    balance_after: int
    description: str | None = None
    related_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditBalance(BaseModel):
    """A reader's balance and refill state."""

    user_id: UUID
    credits: int
    max_credits: int
    last_credit_refill: datetime
    next_refill_at: datetime | None = None


class SpendRequest(BaseModel):
    """Request body for spending credits."""

    amount: int = Field(..., ge=1, le=1000)
    source: TransactionSource = TransactionSource.CHOICE
    description: str | None = Field(None, max_length=200)
    related_id: str | None = Field(None, max_length=100)
