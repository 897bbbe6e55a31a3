"""Core domain models."""

from core.models.credit import (
    CreditBalance,
    CreditTransaction,
    SpendRequest,
    TransactionSource,
    TransactionType,
)

__all__ = [
    # Credit ledger
    "CreditBalance", "CreditTransaction", "SpendRequest",
    "TransactionSource", "TransactionType",
]
