"""
Credit economy policy.

Constants and pure calculations only; nothing here touches storage.
CreditService applies these to the ledger.
"""

from datetime import datetime, timedelta
from typing import Iterable

from core.exceptions import InsufficientCreditsError, InvalidTransactionError
from core.models.credit import TransactionType

# Refill
REFILL_INTERVAL = timedelta(minutes=5)
BASE_MAX_CREDITS = 20
GUEST_MAX_CREDITS = 10

# Story costs
CHOICE_COST = 1
STORY_START_COST = 0

# Rewards
STORY_COMPLETION_REWARD = 3
REVIEW_REWARD = 2
ACHIEVEMENT_MIN_REWARD = 1
ACHIEVEMENT_MAX_REWARD = 10

# Limits
MIN_TRANSACTION_AMOUNT = 1
MAX_TRANSACTION_AMOUNT = 1000
# Room above the base max for balances raised by achievements
EARN_HEADROOM = 100

# Permanent max-credit bonus per achievement
ACHIEVEMENT_CREDITS_BONUS: dict[str, int] = {
    # Story
    "first_story": 3,
    "story_collector": 5,
    "genre_explorer": 4,
    # Credits
    "thrifty_spender": 2,
    "big_spender": 8,
    # Social
    "critic": 5,
    "helpful_reviewer": 3,
    # Milestones
    "veteran_player": 10,
    "completionist": 15,
}


def achievement_bonus(achievement_id: str) -> int:
    """Bonus for one achievement; 0 for unknown ids."""
    return ACHIEVEMENT_CREDITS_BONUS.get(achievement_id, 0)


def max_credits(achievements: Iterable[str], is_guest: bool) -> int:
    """Credit cap: fixed for guests, base plus achievement bonuses otherwise."""
    if is_guest:
        return GUEST_MAX_CREDITS
    return BASE_MAX_CREDITS + sum(achievement_bonus(a) for a in achievements)


def validate_transaction(balance: int, amount: int, transaction_type: TransactionType) -> None:
    """
    Check a transaction against policy limits.

    Raises:
        InvalidTransactionError: Amount out of range, or an earn would push
            the balance past base max + headroom.
        InsufficientCreditsError: Spend larger than the balance.
    """
    if amount < MIN_TRANSACTION_AMOUNT:
        raise InvalidTransactionError("Amount must be positive")

    if amount > MAX_TRANSACTION_AMOUNT:
        raise InvalidTransactionError("Amount exceeds maximum transaction limit")

    if transaction_type == TransactionType.SPEND:
        if balance < amount:
            raise InsufficientCreditsError(balance=balance, required=amount)
        return

    if balance + amount > BASE_MAX_CREDITS + EARN_HEADROOM:
        raise InvalidTransactionError("Transaction would exceed maximum credit limit")


def story_earnings(is_guest: bool, has_review: bool) -> int:
    """Reward for finishing a story. Guests earn half, rounded down."""
    earnings = STORY_COMPLETION_REWARD
    if is_guest:
        earnings = earnings // 2
    if has_review:
        earnings += REVIEW_REWARD
    return earnings


def credits_to_refill(
    credits: int,
    max_credits: int,
    last_refill: datetime,
    now: datetime,
    interval: timedelta = REFILL_INTERVAL,
) -> int:
    """One credit per whole interval since the last refill, capped at max."""
    elapsed = now - last_refill
    if elapsed < interval or credits >= max_credits:
        return 0
    intervals = elapsed // interval
    return min(intervals, max_credits - credits)


def next_refill_at(
    credits: int,
    max_credits: int,
    last_refill: datetime,
    now: datetime,
    interval: timedelta = REFILL_INTERVAL,
) -> datetime | None:
    """
    When the next credit lands, or None when the balance is full.

    An overdue refill that has not been applied yet is due now.
    """
    if credits >= max_credits:
        return None
    return max(last_refill + interval, now)
