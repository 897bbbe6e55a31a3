"""
Credit service: balances, spending, earning and refills.

Balance changes are single conditional UPDATEs on users, so two concurrent
spends can't both succeed on a balance that covers only one. The ledger
row is written in the same transaction as the balance update, from the
values it returned, so neither lands without the other.

Ledger rows live in credit_transactions, which is RLS-scoped; every ledger
read or write runs inside the reader's user context.
"""

import logging
from typing import Iterable
from uuid import UUID

from clients.postgres_client import PostgresClient, Transaction
from core import credits
from core.exceptions import (
    CreditAccountNotFoundError,
    InsufficientCreditsError,
    InvalidTransactionError,
)
from core.models import CreditBalance, CreditTransaction, TransactionSource, TransactionType
from utils.timezone import Clock, now_utc
from utils.user_context import user_context

logger = logging.getLogger(__name__)


class CreditService:
    """Service for credit operations."""

    def __init__(self, postgres: PostgresClient, clock: Clock = now_utc):
        self.postgres = postgres
        self._clock = clock

    def _get_account(self, user_id: UUID) -> dict:
        row = self.postgres.execute_single(
            """SELECT id, credits, max_credits, last_credit_refill, is_guest
               FROM users WHERE id = %s""",
            (user_id,)
        )
        if row is None:
            raise CreditAccountNotFoundError(f"User {user_id} not found")
        return row

    def _record(
        self,
        tx: Transaction,
        user_id: UUID,
        transaction_type: TransactionType,
        source: TransactionSource,
        amount: int,
        balance_after: int,
        description: str | None,
        related_id: str | None,
    ) -> CreditTransaction:
        if transaction_type == TransactionType.SPEND:
            balance_before = balance_after + amount
        else:
            balance_before = balance_after - amount

        row = tx.execute_returning(
            """
            INSERT INTO credit_transactions (
                user_id, transaction_type, source, amount,
                balance_before, balance_after, description, related_id, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                user_id, transaction_type.value, source.value, amount,
                balance_before, balance_after, description, related_id, self._clock()
            )
        )[0]

        return CreditTransaction.model_validate(row)

    def get_balance(self, user_id: UUID) -> CreditBalance:
        """
        Current balance and refill state.

        Raises:
            CreditAccountNotFoundError: If user not found
        """
        account = self._get_account(user_id)
        return CreditBalance(
            user_id=user_id,
            credits=account["credits"],
            max_credits=account["max_credits"],
            last_credit_refill=account["last_credit_refill"],
            next_refill_at=credits.next_refill_at(
                account["credits"], account["max_credits"], account["last_credit_refill"], self._clock()
            ),
        )

    def spend(
        self,
        user_id: UUID,
        amount: int,
        source: TransactionSource = TransactionSource.CHOICE,
        description: str | None = None,
        related_id: str | None = None,
    ) -> CreditTransaction:
        """
        Deduct credits.

        A spend from a full balance restarts the refill clock, so the
        first refilled credit lands one interval after the spend.

        Raises:
            InvalidTransactionError: Amount out of range
            InsufficientCreditsError: Balance too low, including when a
                concurrent spend got there first
            CreditAccountNotFoundError: If user not found
        """
        account = self._get_account(user_id)
        credits.validate_transaction(account["credits"], amount, TransactionType.SPEND)

        # The ledger row needs the reader context, set before the connection is checked out
        with user_context(user_id), self.postgres.transaction() as tx:
            rows = tx.execute_returning(
                """
                UPDATE users
                SET credits = credits - %s,
                    last_credit_refill = CASE
                        WHEN credits >= max_credits THEN %s
                        ELSE last_credit_refill
                    END
                WHERE id = %s AND credits >= %s
                RETURNING credits
                """,
                (amount, self._clock(), user_id, amount)
            )
            transaction = None
            if rows:
                transaction = self._record(
                    tx, user_id, TransactionType.SPEND, source, amount,
                    rows[0]["credits"], description, related_id
                )

        if transaction is None:
            current = self._get_account(user_id)["credits"]
            raise InsufficientCreditsError(balance=current, required=amount)

        logger.info("User %s spent %d credits (%s)", user_id, amount, source.value)
        return transaction

    def earn(
        self,
        user_id: UUID,
        amount: int,
        transaction_type: TransactionType = TransactionType.EARN,
        source: TransactionSource = TransactionSource.COMPLETION,
        description: str | None = None,
        related_id: str | None = None,
    ) -> CreditTransaction:
        """
        Add credits (earn, refund or bonus).

        Raises:
            InvalidTransactionError: Amount out of range, the balance would
                exceed its cap, or transaction_type is SPEND
            CreditAccountNotFoundError: If user not found
        """
        if transaction_type == TransactionType.SPEND:
            raise InvalidTransactionError("Use spend() to deduct credits")

        account = self._get_account(user_id)
        credits.validate_transaction(account["credits"], amount, transaction_type)

        cap = credits.BASE_MAX_CREDITS + credits.EARN_HEADROOM
        with user_context(user_id), self.postgres.transaction() as tx:
            rows = tx.execute_returning(
                """
                UPDATE users
                SET credits = credits + %s
                WHERE id = %s AND credits + %s <= %s
                RETURNING credits
                """,
                (amount, user_id, amount, cap)
            )
            if not rows:
                raise InvalidTransactionError("Transaction would exceed maximum credit limit")

            transaction = self._record(
                tx, user_id, transaction_type, source, amount,
                rows[0]["credits"], description, related_id
            )
        logger.info("User %s earned %d credits (%s)", user_id, amount, source.value)
        return transaction

    def refill(self, user_id: UUID) -> int:
        """
        Apply time-based refill.

        Guarded on the balance and refill timestamp that were read, so two
        concurrent refills can't both credit the same intervals; the loser
        refills nothing.

        Returns:
            Credits added (0 when nothing was due or a concurrent refill won)

        Raises:
            CreditAccountNotFoundError: If user not found
        """
        account = self._get_account(user_id)
        now = self._clock()
        balance = account["credits"]
        cap = account["max_credits"]
        last_refill = account["last_credit_refill"]

        amount = credits.credits_to_refill(balance, cap, last_refill, now)
        if amount == 0:
            return 0

        if balance + amount >= cap:
            new_last_refill = now
        else:
            # Keep the partial interval so it counts toward the next credit
            new_last_refill = last_refill + amount * credits.REFILL_INTERVAL

        with user_context(user_id), self.postgres.transaction() as tx:
            rows = tx.execute_returning(
                """
                UPDATE users
                SET credits = credits + %s, last_credit_refill = %s
                WHERE id = %s AND credits = %s AND last_credit_refill = %s
                RETURNING credits
                """,
                (amount, new_last_refill, user_id, balance, last_refill)
            )
            if rows:
                self._record(
                    tx, user_id, TransactionType.EARN, TransactionSource.REFILL, amount,
                    rows[0]["credits"], "Time-based refill", None
                )

        if not rows:
            logger.info("Refill for user %s lost a race; skipped", user_id)
            return 0
        return amount

    def award_story_completion(
        self,
        user_id: UUID,
        story_id: str,
        has_review: bool = False,
    ) -> CreditTransaction:
        """
        Pay the story completion reward (halved for guests, plus review bonus).

        Raises:
            InvalidTransactionError: Balance would exceed its cap
            CreditAccountNotFoundError: If user not found
        """
        account = self._get_account(user_id)
        amount = credits.story_earnings(account["is_guest"], has_review)
        return self.earn(
            user_id,
            amount,
            transaction_type=TransactionType.EARN,
            source=TransactionSource.COMPLETION,
            description="Story completed with review" if has_review else "Story completed",
            related_id=story_id,
        )

    def update_max_credits(self, user_id: UUID, achievements: Iterable[str]) -> int:
        """
        Recompute the credit cap from achievements.

        Raises:
            CreditAccountNotFoundError: If user not found
        """
        account = self._get_account(user_id)
        new_max = credits.max_credits(achievements, account["is_guest"])
        self.postgres.execute_returning(
            "UPDATE users SET max_credits = %s WHERE id = %s RETURNING id",
            (new_max, user_id)
        )
        return new_max

    def history(self, user_id: UUID, limit: int = 50) -> list[CreditTransaction]:
        """Ledger entries, newest first."""
        with user_context(user_id):
            rows = self.postgres.execute(
                """
                SELECT * FROM credit_transactions
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
        return [CreditTransaction.model_validate(row) for row in rows]
