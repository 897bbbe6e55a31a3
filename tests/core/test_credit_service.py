"""Tests for CreditService - conditional balance updates and the ledger."""

from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import Mock
from uuid import uuid4

import psycopg2
import pytest

from clients.postgres_client import PostgresClient, Transaction
from core.exceptions import (
    CreditAccountNotFoundError,
    InsufficientCreditsError,
    InvalidTransactionError,
)
from core.models import TransactionSource, TransactionType
from core.services.credit_service import CreditService
from utils.user_context import get_current_user_id


class FakeLedger:
    """Answers CreditService's queries from a mock PostgresClient.

    `update_rows` is what the conditional UPDATE returns; set it to [] to
    simulate losing a race. Ledger inserts echo their parameters back and
    remember the user context they ran under. Balance writes go through
    `tx`; `commits` counts transactions that reached commit.
    """

    def __init__(self, account: dict):
        self.postgres = Mock(spec=PostgresClient)
        self.postgres.execute_single.return_value = account
        self.postgres.execute_returning.side_effect = self._returning
        self.postgres.transaction.side_effect = self._transaction
        self.tx = Mock(spec=Transaction)
        self.tx.execute_returning.side_effect = self._returning
        self.update_rows = [{"credits": account["credits"]}]
        self.updates = []
        self.inserts = []
        self.commits = 0

    @contextmanager
    def _transaction(self):
        yield self.tx
        self.commits += 1

    def _returning(self, query, params=None):
        if "INSERT INTO credit_transactions" in query:
            self.inserts.append((params, get_current_user_id()))
            user_id, ttype, source, amount, before, after, description, related_id, created_at = params
            return [{
                "id": uuid4(),
                "user_id": user_id,
                "transaction_type": ttype,
                "source": source,
                "amount": amount,
                "balance_before": before,
                "balance_after": after,
                "description": description,
                "related_id": related_id,
                "created_at": created_at,
            }]
        self.updates.append((query, params))
        return self.update_rows


def account(user_id, clock, credits=5, max_credits=20, refilled_ago=timedelta(0), is_guest=False) -> dict:
    return {
        "id": user_id,
        "credits": credits,
        "max_credits": max_credits,
        "last_credit_refill": clock() - refilled_ago,
        "is_guest": is_guest,
    }


@pytest.fixture
def make_service(clock):
    def _make(ledger: FakeLedger) -> CreditService:
        return CreditService(ledger.postgres, clock)
    return _make


class TestSpend:
    """CreditService.spend"""

    def test_spend_records_ledger_entry(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5))
        ledger.update_rows = [{"credits": 4}]

        transaction = make_service(ledger).spend(test_user_id, 1, related_id="story-1")

        assert transaction.transaction_type == TransactionType.SPEND
        assert transaction.source == TransactionSource.CHOICE
        assert transaction.balance_before == 5
        assert transaction.balance_after == 4
        assert transaction.related_id == "story-1"

    def test_update_is_conditional_on_balance(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5))
        ledger.update_rows = [{"credits": 3}]

        make_service(ledger).spend(test_user_id, 2)

        query, params = ledger.updates[0]
        assert "WHERE id = %s AND credits >= %s" in query
        assert params == (2, clock(), test_user_id, 2)

    def test_ledger_written_under_user_context(self, make_service, clock, test_user_id):
        """credit_transactions is RLS-scoped; the insert must run as the reader."""
        ledger = FakeLedger(account(test_user_id, clock))
        ledger.update_rows = [{"credits": 4}]

        make_service(ledger).spend(test_user_id, 1)

        assert ledger.inserts[0][1] == test_user_id
        with pytest.raises(RuntimeError):
            get_current_user_id()

    def test_balance_and_ledger_share_one_transaction(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5))
        ledger.update_rows = [{"credits": 4}]

        make_service(ledger).spend(test_user_id, 1)

        statements = [call.args[0].split()[0] for call in ledger.tx.execute_returning.call_args_list]
        assert statements == ["UPDATE", "INSERT"]
        assert ledger.commits == 1
        ledger.postgres.execute_returning.assert_not_called()

    def test_failed_ledger_insert_commits_nothing(self, make_service, clock, test_user_id):
        """A balance change never lands without its ledger row."""
        ledger = FakeLedger(account(test_user_id, clock, credits=5))

        def insert_fails(query, params=None):
            if "INSERT INTO credit_transactions" in query:
                raise psycopg2.OperationalError("server closed the connection")
            return [{"credits": 4}]

        ledger.tx.execute_returning.side_effect = insert_fails

        with pytest.raises(psycopg2.OperationalError):
            make_service(ledger).spend(test_user_id, 1)

        assert ledger.commits == 0

    def test_insufficient_balance_touches_nothing(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=0))

        with pytest.raises(InsufficientCreditsError):
            make_service(ledger).spend(test_user_id, 1)

        ledger.tx.execute_returning.assert_not_called()

    def test_concurrent_spend_lost(self, make_service, clock, test_user_id):
        """Read saw enough credits but another spend drained them first."""
        ledger = FakeLedger(account(test_user_id, clock, credits=1))
        ledger.postgres.execute_single.side_effect = [
            account(test_user_id, clock, credits=1),
            account(test_user_id, clock, credits=0),
        ]
        ledger.update_rows = []

        with pytest.raises(InsufficientCreditsError) as exc:
            make_service(ledger).spend(test_user_id, 1)

        assert exc.value.balance == 0
        assert ledger.inserts == []

    def test_unknown_user(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock))
        ledger.postgres.execute_single.return_value = None

        with pytest.raises(CreditAccountNotFoundError):
            make_service(ledger).spend(test_user_id, 1)


class TestEarn:
    """CreditService.earn / award_story_completion"""

    def test_earn_bonus(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5))
        ledger.update_rows = [{"credits": 10}]

        transaction = make_service(ledger).earn(
            test_user_id, 5,
            transaction_type=TransactionType.BONUS,
            source=TransactionSource.ACHIEVEMENT,
        )

        assert transaction.balance_before == 5
        assert transaction.balance_after == 10
        query, params = ledger.updates[0]
        assert params == (5, test_user_id, 5, 120)

    def test_spend_type_rejected(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock))

        with pytest.raises(InvalidTransactionError, match="spend"):
            make_service(ledger).earn(test_user_id, 1, transaction_type=TransactionType.SPEND)

    def test_cap_exceeded(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=119))

        with pytest.raises(InvalidTransactionError):
            make_service(ledger).earn(test_user_id, 2)

        ledger.tx.execute_returning.assert_not_called()

    def test_concurrent_earn_hits_cap(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=110))
        ledger.update_rows = []

        with pytest.raises(InvalidTransactionError):
            make_service(ledger).earn(test_user_id, 5)

        assert ledger.inserts == []
        assert ledger.commits == 0

    def test_guest_story_completion_with_review(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5, is_guest=True))
        ledger.update_rows = [{"credits": 8}]

        transaction = make_service(ledger).award_story_completion(test_user_id, "story-7", has_review=True)

        assert transaction.amount == 3
        assert transaction.source == TransactionSource.COMPLETION
        assert transaction.description == "Story completed with review"
        assert transaction.related_id == "story-7"


class TestRefill:
    """CreditService.refill"""

    def test_keeps_partial_interval(self, make_service, clock, test_user_id):
        """12 minutes since last refill: 2 credits, and the 2 spare minutes carry over."""
        acct = account(test_user_id, clock, credits=5, refilled_ago=timedelta(minutes=12))
        ledger = FakeLedger(acct)
        ledger.update_rows = [{"credits": 7}]

        added = make_service(ledger).refill(test_user_id)

        assert added == 2
        _, params = ledger.updates[0]
        assert params == (
            2,
            acct["last_credit_refill"] + timedelta(minutes=10),
            test_user_id,
            5,
            acct["last_credit_refill"],
        )
        ledger_params, _ = ledger.inserts[0]
        assert ledger_params[2] == "refill"

    def test_reaching_max_resets_clock(self, make_service, clock, test_user_id):
        acct = account(test_user_id, clock, credits=19, refilled_ago=timedelta(minutes=12))
        ledger = FakeLedger(acct)
        ledger.update_rows = [{"credits": 20}]

        added = make_service(ledger).refill(test_user_id)

        assert added == 1
        _, params = ledger.updates[0]
        assert params[1] == clock()

    def test_nothing_due(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, refilled_ago=timedelta(minutes=3)))

        assert make_service(ledger).refill(test_user_id) == 0
        ledger.tx.execute_returning.assert_not_called()

    def test_concurrent_refill_lost(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, refilled_ago=timedelta(minutes=30)))
        ledger.update_rows = []

        assert make_service(ledger).refill(test_user_id) == 0
        assert ledger.inserts == []

    def test_refill_and_ledger_commit_together(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5, refilled_ago=timedelta(minutes=5)))
        ledger.update_rows = [{"credits": 6}]

        assert make_service(ledger).refill(test_user_id) == 1
        assert ledger.commits == 1
        assert len(ledger.inserts) == 1
        ledger.postgres.execute_returning.assert_not_called()


class TestBalanceAndCaps:
    """get_balance / update_max_credits / history"""

    def test_balance_reports_next_refill(self, make_service, clock, test_user_id):
        acct = account(test_user_id, clock, credits=5, refilled_ago=timedelta(minutes=2))
        ledger = FakeLedger(acct)

        balance = make_service(ledger).get_balance(test_user_id)

        assert balance.credits == 5
        assert balance.max_credits == 20
        assert balance.next_refill_at == acct["last_credit_refill"] + timedelta(minutes=5)

    def test_overdue_refill_reported_as_now(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=5, refilled_ago=timedelta(minutes=12)))

        assert make_service(ledger).get_balance(test_user_id).next_refill_at == clock()

    def test_full_balance_has_no_next_refill(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock, credits=20))

        assert make_service(ledger).get_balance(test_user_id).next_refill_at is None

    def test_update_max_credits(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock))

        new_max = make_service(ledger).update_max_credits(test_user_id, ["first_story", "critic"])

        assert new_max == 28
        _, params = ledger.updates[0]
        assert params == (28, test_user_id)

    def test_history_reads_under_user_context(self, make_service, clock, test_user_id):
        ledger = FakeLedger(account(test_user_id, clock))
        seen = []

        def execute(query, params=None):
            seen.append(get_current_user_id())
            return [{
                "id": uuid4(),
                "user_id": test_user_id,
                "transaction_type": "spend",
                "source": "choice",
                "amount": 1,
                "balance_before": 5,
                "balance_after": 4,
                "description": None,
                "related_id": None,
                "created_at": clock(),
            }]

        ledger.postgres.execute.side_effect = execute

        history = make_service(ledger).history(test_user_id, limit=10)

        assert seen == [test_user_id]
        assert history[0].transaction_type == TransactionType.SPEND
        assert ledger.postgres.execute.call_args.args[1] == (test_user_id, 10)
