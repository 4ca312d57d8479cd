"""
Tests for the LedgerService.

These verify the money rules: balances move by atomic deltas,
and a transaction leaves PENDING exactly once.
"""

from datetime import datetime, timedelta

import pytest

from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.models.enums import (
    PaymentMethod,
    TransactionKind,
    TransactionStatus,
)
from payment_reconciliation.services.exceptions import NotFoundError
from payment_reconciliation.services.ledger_service import LedgerService


def create_pending(db_session, user, code="ALPHAAB23CD", amount=100000, credits=100):
    """Helper: pending top-up for `user`, committed."""
    txn = LedgerService(db_session).create_pending(
        user_id=user.id,
        transfer_code=code,
        amount=amount,
        credits=credits,
        description=f"Top-up {credits} credits",
        expires_at=datetime.utcnow() + timedelta(minutes=30),
    )
    db_session.commit()
    return txn


# --- Balances ---

class TestBalances:

    def test_credit_adds_to_balance(self, db_session, student):
        ledger = LedgerService(db_session)
        ledger.credit(student.id, 100)
        ledger.credit(student.id, 50)
        db_session.commit()

        assert ledger.get_balance(student.id) == 150

    def test_credit_unknown_user_raises(self, db_session):
        with pytest.raises(NotFoundError):
            LedgerService(db_session).credit(9999, 10)

    def test_negative_credit_rejected(self, db_session, student):
        with pytest.raises(ValueError):
            LedgerService(db_session).credit(student.id, -5)

    def test_debit_takes_from_balance(self, db_session, make_user):
        user = make_user(balance=100)
        ledger = LedgerService(db_session)
        ledger.debit(user.id, 30)
        db_session.commit()

        assert ledger.get_balance(user.id) == 70

    def test_debit_never_overdraws(self, db_session, make_user):
        user = make_user(balance=20)
        ledger = LedgerService(db_session)

        with pytest.raises(ValueError, match="Insufficient balance"):
            ledger.debit(user.id, 21)
        assert ledger.get_balance(user.id) == 20

    def test_debit_whole_balance(self, db_session, make_user):
        user = make_user(balance=20)
        ledger = LedgerService(db_session)
        ledger.debit(user.id, 20)

        assert ledger.get_balance(user.id) == 0


# --- Settlement ---

class TestSettle:

    def test_settle_completes_and_credits(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.settle(txn, webhook_event_id=7, bank_transaction_id="FT1") is True
        db_session.commit()

        assert txn.status == TransactionStatus.COMPLETED
        assert txn.processed_at is not None
        assert txn.webhook_event_id == 7
        assert txn.bank_transaction_id == "FT1"
        assert ledger.get_balance(student.id) == 100

    def test_settle_rewrites_description_when_given(self, db_session, student):
        txn = create_pending(db_session, student)
        LedgerService(db_session).settle(
            txn, description="Top-up 100 credits from NGUYEN VAN A",
        )

        assert txn.description == "Top-up 100 credits from NGUYEN VAN A"

    def test_second_settle_is_refused(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.settle(txn) is True
        assert ledger.settle(txn) is False
        db_session.commit()

        assert ledger.get_balance(student.id) == 100

    def test_stale_copy_loses_the_race(self, db_session, student):
        """
        Two handlers read the same PENDING row. Only the first
        conditional update wins; the second credits nothing.
        """
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        stale = Transaction(
            id=txn.id, user_id=student.id, credits=txn.credits,
            status=TransactionStatus.PENDING,
        )

        assert ledger.settle(txn) is True
        assert ledger.settle(stale) is False
        assert ledger.get_balance(student.id) == 100

    def test_settle_after_fail_is_refused(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.fail(txn, "Amount mismatch: expected 100000, got 99999")
        assert ledger.settle(txn) is False

        assert txn.status == TransactionStatus.FAILED
        assert ledger.get_balance(student.id) == 0


class TestFail:

    def test_fail_records_reason_without_credit(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.fail(txn, "Rejected", webhook_data={"error": 0}) is True
        db_session.commit()

        assert txn.status == TransactionStatus.FAILED
        assert txn.failed_reason == "Rejected"
        assert txn.webhook_data == {"error": 0}
        assert ledger.get_balance(student.id) == 0

    def test_fail_only_once(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.fail(txn, "first") is True
        assert ledger.fail(txn, "second") is False
        assert txn.failed_reason == "first"


# --- Timeouts ---

class TestSweepTimeouts:

    def _confirm_at(self, db_session, txn, when):
        txn.confirmed_at = when
        db_session.commit()

    def test_old_confirmed_pending_times_out(self, db_session, student):
        txn = create_pending(db_session, student)
        now = datetime.utcnow()
        self._confirm_at(db_session, txn, now - timedelta(minutes=6))
        ledger = LedgerService(db_session)

        assert ledger.sweep_timeouts(now - timedelta(minutes=5), 5) == 1
        db_session.commit()
        db_session.refresh(txn)

        assert txn.status == TransactionStatus.TIMEOUT
        assert txn.failed_reason == (
            "No webhook received within 5 minutes after confirmation"
        )

    def test_recent_or_unconfirmed_are_left_alone(self, db_session, student):
        recent = create_pending(db_session, student, code="ALPHAAB23CD")
        unconfirmed = create_pending(db_session, student, code="ALPHAEF45GH")
        now = datetime.utcnow()
        self._confirm_at(db_session, recent, now - timedelta(minutes=2))

        assert LedgerService(db_session).sweep_timeouts(now - timedelta(minutes=5), 5) == 0
        db_session.refresh(recent)
        db_session.refresh(unconfirmed)

        assert recent.status == TransactionStatus.PENDING
        assert unconfirmed.status == TransactionStatus.PENDING

    def test_sweep_is_idempotent(self, db_session, student):
        txn = create_pending(db_session, student)
        now = datetime.utcnow()
        self._confirm_at(db_session, txn, now - timedelta(minutes=10))
        ledger = LedgerService(db_session)

        assert ledger.sweep_timeouts(now - timedelta(minutes=5), 5) == 1
        assert ledger.sweep_timeouts(now - timedelta(minutes=5), 5) == 0

    def test_timed_out_transaction_cannot_settle(self, db_session, student):
        txn = create_pending(db_session, student)
        now = datetime.utcnow()
        self._confirm_at(db_session, txn, now - timedelta(minutes=10))
        ledger = LedgerService(db_session)
        ledger.sweep_timeouts(now - timedelta(minutes=5), 5)

        assert ledger.settle(txn) is False
        assert ledger.get_balance(student.id) == 0


# --- Creation ---

class TestRecordCompleted:

    def test_inserts_completed_row_and_credits(self, db_session, student, admin):
        ledger = LedgerService(db_session)
        txn = ledger.record_completed(
            user_id=student.id,
            kind=TransactionKind.MANUAL_TOPUP,
            amount=0,
            credits=25,
            payment_method=PaymentMethod.MANUAL,
            code_prefix="MANUAL",
            description="Admin top-up: goodwill",
            processed_by=admin.id,
        )
        db_session.commit()

        assert txn.status == TransactionStatus.COMPLETED
        assert txn.transfer_code.startswith("MANUAL")
        assert txn.processed_by == admin.id
        assert ledger.get_balance(student.id) == 25

    def test_system_codes_are_distinct(self):
        codes = {LedgerService.system_code("MANUAL") for _ in range(100)}
        assert len(codes) == 100


# --- Queries ---

class TestQueries:

    def test_find_pending_by_code(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.find_pending_by_code("ALPHAAB23CD").id == txn.id
        assert ledger.find_pending_by_code("ALPHAZZ99ZZ") is None

    def test_find_pending_skips_settled(self, db_session, student):
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)
        ledger.settle(txn)

        assert ledger.find_pending_by_code("ALPHAAB23CD") is None
        assert ledger.code_exists("ALPHAAB23CD") is True

    def test_delete_pending_only_for_owner(self, db_session, student, make_user):
        other = make_user(email="other@test.com")
        txn = create_pending(db_session, student)
        ledger = LedgerService(db_session)

        assert ledger.delete_pending(txn.id, other.id) is False
        assert ledger.delete_pending(txn.id, student.id) is True
        assert ledger.code_exists("ALPHAAB23CD") is False

    def test_list_transactions_filters_and_counts(self, db_session, student):
        first = create_pending(db_session, student, code="ALPHAAB23CD")
        create_pending(db_session, student, code="ALPHAEF45GH")
        ledger = LedgerService(db_session)
        ledger.settle(first)
        db_session.commit()

        txns, total = ledger.list_transactions(
            user_id=student.id, status=TransactionStatus.PENDING,
        )
        assert total == 1
        assert txns[0].transfer_code == "ALPHAEF45GH"

        txns, total = ledger.list_transactions(search="ef45")
        assert total == 1

        breakdown = {
            row["status"]: row for row in ledger.status_breakdown(user_id=student.id)
        }
        assert breakdown[TransactionStatus.COMPLETED]["total_credits"] == 100
        assert breakdown[TransactionStatus.PENDING]["count"] == 1
