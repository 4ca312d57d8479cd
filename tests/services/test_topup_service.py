"""
Tests for the TopupService.
"""

import re
from datetime import datetime, timedelta

import pytest

from payment_reconciliation.models.enums import (
    PaymentMethod,
    TransactionKind,
    TransactionStatus,
)
from payment_reconciliation.services.exceptions import (
    CodeGenerationExhausted,
    NotFoundError,
    PendingLimitExceeded,
)
from payment_reconciliation.services.ledger_service import LedgerService
from payment_reconciliation.services.topup_service import TopupService


class TestCreateTopup:

    def test_creates_pending_request(self, db_session, student):
        txn = TopupService(db_session).create_topup(student, "pkg1")
        db_session.commit()

        assert txn.status == TransactionStatus.PENDING
        assert txn.kind == TransactionKind.TOPUP
        assert txn.payment_method == PaymentMethod.BANK_TRANSFER
        assert txn.amount == 100000
        assert txn.credits == 100
        assert txn.user_id == student.id
        assert txn.confirmed_at is None
        assert re.fullmatch(r"ALPHA[A-Z0-9]{6}", txn.transfer_code)

    def test_bonus_package_credits(self, db_session, student):
        txn = TopupService(db_session).create_topup(student, "pkg3")

        assert txn.amount == 500000
        assert txn.credits == 550
        assert txn.description == "Top-up 550 credits - 550 Credits"

    def test_expires_after_thirty_minutes(self, db_session, student):
        before = datetime.utcnow()
        txn = TopupService(db_session).create_topup(student, "pkg0")

        assert before + timedelta(minutes=29) < txn.expires_at
        assert txn.expires_at <= datetime.utcnow() + timedelta(minutes=30)

    def test_unknown_package_rejected(self, db_session, student):
        with pytest.raises(ValueError, match="Invalid package"):
            TopupService(db_session).create_topup(student, "pkg99")

    def test_fourth_pending_request_rejected(self, db_session, student):
        service = TopupService(db_session)
        for _ in range(3):
            service.create_topup(student, "pkg1")
        db_session.commit()

        with pytest.raises(PendingLimitExceeded):
            service.create_topup(student, "pkg1")

    def test_limit_frees_up_after_cancel(self, db_session, student):
        service = TopupService(db_session)
        txns = [service.create_topup(student, "pkg1") for _ in range(3)]
        db_session.commit()

        service.cancel(student, txns[0].id)
        db_session.commit()

        assert service.create_topup(student, "pkg1").status == TransactionStatus.PENDING

    def test_codes_are_distinct(self, db_session, make_user):
        service = TopupService(db_session)
        codes = set()
        for i in range(10):
            user = make_user(email=f"user{i}@test.com")
            for _ in range(3):
                codes.add(service.create_topup(user, "pkg0").transfer_code)
        assert len(codes) == 30

    def test_collision_exhaustion_surfaces(self, db_session, student, monkeypatch):
        monkeypatch.setattr(LedgerService, "code_exists", lambda self, code: True)

        with pytest.raises(CodeGenerationExhausted):
            TopupService(db_session).create_topup(student, "pkg1")


class TestPaymentInstructions:

    def test_includes_bank_and_qr(self, db_session, student):
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        db_session.commit()

        info = service.payment_instructions(txn)

        assert info.transfer_code == txn.transfer_code
        assert info.amount == 100000
        assert info.bank_info.bank_id == "OCB"
        assert info.qr_code_url == (
            "https://img.vietqr.io/image/OCB-CASS55252503-compact2.png"
            f"?amount=100000&addInfo={txn.transfer_code}"
        )


class TestConfirm:

    def test_confirm_stamps_once(self, db_session, student):
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        db_session.commit()

        first = service.confirm(student, txn.id).confirmed_at
        db_session.commit()
        second = service.confirm(student, txn.id).confirmed_at

        assert first is not None
        assert second == first

    def test_confirm_settled_transaction_rejected(self, db_session, student):
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        LedgerService(db_session).settle(txn)
        db_session.commit()

        with pytest.raises(ValueError, match="already completed"):
            service.confirm(student, txn.id)

    def test_confirm_other_users_transaction_not_found(self, db_session, student, make_user):
        other = make_user(email="other@test.com")
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        db_session.commit()

        with pytest.raises(NotFoundError):
            service.confirm(other, txn.id)


class TestCancel:

    def test_cancel_removes_request(self, db_session, student):
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        db_session.commit()

        service.cancel(student, txn.id)
        db_session.commit()

        txns, total, pending_count = service.history(student)
        assert total == 0
        assert pending_count == 0

    def test_cancel_completed_not_allowed(self, db_session, student):
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        LedgerService(db_session).settle(txn)
        db_session.commit()

        with pytest.raises(NotFoundError, match="already processed"):
            service.cancel(student, txn.id)

    def test_cancel_by_other_user_not_allowed(self, db_session, student, make_user):
        other = make_user(email="other@test.com")
        service = TopupService(db_session)
        txn = service.create_topup(student, "pkg1")
        db_session.commit()

        with pytest.raises(NotFoundError):
            service.cancel(other, txn.id)


class TestHistory:

    def test_history_pages_newest_first(self, db_session, student):
        service = TopupService(db_session)
        first = service.create_topup(student, "pkg0")
        LedgerService(db_session).settle(first)
        second = service.create_topup(student, "pkg1")
        db_session.commit()

        txns, total, pending_count = service.history(student, page=1, limit=1)

        assert total == 2
        assert pending_count == 1
        assert [t.id for t in txns] == [second.id]

    def test_history_status_filter(self, db_session, student):
        service = TopupService(db_session)
        first = service.create_topup(student, "pkg0")
        LedgerService(db_session).settle(first)
        service.create_topup(student, "pkg1")
        db_session.commit()

        txns, total, _ = service.history(student, status=TransactionStatus.COMPLETED)

        assert total == 1
        assert txns[0].id == first.id

    def test_pending_lists_only_open_requests(self, db_session, student):
        service = TopupService(db_session)
        first = service.create_topup(student, "pkg0")
        LedgerService(db_session).settle(first)
        second = service.create_topup(student, "pkg1")
        db_session.commit()

        assert [t.id for t in service.pending(student)] == [second.id]
