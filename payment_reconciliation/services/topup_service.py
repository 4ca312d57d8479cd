"""
Top-up service — user-initiated credit purchases.

A top-up request is a PENDING transaction carrying a unique
transfer code. The user pays by bank transfer with that code in
the memo; the reconciliation service later finds it by code.
"""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from payment_reconciliation.config import get_settings
from payment_reconciliation.logging_config import get_logger
from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.models.user import User
from payment_reconciliation.models.enums import TransactionStatus
from payment_reconciliation.schemas.payment import TopupResponse, TransactionResponse
from payment_reconciliation.services.exceptions import (
    NotFoundError,
    PendingLimitExceeded,
)
from payment_reconciliation.services.ledger_service import LedgerService
from payment_reconciliation.services.matcher import generate_unique_code
from payment_reconciliation.services.pricing import (
    build_qr_code_url,
    get_bank_info,
    get_package,
)


logger = get_logger(__name__)


class TopupService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.ledger = LedgerService(db)

    def create_topup(self, user: User, package_id: str) -> Transaction:
        """
        Open a pending top-up for one of the credit packages.

        Rejects when the user already has MAX_PENDING_TOPUPS open
        requests. The code is retried on collision and the unique
        constraint on transfer_code backs the check.
        """
        package = get_package(package_id)
        if package is None:
            raise ValueError("Invalid package selected")

        pending_count = self.ledger.count_pending(user.id)
        if pending_count >= self.settings.MAX_PENDING_TOPUPS:
            raise PendingLimitExceeded(
                "Too many pending top-ups. Complete or cancel one first."
            )

        code = generate_unique_code(
            self.settings.TRANSFER_CODE_PREFIX, self.ledger.code_exists
        )
        expires_at = datetime.utcnow() + timedelta(
            minutes=self.settings.TOPUP_EXPIRY_MINUTES
        )
        txn = self.ledger.create_pending(
            user_id=user.id,
            transfer_code=code,
            amount=package.price,
            credits=package.credits,
            description=f"Top-up {package.credits} credits - {package.label}",
            expires_at=expires_at,
        )
        logger.info(
            "Top-up created user=%s code=%s amount=%s credits=%s",
            user.id, code, package.price, package.credits,
        )
        return txn

    def payment_instructions(self, txn: Transaction) -> TopupResponse:
        return TopupResponse(
            transaction=TransactionResponse.model_validate(txn),
            transfer_code=txn.transfer_code,
            amount=txn.amount,
            credits=txn.credits,
            expires_at=txn.expires_at,
            bank_info=get_bank_info(),
            qr_code_url=build_qr_code_url(txn.amount, txn.transfer_code),
        )

    def confirm(self, user: User, transaction_id: int) -> Transaction:
        """
        Record that the user says the transfer has been sent.

        Starts the timeout window. Confirming twice keeps the
        first timestamp.
        """
        txn = self.ledger.get_user_transaction(transaction_id, user.id)
        if txn.status != TransactionStatus.PENDING:
            raise ValueError(f"Transaction is already {txn.status.value}")
        if txn.confirmed_at is None:
            self.ledger.confirm(txn)
        return txn

    def cancel(self, user: User, transaction_id: int) -> None:
        """Delete a pending request. Only the owner, only while pending."""
        if not self.ledger.delete_pending(transaction_id, user.id):
            raise NotFoundError("Transaction not found or already processed")
        logger.info("Top-up cancelled user=%s transaction=%s", user.id, transaction_id)

    def history(
        self,
        user: User,
        *,
        page: int = 1,
        limit: int = 20,
        status: TransactionStatus | None = None,
    ) -> tuple[list[Transaction], int, int]:
        """Return (page of transactions, total, pending count)."""
        txns, total = self.ledger.list_transactions(
            page=page, limit=limit, user_id=user.id, status=status,
        )
        return txns, total, self.ledger.count_pending(user.id)

    def pending(self, user: User) -> list[Transaction]:
        return self.ledger.list_pending(user.id)

    def get_status(self, user: User, transaction_id: int) -> Transaction:
        return self.ledger.get_user_transaction(transaction_id, user.id)
