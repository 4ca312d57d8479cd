"""
Admin recovery service — operator actions on payments.

Covers what automatic matching cannot: replaying a logged
webhook, attaching an unmatched webhook to a user, closing one
out, sweeping confirmed-but-unpaid requests, and crediting a
user directly. Every path that moves a balance goes through
LedgerService; the caller commits.
"""

from datetime import datetime, timedelta

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from payment_reconciliation.config import get_settings
from payment_reconciliation.logging_config import get_logger
from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.models.user import User
from payment_reconciliation.models.webhook_event import WebhookEvent
from payment_reconciliation.models.enums import (
    PaymentMethod,
    TransactionKind,
    TransactionStatus,
    WebhookStatus,
)
from payment_reconciliation.services.exceptions import EventStateConflict, NotFoundError
from payment_reconciliation.services.ledger_service import LedgerService
from payment_reconciliation.services.pricing import lookup_credits
from payment_reconciliation.services.reconciliation_service import (
    ReconciliationResult,
    ReconciliationService,
)
from payment_reconciliation.services.webhook_log_service import (
    ASSIGNABLE,
    IGNORABLE,
    REPROCESSABLE,
    WebhookLogService,
)


logger = get_logger(__name__)

MANUAL_CODE_PREFIX = "MANUAL"
ASSIGNED_CODE_PREFIX = "WEBHOOK"


class AdminService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.ledger = LedgerService(db)
        self.webhook_log = WebhookLogService(db)
        self.reconciliation = ReconciliationService(db)

    def _get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _refusal(self, event: WebhookEvent, action: str) -> ValueError:
        if event.status == WebhookStatus.MATCHED:
            return ValueError("Webhook already matched")
        return EventStateConflict(
            f"Cannot {action} webhook in {event.status.value} state"
        )

    def reprocess(self, event_id: int, admin: User) -> ReconciliationResult:
        """
        Run the matcher again over a logged webhook.

        Uses the stored projection, not the provider. The event is
        claimed into PROCESSING first, so only one actor at a time
        can act on it; matched and in-flight events are refused.
        """
        event = self.webhook_log.get_event(event_id)
        if not self.webhook_log.transition(
            event, WebhookStatus.PROCESSING, allowed_from=REPROCESSABLE
        ):
            raise self._refusal(event, "reprocess")

        result = self.reconciliation.process_event(
            event,
            processed_by=admin.id,
            admin_note="Reprocessed from webhook log by admin",
            notes_prefix="Reprocessed: ",
        )
        logger.info(
            "Webhook %s reprocessed by admin=%s outcome=%s",
            event_id, admin.id, result.outcome.name,
        )
        return result

    def assign_user(
        self,
        event_id: int,
        user_id: int,
        admin: User,
        note: str | None = None,
        credits: int | None = None,
    ) -> tuple[WebhookEvent, Transaction, int]:
        """
        Credit a user for a webhook that never matched.

        Credits default to the price-list value of the paid amount.
        Returns (event, new completed transaction, new balance).
        """
        event = self.webhook_log.get_event(event_id)
        if event.status == WebhookStatus.MATCHED:
            raise ValueError("Webhook already matched")

        user = self._get_user(user_id)

        amount = event.parsed_amount or 0
        if amount <= 0:
            raise ValueError("Invalid amount in webhook")
        if credits is None:
            credits = lookup_credits(amount)
        if credits <= 0:
            raise ValueError("Amount too small to convert to credits")

        notes = (
            f"Manually assigned to {user.name} ({user.email}) by admin. "
            f"Credits: {credits}"
        )
        if not self.webhook_log.transition(
            event, WebhookStatus.MATCHED, allowed_from=ASSIGNABLE, notes=notes
        ):
            raise self._refusal(event, "assign")

        txn = self.ledger.record_completed(
            user_id=user.id,
            kind=TransactionKind.TOPUP,
            amount=amount,
            credits=credits,
            payment_method=PaymentMethod.BANK_TRANSFER,
            code_prefix=ASSIGNED_CODE_PREFIX,
            description=f"Admin assigned from webhook: {note or 'Manual assignment'}",
            processed_by=admin.id,
            admin_note=note or "Assigned from unmatched webhook by admin",
            webhook_event_id=event.id,
            webhook_data=event.payload,
            bank_transaction_id=event.external_transaction_id,
        )
        # Already MATCHED under this unit of work; only the cross-refs change
        self.webhook_log.transition(
            event,
            WebhookStatus.MATCHED,
            allowed_from=(WebhookStatus.MATCHED,),
            transaction_id=txn.id,
            user_id=user.id,
        )
        logger.info(
            "Webhook %s assigned to user=%s credits=%s by admin=%s",
            event_id, user.id, credits, admin.id,
        )
        return event, txn, self.ledger.get_balance(user.id)

    def ignore(self, event_id: int, admin: User, note: str | None = None) -> WebhookEvent:
        """Close out an unmatched or failed webhook with no ledger action."""
        event = self.webhook_log.get_event(event_id)
        notes = f"Ignored by admin: {note or 'No reason provided'}"
        if not self.webhook_log.transition(
            event, WebhookStatus.IGNORED, allowed_from=IGNORABLE, notes=notes
        ):
            if event.status == WebhookStatus.MATCHED:
                raise ValueError("Cannot ignore matched webhook")
            raise self._refusal(event, "ignore")
        logger.info("Webhook %s ignored by admin=%s", event_id, admin.id)
        return event

    def sweep_timeouts(self, now: datetime | None = None) -> int:
        """
        Time out pending requests confirmed more than the grace
        window ago. Safe to call repeatedly.
        """
        now = now or datetime.utcnow()
        grace = self.settings.TIMEOUT_GRACE_MINUTES
        count = self.ledger.sweep_timeouts(now - timedelta(minutes=grace), grace)
        logger.info("Timeout sweep moved %s transactions", count)
        return count

    def manual_topup(
        self,
        user_id: int,
        credits: int,
        admin: User,
        note: str | None = None,
    ) -> tuple[Transaction, int]:
        """Credit a user with no payment behind it."""
        if credits <= 0:
            raise ValueError("Credits must be positive")
        user = self._get_user(user_id)
        txn = self.ledger.record_completed(
            user_id=user.id,
            kind=TransactionKind.MANUAL_TOPUP,
            amount=0,
            credits=credits,
            payment_method=PaymentMethod.MANUAL,
            code_prefix=MANUAL_CODE_PREFIX,
            description=f"Admin top-up: {note or 'No note'}",
            processed_by=admin.id,
            admin_note=note,
        )
        logger.info(
            "Manual top-up user=%s credits=%s by admin=%s", user.id, credits, admin.id
        )
        return txn, self.ledger.get_balance(user.id)

    def verify(
        self,
        transaction_id: int,
        action: str,
        admin: User,
        reason: str | None = None,
    ) -> Transaction:
        """Approve (settle) or reject (fail) a pending transaction by hand."""
        txn = self.ledger.get_transaction(transaction_id)
        if txn.status != TransactionStatus.PENDING:
            raise ValueError(f"Transaction is already {txn.status.value}")

        if action == "approve":
            done = self.ledger.settle(
                txn, processed_by=admin.id, admin_note=reason or "Approved by admin",
            )
        elif action == "reject":
            done = self.ledger.fail(
                txn, reason or "Rejected by admin", processed_by=admin.id,
            )
        else:
            raise ValueError('Action must be "approve" or "reject"')

        if not done:
            raise ValueError("Transaction is no longer pending")
        logger.info(
            "Transaction %s %s by admin=%s", transaction_id, action, admin.id
        )
        return txn

    def stats(self) -> dict:
        today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        total_users = self.db.execute(select(func.count(User.id))).scalar_one()
        return {
            "total_users": total_users,
            "total_transactions": self.ledger.count_since(),
            "pending_transactions": self.ledger.count_since(
                status=TransactionStatus.PENDING
            ),
            "today_transactions": self.ledger.count_since(today),
            "today_webhooks": self.webhook_log.count_since(today),
            "transactions_by_kind": self.ledger.count_by_kind(),
        }
