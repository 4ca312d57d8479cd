"""
Reconciliation service — turns bank webhooks into settlements.

For every inbound call:
1. Persist a WebhookEvent and commit it, before anything else
2. Verify the shared-secret token
3. Reject provider error envelopes and bodies without data
4. Run the matcher against pending transactions
5. Settle (complete + credit) or record why not

The provider always gets a success-shaped acknowledgement.
Failures are written to the WebhookEvent instead of surfacing
as non-2xx responses, which would only trigger redelivery.

Unlike the other services, receive() owns its commits: the
intake row has to be durable even when processing fails.
"""

import hmac
from dataclasses import dataclass

from sqlalchemy.orm import Session

from payment_reconciliation.config import get_settings
from payment_reconciliation.logging_config import get_logger
from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.models.webhook_event import WebhookEvent
from payment_reconciliation.models.enums import WebhookSource, WebhookStatus
from payment_reconciliation.schemas.webhook import WebhookAck
from payment_reconciliation.services.exceptions import EventStateConflict
from payment_reconciliation.services.ledger_service import LedgerService
from payment_reconciliation.services.matcher import (
    AmountMismatch,
    MatchOutcome,
    NoCodeFound,
    NoPendingTransaction,
    match,
)
from payment_reconciliation.services.webhook_log_service import (
    IN_FLIGHT,
    WebhookLogService,
)


logger = get_logger(__name__)


@dataclass
class ReconciliationResult:
    """What happened to one event, for the caller to report."""
    outcome: MatchOutcome
    event: WebhookEvent
    transaction: Transaction | None
    settled: bool
    message: str

    @property
    def success(self) -> bool:
        return self.settled


def verify_token(token: str | None, secret: str) -> bool:
    """
    Compare the provider token with the shared secret.

    An empty secret disables verification (local setups).
    """
    if not secret:
        logger.warning("CASSO_WEBHOOK_SECRET not set, skipping verification")
        return True
    if not token:
        return False
    return hmac.compare_digest(token, secret)


class ReconciliationService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.ledger = LedgerService(db)
        self.webhook_log = WebhookLogService(db)

    def receive(
        self,
        payload: dict,
        *,
        token: str | None = None,
        headers: dict | None = None,
        ip_address: str | None = None,
    ) -> WebhookAck:
        """Handle one provider delivery end to end. Never raises."""
        try:
            event = self.webhook_log.record(
                payload,
                source=WebhookSource.CASSO,
                headers=headers,
                ip_address=ip_address,
            )
            self.db.commit()
        except Exception:
            # The store itself is unreachable; nothing left to write to
            self.db.rollback()
            logger.exception("Could not persist inbound webhook")
            return WebhookAck(success=False, message="Processing error")

        event_id = event.id
        logger.info(
            "Webhook received id=%s code=%s amount=%s ref=%s",
            event_id,
            event.parsed_code,
            event.parsed_amount,
            event.external_transaction_id,
        )

        try:
            ack = self._process_delivery(event, token)
            self.db.commit()
            return ack
        except Exception as e:
            self.db.rollback()
            logger.exception("Webhook processing failed id=%s", event_id)
            self._record_failure(event_id, str(e))
            return WebhookAck(success=False, message="Processing error")

    def _process_delivery(self, event: WebhookEvent, token: str | None) -> WebhookAck:
        if not self.webhook_log.transition(
            event, WebhookStatus.PROCESSING, allowed_from=(WebhookStatus.RECEIVED,)
        ):
            logger.warning("Webhook id=%s left RECEIVED before processing", event.id)
            return WebhookAck(success=False, message="Processing error")

        if not verify_token(token, self.settings.CASSO_WEBHOOK_SECRET):
            logger.warning("Invalid webhook token id=%s ip=%s", event.id, event.ip_address)
            self._finish(event, WebhookStatus.ERROR, error="Invalid webhook signature")
            return WebhookAck(success=False, message="Invalid signature")

        payload = event.payload
        error_code = payload.get("error")
        if error_code != 0:
            logger.warning("Provider error envelope id=%s error=%s", event.id, error_code)
            self._finish(
                event, WebhookStatus.ERROR, error=f"Casso error code: {error_code}"
            )
            return WebhookAck(success=False, message="Webhook error")

        if not isinstance(payload.get("data"), dict):
            self._finish(
                event, WebhookStatus.ERROR, error="No transaction data in webhook"
            )
            return WebhookAck(success=False, message="No data")

        result = self.process_event(event)
        return WebhookAck(success=True, message=result.message)

    def _record_failure(self, event_id: int, message: str) -> None:
        try:
            event = self.db.get(WebhookEvent, event_id)
            if event is None:
                return
            self.webhook_log.transition(
                event, WebhookStatus.ERROR, allowed_from=IN_FLIGHT, error=message,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Could not record failure on webhook id=%s", event_id)

    def _finish(self, event: WebhookEvent, status: WebhookStatus, **fields) -> None:
        """
        Write the outcome of a claimed event.

        The event must still be PROCESSING. If it is not, somebody
        else moved it and this unit of work has to be rolled back,
        ledger changes included.
        """
        if not self.webhook_log.transition(
            event, status, allowed_from=(WebhookStatus.PROCESSING,), **fields
        ):
            raise EventStateConflict(
                f"Webhook {event.id} is {event.status.value}, no longer processing"
            )

    def process_event(
        self,
        event: WebhookEvent,
        *,
        processed_by: int | None = None,
        admin_note: str | None = None,
        notes_prefix: str = "",
    ) -> ReconciliationResult:
        """
        Run the matcher over a claimed (PROCESSING) event and apply
        the outcome.

        Shared by live deliveries and operator reprocessing. Only
        flushes; the caller commits, or rolls back on
        EventStateConflict.
        """
        parsed = self.webhook_log.parsed(event)
        pending = {}
        if parsed.code:
            candidate = self.ledger.find_pending_by_code(parsed.code)
            if candidate is not None:
                pending[parsed.code] = candidate

        outcome = match(parsed, pending)

        if isinstance(outcome, NoCodeFound):
            return self._unmatched(
                event, outcome,
                f"{notes_prefix}No transfer code found. "
                f"Description: {event.parsed_description}",
                "No matching code found",
            )

        if isinstance(outcome, NoPendingTransaction):
            return self._unmatched(
                event, outcome,
                f"{notes_prefix}No pending transaction found for code: {outcome.code}",
                "No pending transaction found",
            )

        txn = outcome.transaction

        if isinstance(outcome, AmountMismatch):
            failed = self.ledger.fail(
                txn,
                outcome.reason,
                webhook_event_id=event.id,
                webhook_data=event.payload,
                processed_by=processed_by,
            )
            if not failed:
                return self._lost_race(event, notes_prefix, txn)
            logger.warning(
                "Amount mismatch code=%s expected=%s got=%s webhook=%s",
                txn.transfer_code, outcome.expected, outcome.received, event.id,
            )
            self._finish(
                event,
                WebhookStatus.ERROR,
                error=outcome.reason,
                notes=f"{notes_prefix}{outcome.reason}",
                transaction_id=txn.id,
                user_id=txn.user_id,
            )
            return ReconciliationResult(
                outcome=outcome, event=event, transaction=txn,
                settled=False, message="Amount mismatch",
            )

        settled = self.ledger.settle(
            txn,
            description=(
                f"Top-up {txn.credits} credits from "
                f"{event.counter_account_name or 'Bank Transfer'}"
            ),
            webhook_event_id=event.id,
            webhook_data=event.payload,
            bank_transaction_id=event.external_transaction_id,
            processed_by=processed_by,
            admin_note=admin_note,
        )
        if not settled:
            return self._lost_race(event, notes_prefix, txn)

        self._finish(
            event,
            WebhookStatus.MATCHED,
            notes=f"{notes_prefix}Matched and processed. Credits: {txn.credits}",
            transaction_id=txn.id,
            user_id=txn.user_id,
        )
        logger.info(
            "Settled code=%s user=%s credits=%s webhook=%s",
            txn.transfer_code, txn.user_id, txn.credits, event.id,
        )
        return ReconciliationResult(
            outcome=outcome, event=event, transaction=txn,
            settled=True, message="Webhook processed successfully",
        )

    def _unmatched(
        self,
        event: WebhookEvent,
        outcome: MatchOutcome,
        notes: str,
        message: str,
    ) -> ReconciliationResult:
        logger.info("Webhook unmatched id=%s: %s", event.id, notes)
        self._finish(event, WebhookStatus.UNMATCHED, notes=notes)
        return ReconciliationResult(
            outcome=outcome, event=event, transaction=None,
            settled=False, message=message,
        )

    def _lost_race(
        self,
        event: WebhookEvent,
        notes_prefix: str,
        txn: Transaction,
    ) -> ReconciliationResult:
        # Another delivery (or a sweep/cancel) moved the row out of
        # PENDING between our read and our conditional update.
        code = txn.transfer_code
        return self._unmatched(
            event,
            NoPendingTransaction(code=code),
            f"{notes_prefix}Transaction {code} left pending state concurrently",
            "No pending transaction found",
        )
