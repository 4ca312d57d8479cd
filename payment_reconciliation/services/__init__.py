"""Business logic services."""

from payment_reconciliation.services.ledger_service import LedgerService
from payment_reconciliation.services.webhook_log_service import WebhookLogService
from payment_reconciliation.services.reconciliation_service import ReconciliationService
from payment_reconciliation.services.topup_service import TopupService
from payment_reconciliation.services.admin_service import AdminService

__all__ = [
    "LedgerService",
    "WebhookLogService",
    "ReconciliationService",
    "TopupService",
    "AdminService",
]
