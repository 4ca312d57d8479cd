"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from payment_reconciliation.models.base import Base
from payment_reconciliation.models.enums import (
    UserRole,
    TransactionKind,
    TransactionStatus,
    PaymentMethod,
    WebhookSource,
    WebhookStatus,
)
from payment_reconciliation.models.user import User
from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.models.webhook_event import WebhookEvent

__all__ = [
    "Base",
    "UserRole",
    "TransactionKind",
    "TransactionStatus",
    "PaymentMethod",
    "WebhookSource",
    "WebhookStatus",
    "User",
    "Transaction",
    "WebhookEvent",
]
