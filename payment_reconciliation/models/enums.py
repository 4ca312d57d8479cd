"""
Shared enumerations for database models.

Using Python enums mapped to database enums ensures that
only valid values can be stored. An invalid status or kind
is caught at the database level, not just in Python validation.
"""

import enum


class UserRole(str, enum.Enum):
    STUDENT = "student"
    PARTNER = "partner"
    ADMIN = "admin"


class TransactionKind(str, enum.Enum):
    """What the money movement was for."""
    TOPUP = "topup"
    SPEND = "spend"
    REFUND = "refund"
    MANUAL_TOPUP = "manual_topup"
    BONUS = "bonus"


class TransactionStatus(str, enum.Enum):
    """Lifecycle of a transaction. Everything but PENDING is terminal."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    MANUAL = "manual"
    SYSTEM = "system"


class WebhookSource(str, enum.Enum):
    CASSO = "casso"
    MANUAL = "manual"
    OTHER = "other"


class WebhookStatus(str, enum.Enum):
    """
    Processing state of an inbound webhook.

    RECEIVED and PROCESSING are transient. MATCHED, UNMATCHED,
    ERROR and IGNORED are outcomes.
    """
    RECEIVED = "received"
    PROCESSING = "processing"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    ERROR = "error"
    IGNORED = "ignored"
