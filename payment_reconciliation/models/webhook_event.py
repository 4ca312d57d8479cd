"""
Webhook intake log.

Every inbound provider call is recorded here before any matching
runs, whether or not it is authentic or well formed. Rows are
updated in place with the outcome and never deleted.
"""

from datetime import datetime

from sqlalchemy import (
    String, DateTime, BigInteger, ForeignKey, JSON, Text,
    Enum as SAEnum, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_reconciliation.models.base import Base
from payment_reconciliation.models.enums import WebhookSource, WebhookStatus


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_source_status", "source", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[WebhookSource] = mapped_column(
        SAEnum(WebhookSource, name="webhook_source_enum", create_constraint=True),
        nullable=False,
        default=WebhookSource.CASSO,
        index=True,
    )
    # Opaque provider body. Matching never reads it; it reads the
    # parsed_* projection below.
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    parsed_code: Mapped[str | None] = mapped_column(
        String(40), nullable=True, index=True
    )
    parsed_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    parsed_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_transaction_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    transacted_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    counter_account_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )

    status: Mapped[WebhookStatus] = mapped_column(
        SAEnum(WebhookStatus, name="webhook_status_enum", create_constraint=True),
        nullable=False,
        default=WebhookStatus.RECEIVED,
        index=True,
    )
    matched_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id"), nullable=True
    )
    matched_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Forensics
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    matched_transaction: Mapped["Transaction | None"] = relationship()
    matched_user: Mapped["User | None"] = relationship()

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.id} {self.source.value} ({self.status.value})>"
