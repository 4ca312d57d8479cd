"""
Transaction model.

One money movement: a user top-up request, an operator credit,
or a spend. The transfer_code is the correlation key the user
types into the bank transfer memo; it is unique across every
transaction ever created.

A transaction leaves PENDING exactly once. Services perform that
transition with a conditional UPDATE (... WHERE status = 'PENDING')
so concurrent webhook deliveries cannot both settle it.
"""

from datetime import datetime

from sqlalchemy import (
    String, DateTime, Integer, BigInteger, ForeignKey, JSON, Text,
    Enum as SAEnum, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_reconciliation.models.base import Base
from payment_reconciliation.models.enums import (
    TransactionKind,
    TransactionStatus,
    PaymentMethod,
)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
        Index("ix_transactions_kind_created", "kind", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    transfer_code: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )
    # Nullable: the row may not belong to anybody yet
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(
            TransactionKind,
            name="transaction_kind_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=TransactionKind.TOPUP,
    )
    # Request currency units (VND)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Internal credits applied to the balance on completion
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(
            TransactionStatus,
            name="transaction_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            name="payment_method_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )
    description: Mapped[str] = mapped_column(
        String(255), nullable=False, default=""
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    # Set when the user says "I have transferred"; drives the timeout sweep
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )

    # Settlement evidence
    webhook_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    webhook_event_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True
    )
    bank_transaction_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )

    # Operator audit
    processed_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    failed_reason: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    user: Mapped["User | None"] = relationship(foreign_keys=[user_id])

    @property
    def is_terminal(self) -> bool:
        return self.status != TransactionStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.transfer_code} {self.kind.value} "
            f"{self.amount} -> {self.credits} credits ({self.status.value})>"
        )
