"""
Pydantic schemas for user-facing top-up operations.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from payment_reconciliation.models.enums import (
    TransactionKind,
    TransactionStatus,
    PaymentMethod,
)


class CreditPackage(BaseModel):
    id: str
    credits: int
    price: int
    label: str
    bonus: str | None = None
    popular: bool = False

    model_config = {"frozen": True}


class BankInfo(BaseModel):
    bank_id: str
    bank_name: str
    account_number: str
    account_holder: str


class TopupCreate(BaseModel):
    package_id: str = Field(min_length=1, max_length=20)


class TransactionResponse(BaseModel):
    """A transaction as its owner sees it. Webhook payload is never included."""
    id: int
    transfer_code: str
    kind: TransactionKind
    amount: int
    credits: int
    status: TransactionStatus
    payment_method: PaymentMethod
    description: str
    expires_at: datetime | None
    confirmed_at: datetime | None
    processed_at: datetime | None
    failed_reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TopupResponse(BaseModel):
    """Everything the client needs to render the transfer instructions."""
    transaction: TransactionResponse
    transfer_code: str
    amount: int
    credits: int
    expires_at: datetime
    bank_info: BankInfo
    qr_code_url: str


class TransactionPage(BaseModel):
    items: list[TransactionResponse]
    total: int
    page: int
    limit: int
    pages: int
    pending_count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str
