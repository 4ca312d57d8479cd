"""
Pydantic schemas for operator recovery endpoints.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from payment_reconciliation.models.enums import TransactionStatus
from payment_reconciliation.schemas.payment import TransactionResponse
from payment_reconciliation.schemas.webhook import WebhookEventDetailResponse


class AssignUserRequest(BaseModel):
    user_id: int
    note: str | None = Field(default=None, max_length=500)
    # Overrides the price-list lookup when the operator knows better
    credits: int | None = Field(default=None, gt=0)


class IgnoreRequest(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class ManualTopupRequest(BaseModel):
    credits: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=500)


class VerifyRequest(BaseModel):
    action: Literal["approve", "reject"]
    reason: str | None = Field(default=None, max_length=500)


class AdminTransactionResponse(TransactionResponse):
    user_id: int | None
    webhook_event_id: int | None
    bank_transaction_id: str | None
    webhook_data: dict | None
    processed_by: int | None
    admin_note: str | None
    updated_at: datetime


class StatusBreakdown(BaseModel):
    status: TransactionStatus
    count: int
    total_credits: int
    total_amount: int


class AdminTransactionPage(BaseModel):
    items: list[AdminTransactionResponse]
    stats: list[StatusBreakdown]
    total: int
    page: int
    limit: int
    pages: int


class ReconciliationResponse(BaseModel):
    """Outcome of running the matcher (again) over a logged webhook."""
    success: bool
    outcome: str
    message: str
    event: WebhookEventDetailResponse
    transaction: AdminTransactionResponse | None = None


class CreditResponse(BaseModel):
    """Result of an operator action that credited an account."""
    message: str
    transaction: AdminTransactionResponse
    new_balance: int


class AssignUserResponse(CreditResponse):
    event: WebhookEventDetailResponse


class SweepResponse(BaseModel):
    modified_count: int
    message: str


class AdminStats(BaseModel):
    total_users: int
    total_transactions: int
    pending_transactions: int
    today_transactions: int
    today_webhooks: int
    transactions_by_kind: dict[str, int]
