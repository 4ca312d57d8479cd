"""
Pydantic schemas for provider webhooks and the intake log.

CassoTransactionData is the narrow projection of the provider
body that matching is allowed to see. It is lenient:
a field that cannot be read becomes None instead of failing the
whole delivery.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field, field_validator

from payment_reconciliation.models.enums import WebhookSource, WebhookStatus


class CassoTransactionData(BaseModel):
    """The `data` object of a Casso V2 webhook."""
    reference: str | None = None
    description: str | None = None
    amount: int | None = None
    transaction_date_time: datetime | None = Field(
        default=None, alias="transactionDateTime"
    )
    counter_account_name: str | None = Field(
        default=None, alias="counterAccountName"
    )

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("reference", "description", "counter_account_name", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        if v is None or isinstance(v, (dict, list)):
            return None
        return str(v)

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> int | None:
        if v is None or isinstance(v, bool):
            return None
        try:
            value = Decimal(str(v))
        except InvalidOperation:
            return None
        if value != value.to_integral_value():
            return None
        return int(value)

    @field_validator("transaction_date_time", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> datetime | None:
        if isinstance(v, datetime):
            return v
        if not isinstance(v, str):
            return None
        try:
            return datetime.fromisoformat(v.strip())
        except ValueError:
            return None


class WebhookAck(BaseModel):
    """What the provider sees. Always sent with HTTP 200."""
    success: bool
    message: str


class WebhookEventResponse(BaseModel):
    id: int
    source: WebhookSource
    status: WebhookStatus
    parsed_code: str | None
    parsed_amount: int | None
    parsed_description: str | None
    external_transaction_id: str | None
    transacted_at: datetime | None
    counter_account_name: str | None
    matched_transaction_id: int | None
    matched_user_id: int | None
    error_message: str | None
    processing_notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WebhookEventDetailResponse(WebhookEventResponse):
    """Single log entry with the raw evidence attached."""
    payload: dict
    ip_address: str | None
    headers: dict | None


class WebhookEventPage(BaseModel):
    items: list[WebhookEventResponse]
    total: int
    page: int
    limit: int
    pages: int
