"""
Webhook intake log service.

Records every inbound provider call and answers operator
queries over the log. Rows are updated in place, never deleted.
"""

from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from payment_reconciliation.config import get_settings
from payment_reconciliation.models.webhook_event import WebhookEvent
from payment_reconciliation.models.enums import WebhookSource, WebhookStatus
from payment_reconciliation.schemas.webhook import CassoTransactionData
from payment_reconciliation.services.exceptions import NotFoundError
from payment_reconciliation.services.matcher import (
    ParsedWebhook,
    extract_transfer_code,
)


# Live delivery owns RECEIVED and PROCESSING; operators may only act
# on events that have settled into one of these.
REPROCESSABLE = (WebhookStatus.UNMATCHED, WebhookStatus.ERROR, WebhookStatus.IGNORED)
ASSIGNABLE = (WebhookStatus.UNMATCHED, WebhookStatus.ERROR, WebhookStatus.IGNORED)
IGNORABLE = (WebhookStatus.UNMATCHED, WebhookStatus.ERROR)
IN_FLIGHT = (WebhookStatus.RECEIVED, WebhookStatus.PROCESSING)

# Header values that must not end up in the forensic copy
REDACTED_HEADERS = {"authorization", "secure-token", "x-secure-token", "cookie"}


def redact_headers(headers: dict | None) -> dict | None:
    if headers is None:
        return None
    return {
        key: ("***" if key.lower() in REDACTED_HEADERS else value)
        for key, value in headers.items()
    }


class WebhookLogService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()

    def record(
        self,
        payload: dict,
        *,
        source: WebhookSource = WebhookSource.CASSO,
        headers: dict | None = None,
        ip_address: str | None = None,
    ) -> WebhookEvent:
        """
        Persist a new intake row in RECEIVED state.

        The parsed projection is filled in on a best-effort basis;
        a body we cannot read still gets a row.
        """
        event = WebhookEvent(
            source=source,
            payload=payload,
            status=WebhookStatus.RECEIVED,
            headers=redact_headers(headers),
            ip_address=ip_address,
        )
        self.apply_projection(event)
        self.db.add(event)
        self.db.flush()
        return event

    def apply_projection(self, event: WebhookEvent) -> None:
        """Copy the narrow, validated view of `payload.data` onto the row."""
        data = event.payload.get("data") if isinstance(event.payload, dict) else None
        if not isinstance(data, dict):
            return
        try:
            parsed = CassoTransactionData.model_validate(data)
        except ValidationError:
            return
        event.parsed_amount = parsed.amount
        event.parsed_description = parsed.description
        event.external_transaction_id = parsed.reference
        event.transacted_at = parsed.transaction_date_time
        event.counter_account_name = parsed.counter_account_name
        event.parsed_code = extract_transfer_code(
            parsed.description, self.settings.TRANSFER_CODE_PREFIX
        )

    def parsed(self, event: WebhookEvent) -> ParsedWebhook:
        """
        The matcher's view of a logged event.

        The code is extracted again from the stored description so
        a reprocess benefits from any fix to the extraction rule.
        """
        code = extract_transfer_code(
            event.parsed_description, self.settings.TRANSFER_CODE_PREFIX
        )
        event.parsed_code = code
        return ParsedWebhook(
            code=code,
            amount=event.parsed_amount,
            description=event.parsed_description,
            external_transaction_id=event.external_transaction_id,
            transacted_at=event.transacted_at,
        )

    def transition(
        self,
        event: WebhookEvent,
        status: WebhookStatus,
        *,
        allowed_from: tuple[WebhookStatus, ...],
        notes: str | None = None,
        error: str | None = None,
        transaction_id: int | None = None,
        user_id: int | None = None,
    ) -> bool:
        """
        Move an event to `status` only if it is currently in one of
        `allowed_from`.

        Every status write goes through here. The check is the
        UPDATE predicate itself, so two actors can never both move
        the same event out of the same state. Returns False (and
        writes nothing) when the row had already moved on.
        """
        values = {"status": status, "updated_at": datetime.utcnow()}
        if notes is not None:
            values["processing_notes"] = notes
        if error is not None:
            values["error_message"] = error
        if transaction_id is not None:
            values["matched_transaction_id"] = transaction_id
        if user_id is not None:
            values["matched_user_id"] = user_id

        self.db.flush()
        result = self.db.execute(
            update(WebhookEvent)
            .where(
                WebhookEvent.id == event.id,
                WebhookEvent.status.in_(allowed_from),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(event)
        return result.rowcount == 1

    def get_event(self, event_id: int) -> WebhookEvent:
        event = self.db.get(WebhookEvent, event_id)
        if not event:
            raise NotFoundError(f"Webhook log {event_id} not found")
        return event

    def list_events(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        source: WebhookSource | None = None,
        status: WebhookStatus | None = None,
    ) -> tuple[list[WebhookEvent], int]:
        conditions = []
        if source is not None:
            conditions.append(WebhookEvent.source == source)
        if status is not None:
            conditions.append(WebhookEvent.status == status)

        total = self.db.execute(
            select(func.count(WebhookEvent.id)).where(*conditions)
        ).scalar_one()
        events = self.db.execute(
            select(WebhookEvent)
            .where(*conditions)
            .order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return list(events), total

    def count_since(self, since: datetime) -> int:
        return self.db.execute(
            select(func.count(WebhookEvent.id)).where(
                WebhookEvent.created_at >= since
            )
        ).scalar_one()
