"""
Admin API endpoints.

Operator views over the webhook log and the ledger, plus the
recovery actions. Every route requires an admin token.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from payment_reconciliation.models.base import get_db
from payment_reconciliation.models.user import User
from payment_reconciliation.models.enums import (
    TransactionKind,
    TransactionStatus,
    WebhookSource,
    WebhookStatus,
)
from payment_reconciliation.security import require_admin
from payment_reconciliation.services.admin_service import AdminService
from payment_reconciliation.services.exceptions import NotFoundError
from payment_reconciliation.services.ledger_service import LedgerService
from payment_reconciliation.services.webhook_log_service import WebhookLogService
from payment_reconciliation.schemas.admin import (
    AdminStats,
    AdminTransactionPage,
    AdminTransactionResponse,
    AssignUserRequest,
    AssignUserResponse,
    CreditResponse,
    IgnoreRequest,
    ManualTopupRequest,
    ReconciliationResponse,
    StatusBreakdown,
    SweepResponse,
    VerifyRequest,
)
from payment_reconciliation.schemas.webhook import (
    WebhookEventDetailResponse,
    WebhookEventPage,
    WebhookEventResponse,
)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


# --- Webhook log ---

@router.get("/webhook-logs", response_model=WebhookEventPage)
def list_webhook_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    source: WebhookSource | None = None,
    status: WebhookStatus | None = None,
    db: Session = Depends(get_db),
):
    events, total = WebhookLogService(db).list_events(
        page=page, limit=limit, source=source, status=status,
    )
    return WebhookEventPage(
        items=[WebhookEventResponse.model_validate(e) for e in events],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@router.get("/webhook-logs/{event_id}", response_model=WebhookEventDetailResponse)
def get_webhook_log(event_id: int, db: Session = Depends(get_db)):
    try:
        return WebhookLogService(db).get_event(event_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "/webhook-logs/{event_id}/reprocess",
    response_model=ReconciliationResponse,
)
def reprocess_webhook(
    event_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Run matching again over a stored webhook.

    200 with success=false when it still does not settle; the
    event carries the reason.
    """
    service = AdminService(db)
    try:
        result = service.reprocess(event_id, admin)
        db.commit()
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return ReconciliationResponse(
        success=result.success,
        outcome=result.outcome.name,
        message=result.message,
        event=WebhookEventDetailResponse.model_validate(result.event),
        transaction=(
            AdminTransactionResponse.model_validate(result.transaction)
            if result.transaction is not None else None
        ),
    )


@router.post(
    "/webhook-logs/{event_id}/assign-user",
    response_model=AssignUserResponse,
)
def assign_webhook_user(
    event_id: int,
    request: AssignUserRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Credit a user for an unmatched webhook."""
    service = AdminService(db)
    try:
        event, txn, balance = service.assign_user(
            event_id, request.user_id, admin,
            note=request.note, credits=request.credits,
        )
        db.commit()
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return AssignUserResponse(
        message=f"Credited {txn.credits} credits to user {txn.user_id}",
        event=WebhookEventDetailResponse.model_validate(event),
        transaction=AdminTransactionResponse.model_validate(txn),
        new_balance=balance,
    )


@router.post(
    "/webhook-logs/{event_id}/ignore",
    response_model=WebhookEventDetailResponse,
)
def ignore_webhook(
    event_id: int,
    request: IgnoreRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    try:
        event = service.ignore(event_id, admin, note=request.note)
        db.commit()
        return event
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


# --- Transactions ---

@router.get("/transactions", response_model=AdminTransactionPage)
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    kind: TransactionKind | None = None,
    status: TransactionStatus | None = None,
    user_id: int | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    db: Session = Depends(get_db),
):
    filters = {
        "user_id": user_id,
        "status": status,
        "kind": kind,
        "search": search,
        "date_from": date_from,
        "date_to": date_to,
    }
    ledger = LedgerService(db)
    txns, total = ledger.list_transactions(page=page, limit=limit, **filters)
    return AdminTransactionPage(
        items=[AdminTransactionResponse.model_validate(t) for t in txns],
        stats=[StatusBreakdown(**row) for row in ledger.status_breakdown(**filters)],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@router.post("/transactions/check-timeout", response_model=SweepResponse)
def check_timeouts(db: Session = Depends(get_db)):
    """Time out pending top-ups confirmed too long ago."""
    count = AdminService(db).sweep_timeouts()
    db.commit()
    return SweepResponse(
        modified_count=count,
        message=f"Updated {count} transactions to timeout",
    )


@router.post(
    "/transactions/{transaction_id}/verify",
    response_model=AdminTransactionResponse,
)
def verify_transaction(
    transaction_id: int,
    request: VerifyRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Approve or reject a pending transaction by hand."""
    service = AdminService(db)
    try:
        txn = service.verify(transaction_id, request.action, admin, request.reason)
        db.commit()
        return txn
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


# --- Users ---

@router.get(
    "/users/{user_id}/transactions",
    response_model=AdminTransactionPage,
)
def user_transactions(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    kind: TransactionKind | None = None,
    status: TransactionStatus | None = None,
    db: Session = Depends(get_db),
):
    filters = {"user_id": user_id, "status": status, "kind": kind}
    ledger = LedgerService(db)
    txns, total = ledger.list_transactions(page=page, limit=limit, **filters)
    return AdminTransactionPage(
        items=[AdminTransactionResponse.model_validate(t) for t in txns],
        stats=[StatusBreakdown(**row) for row in ledger.status_breakdown(**filters)],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@router.post("/users/{user_id}/topup", response_model=CreditResponse)
def manual_topup(
    user_id: int,
    request: ManualTopupRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Credit a user directly, without any payment."""
    service = AdminService(db)
    try:
        txn, balance = service.manual_topup(
            user_id, request.credits, admin, note=request.note,
        )
        db.commit()
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    return CreditResponse(
        message=f"Credited {request.credits} credits to user {user_id}",
        transaction=AdminTransactionResponse.model_validate(txn),
        new_balance=balance,
    )


@router.get("/stats", response_model=AdminStats)
def admin_stats(db: Session = Depends(get_db)):
    return AdminService(db).stats()
