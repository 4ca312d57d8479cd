"""
Payment API endpoints.

The webhook endpoint is public and always answers 200; every
other endpoint acts on behalf of the authenticated user.
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from payment_reconciliation.models.base import get_db
from payment_reconciliation.models.user import User
from payment_reconciliation.models.enums import TransactionStatus
from payment_reconciliation.security import get_current_user
from payment_reconciliation.services.exceptions import (
    CodeGenerationExhausted,
    NotFoundError,
)
from payment_reconciliation.services.pricing import CREDIT_PACKAGES, get_bank_info
from payment_reconciliation.services.reconciliation_service import ReconciliationService
from payment_reconciliation.services.topup_service import TopupService
from payment_reconciliation.schemas.payment import (
    BankInfo,
    CreditPackage,
    MessageResponse,
    TopupCreate,
    TopupResponse,
    TransactionPage,
    TransactionResponse,
)
from payment_reconciliation.schemas.webhook import WebhookAck

router = APIRouter(prefix="/payment", tags=["Payment"])

TOKEN_HEADERS = ("secure-token", "x-secure-token")


def _read_payload(body: bytes) -> dict:
    """Decode a webhook body without ever rejecting it."""
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        return {"raw": body.decode("utf-8", errors="replace")}
    if not isinstance(payload, dict):
        return {"raw": payload}
    return payload


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Receive a Casso bank notification.

    No user auth: the provider authenticates with a shared token
    in the `secure-token` header (or `secure_token` query param).
    The response is always 200 so the provider does not retry.
    """
    payload = _read_payload(await request.body())
    token = next(
        (request.headers[h] for h in TOKEN_HEADERS if h in request.headers),
        request.query_params.get("secure_token"),
    )
    service = ReconciliationService(db)
    return await run_in_threadpool(
        service.receive,
        payload,
        token=token,
        headers=dict(request.headers),
        ip_address=request.client.host if request.client else None,
    )


@router.get("/pricing", response_model=list[CreditPackage])
def get_pricing():
    """Available credit packages."""
    return list(CREDIT_PACKAGES)


@router.get("/bank-info", response_model=BankInfo)
def bank_info():
    return get_bank_info()


@router.post("/create", response_model=TopupResponse, status_code=201)
def create_topup(
    request: TopupCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Open a pending top-up and return the transfer instructions.

    The transfer code must appear in the bank memo for the
    payment to be matched automatically.
    """
    service = TopupService(db)
    try:
        txn = service.create_topup(user, request.package_id)
        db.commit()
        return service.payment_instructions(txn)
    except CodeGenerationExhausted as e:
        db.rollback()
        raise HTTPException(status_code=503, detail=f"{e}. Please retry.")
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/confirm/{transaction_id}", response_model=TransactionResponse)
def confirm_topup(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Tell the system the transfer was sent; starts the timeout window."""
    service = TopupService(db)
    try:
        txn = service.confirm(user, transaction_id)
        db.commit()
        return txn
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/cancel/{transaction_id}", response_model=MessageResponse)
def cancel_topup(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a pending top-up. It does not appear in history afterwards."""
    service = TopupService(db)
    try:
        service.cancel(user, transaction_id)
        db.commit()
    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    return MessageResponse(message="Transaction cancelled")


@router.get("/history", response_model=TransactionPage)
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: TransactionStatus | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = TopupService(db)
    txns, total, pending_count = service.history(
        user, page=page, limit=limit, status=status,
    )
    return TransactionPage(
        items=[TransactionResponse.model_validate(t) for t in txns],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
        pending_count=pending_count,
    )


@router.get("/pending", response_model=list[TransactionResponse])
def pending_topups(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return TopupService(db).pending(user)


@router.get("/status/{transaction_id}", response_model=TransactionResponse)
def topup_status(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Poll a transaction owned by the caller."""
    service = TopupService(db)
    try:
        return service.get_status(user, transaction_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
