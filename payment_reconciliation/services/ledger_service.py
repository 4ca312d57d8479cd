"""
Ledger service — transactions and balances.

This service enforces the money rules:
1. A transaction leaves PENDING exactly once, through a
   conditional UPDATE that only matches rows still PENDING
2. Credits reach a balance only on the PENDING -> COMPLETED
   transition, in the same unit of work
3. Balances move by atomic deltas in SQL, never by reading
   the balance into Python and writing it back

No other service writes transaction status or balances directly.
The caller controls the commit.
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update, delete, func
from sqlalchemy.orm import Session

from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.models.user import User
from payment_reconciliation.models.enums import (
    TransactionKind,
    TransactionStatus,
    PaymentMethod,
)
from payment_reconciliation.services.exceptions import NotFoundError


TIMEOUT_REASON = "No webhook received within {minutes} minutes after confirmation"


class LedgerService:
    """
    All transaction state changes and balance movements pass
    through this service.

    The service takes a database session as a constructor
    argument. The caller decides when to commit or rollback.
    """

    def __init__(self, db: Session):
        self.db = db

    # --- Balances ---

    def credit(self, user_id: int, delta: int) -> None:
        """Atomically add `delta` credits to a user's balance."""
        if delta < 0:
            raise ValueError("credit delta must not be negative")
        result = self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"User {user_id} not found")

    def debit(self, user_id: int, delta: int) -> None:
        """
        Atomically take `delta` credits from a user's balance.

        The balance check is part of the UPDATE predicate, so two
        concurrent debits can never overdraw the account.
        """
        if delta < 0:
            raise ValueError("debit delta must not be negative")
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.balance >= delta)
            .values(balance=User.balance - delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        balance = self.get_balance(user_id)
        raise ValueError(
            f"Insufficient balance: available={balance}, requested={delta}"
        )

    def get_balance(self, user_id: int) -> int:
        """Read the balance straight from the database."""
        balance = self.db.execute(
            select(User.balance).where(User.id == user_id)
        ).scalar_one_or_none()
        if balance is None:
            raise NotFoundError(f"User {user_id} not found")
        return balance

    # --- Transaction state changes ---

    def settle(
        self,
        transaction: Transaction,
        *,
        description: str | None = None,
        webhook_event_id: int | None = None,
        webhook_data: dict | None = None,
        bank_transaction_id: str | None = None,
        processed_by: int | None = None,
        admin_note: str | None = None,
    ) -> bool:
        """
        Complete a pending transaction and credit its owner.

        Returns False when the row was no longer PENDING, meaning
        somebody else settled, failed, swept or deleted it first.
        In that case nothing is written and no balance moves.
        """
        values = {
            "status": TransactionStatus.COMPLETED,
            "processed_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        if description is not None:
            values["description"] = description
        if webhook_event_id is not None:
            values["webhook_event_id"] = webhook_event_id
        if webhook_data is not None:
            values["webhook_data"] = webhook_data
        if bank_transaction_id is not None:
            values["bank_transaction_id"] = bank_transaction_id
        if processed_by is not None:
            values["processed_by"] = processed_by
        if admin_note is not None:
            values["admin_note"] = admin_note

        if not self._transition_from_pending(transaction.id, values):
            return False

        if transaction.user_id is not None:
            self.credit(transaction.user_id, transaction.credits)
        self.db.refresh(transaction)
        return True

    def fail(
        self,
        transaction: Transaction,
        reason: str,
        *,
        webhook_event_id: int | None = None,
        webhook_data: dict | None = None,
        processed_by: int | None = None,
    ) -> bool:
        """Move a pending transaction to FAILED. No balance change."""
        values = {
            "status": TransactionStatus.FAILED,
            "failed_reason": reason,
            "updated_at": datetime.utcnow(),
        }
        if webhook_event_id is not None:
            values["webhook_event_id"] = webhook_event_id
        if webhook_data is not None:
            values["webhook_data"] = webhook_data
        if processed_by is not None:
            values["processed_by"] = processed_by
            values["processed_at"] = datetime.utcnow()

        if not self._transition_from_pending(transaction.id, values):
            return False
        self.db.refresh(transaction)
        return True

    def sweep_timeouts(self, cutoff: datetime, grace_minutes: int) -> int:
        """
        Time out pending transactions confirmed before `cutoff`.

        Only PENDING rows match, so running it again right away
        changes nothing.
        """
        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.status == TransactionStatus.PENDING,
                Transaction.confirmed_at.is_not(None),
                Transaction.confirmed_at < cutoff,
            )
            .values(
                status=TransactionStatus.TIMEOUT,
                failed_reason=TIMEOUT_REASON.format(minutes=grace_minutes),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def confirm(self, transaction: Transaction) -> bool:
        """Stamp confirmed_at once on a pending transaction."""
        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING,
                Transaction.confirmed_at.is_(None),
            )
            .values(confirmed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(transaction)
        return result.rowcount == 1

    def delete_pending(self, transaction_id: int, user_id: int) -> bool:
        """Hard-delete an untouched pending request owned by `user_id`."""
        result = self.db.execute(
            delete(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _transition_from_pending(self, transaction_id: int, values: dict) -> bool:
        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # --- Creation ---

    def create_pending(
        self,
        *,
        user_id: int,
        transfer_code: str,
        amount: int,
        credits: int,
        description: str,
        expires_at: datetime,
    ) -> Transaction:
        txn = Transaction(
            user_id=user_id,
            transfer_code=transfer_code,
            kind=TransactionKind.TOPUP,
            amount=amount,
            credits=credits,
            status=TransactionStatus.PENDING,
            payment_method=PaymentMethod.BANK_TRANSFER,
            description=description,
            expires_at=expires_at,
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def record_completed(
        self,
        *,
        user_id: int,
        kind: TransactionKind,
        amount: int,
        credits: int,
        payment_method: PaymentMethod,
        code_prefix: str,
        description: str,
        processed_by: int | None = None,
        admin_note: str | None = None,
        webhook_event_id: int | None = None,
        webhook_data: dict | None = None,
        bank_transaction_id: str | None = None,
    ) -> Transaction:
        """
        Insert an already-completed transaction and credit it.

        Used by operator actions that have no pending request to
        settle. The insert and the credit share the caller's unit
        of work.
        """
        now = datetime.utcnow()
        txn = Transaction(
            user_id=user_id,
            transfer_code=self.system_code(code_prefix),
            kind=kind,
            amount=amount,
            credits=credits,
            status=TransactionStatus.COMPLETED,
            payment_method=payment_method,
            description=description,
            processed_by=processed_by,
            admin_note=admin_note,
            processed_at=now,
            webhook_event_id=webhook_event_id,
            webhook_data=webhook_data,
            bank_transaction_id=bank_transaction_id,
        )
        self.db.add(txn)
        self.db.flush()
        self.credit(user_id, credits)
        return txn

    @staticmethod
    def system_code(prefix: str) -> str:
        """Codes for rows nobody types into a bank memo."""
        stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
        return f"{prefix}{stamp}{uuid.uuid4().hex[:8].upper()}"

    # --- Queries ---

    def get_transaction(self, transaction_id: int) -> Transaction:
        txn = self.db.get(Transaction, transaction_id)
        if not txn:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return txn

    def get_user_transaction(self, transaction_id: int, user_id: int) -> Transaction:
        txn = self.db.execute(
            select(Transaction).where(
                Transaction.id == transaction_id,
                Transaction.user_id == user_id,
            )
        ).scalar_one_or_none()
        if not txn:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return txn

    def find_pending_by_code(self, transfer_code: str) -> Transaction | None:
        return self.db.execute(
            select(Transaction).where(
                Transaction.transfer_code == transfer_code,
                Transaction.status == TransactionStatus.PENDING,
            )
        ).scalar_one_or_none()

    def code_exists(self, transfer_code: str) -> bool:
        return self.db.execute(
            select(Transaction.id).where(
                Transaction.transfer_code == transfer_code
            )
        ).first() is not None

    def count_pending(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.PENDING,
            )
        ).scalar_one()

    def list_pending(self, user_id: int) -> list[Transaction]:
        txns = self.db.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.PENDING,
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).scalars().all()
        return list(txns)

    def list_transactions(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        user_id: int | None = None,
        status: TransactionStatus | None = None,
        kind: TransactionKind | None = None,
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> tuple[list[Transaction], int]:
        """Filtered page of transactions, newest first, plus the total count."""
        conditions = self._filters(user_id, status, kind, search, date_from, date_to)
        total = self.db.execute(
            select(func.count(Transaction.id)).where(*conditions)
        ).scalar_one()
        txns = self.db.execute(
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return list(txns), total

    def status_breakdown(self, **filters) -> list[dict]:
        """Count, credits and amount per status for the same filters."""
        conditions = self._filters(**filters)
        rows = self.db.execute(
            select(
                Transaction.status,
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.credits), 0),
                func.coalesce(func.sum(Transaction.amount), 0),
            )
            .where(*conditions)
            .group_by(Transaction.status)
        ).all()
        return [
            {
                "status": status,
                "count": count,
                "total_credits": credits,
                "total_amount": amount,
            }
            for status, count, credits, amount in rows
        ]

    def count_by_kind(self) -> dict[str, int]:
        rows = self.db.execute(
            select(Transaction.kind, func.count(Transaction.id))
            .group_by(Transaction.kind)
        ).all()
        return {kind.value: count for kind, count in rows}

    def count_since(self, since: datetime | None = None, status: TransactionStatus | None = None) -> int:
        query = select(func.count(Transaction.id))
        if since is not None:
            query = query.where(Transaction.created_at >= since)
        if status is not None:
            query = query.where(Transaction.status == status)
        return self.db.execute(query).scalar_one()

    @staticmethod
    def _filters(
        user_id: int | None = None,
        status: TransactionStatus | None = None,
        kind: TransactionKind | None = None,
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list:
        conditions = []
        if user_id is not None:
            conditions.append(Transaction.user_id == user_id)
        if status is not None:
            conditions.append(Transaction.status == status)
        if kind is not None:
            conditions.append(Transaction.kind == kind)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                Transaction.transfer_code.ilike(pattern)
                | Transaction.description.ilike(pattern)
            )
        if date_from is not None:
            conditions.append(Transaction.created_at >= date_from)
        if date_to is not None:
            conditions.append(Transaction.created_at <= date_to)
        return conditions
