"""
Ledger store - persistence of settlements, transactions and payment records.

All SQLAlchemy access for the settlement core goes through this module.
Database failures are rolled back and surfaced as StoreError; optimistic
updates that lose a race raise ConcurrencyConflictError.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.settlements import (
    Settlement, SettlementTransaction, PaymentRecord, SettlementStatus, TransactionStatus
)
from app.services.exceptions import ConcurrencyConflictError, InvalidTransitionError, StoreError

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(db: Session, operation: str):
    """Roll back and wrap SQLAlchemy failures raised inside the block"""
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Ledger store failure during {operation}: {e}")
        raise StoreError(f"Ledger store failure during {operation}", operation=operation) from e


def commit(db: Session, operation: str) -> None:
    with store_errors(db, operation):
        db.commit()


def add_settlement(db: Session, settlement: Settlement, transactions: List[SettlementTransaction]) -> Settlement:
    """Persist a settlement and all of its transactions in one commit"""
    with store_errors(db, "create_settlement"):
        settlement.transactions = transactions
        db.add(settlement)
        db.commit()
        db.refresh(settlement)
    return settlement


def get_settlement(db: Session, settlement_id: str, lock: bool = False) -> Optional[Settlement]:
    """Get a settlement by ID, optionally locking the row for the current transaction"""
    with store_errors(db, "get_settlement"):
        query = db.query(Settlement).filter(Settlement.id == settlement_id)
        if lock:
            query = query.with_for_update()
        return query.populate_existing().first()


def get_transaction(db: Session, transaction_id: str) -> Optional[SettlementTransaction]:
    """Get a transaction by ID, always reading the current row"""
    with store_errors(db, "get_transaction"):
        return db.query(SettlementTransaction)\
            .filter(SettlementTransaction.id == transaction_id)\
            .populate_existing()\
            .first()


def get_settlement_transactions(db: Session, settlement_id: str) -> List[SettlementTransaction]:
    """Fresh snapshot of every transaction of a settlement"""
    with store_errors(db, "get_settlement_transactions"):
        return db.query(SettlementTransaction)\
            .filter(SettlementTransaction.settlement_id == settlement_id)\
            .order_by(SettlementTransaction.position)\
            .populate_existing()\
            .all()


def get_transaction_payments(db: Session, transaction_id: str) -> List[PaymentRecord]:
    with store_errors(db, "get_transaction_payments"):
        return db.query(PaymentRecord)\
            .filter(PaymentRecord.transaction_id == transaction_id)\
            .order_by(PaymentRecord.created_at)\
            .all()


def apply_payment(
    db: Session,
    transaction: SettlementTransaction,
    payment: PaymentRecord,
    amount_paid: Decimal,
    status: TransactionStatus,
    paid_at: Optional[datetime] = None
) -> None:
    """
    Compare-and-set the transaction's paid amount and stage the payment record.

    The update only applies if the row still carries the version the caller
    read. Nothing is committed here, the caller commits once the settlement
    status has been recomputed.
    """
    expected_version = transaction.version

    with store_errors(db, "record_payment"):
        result = db.execute(
            update(SettlementTransaction)
            .where(
                and_(
                    SettlementTransaction.id == transaction.id,
                    SettlementTransaction.version == expected_version
                )
            )
            .values(
                amount_paid=amount_paid,
                status=status,
                version=expected_version + 1,
                paid_at=paid_at
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            db.rollback()
            logger.warning(f"Concurrent payment detected on transaction {transaction.id}")
            raise ConcurrencyConflictError(
                "Transaction was modified concurrently, retry with fresh data",
                transaction_id=transaction.id,
                expected_version=expected_version
            )

        payment.transaction_id = transaction.id
        db.add(payment)


def cancel_settlement(db: Session, settlement: Settlement) -> None:
    """Conditionally move a settlement to cancelled; only one caller can win"""
    cancellable = [SettlementStatus.pending, SettlementStatus.partial]

    with store_errors(db, "cancel_settlement"):
        result = db.execute(
            update(Settlement)
            .where(and_(Settlement.id == settlement.id, Settlement.status.in_(cancellable)))
            .values(status=SettlementStatus.cancelled)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            db.rollback()
            current = get_settlement(db, settlement.id)
            current_status = current.status.value if current else settlement.status.value
            raise InvalidTransitionError(
                current_status,
                SettlementStatus.cancelled.value,
                settlement_id=settlement.id
            )

        db.commit()
        db.refresh(settlement)


def _user_settlements_query(db: Session, user_id: str):
    participant_of = select(SettlementTransaction.settlement_id)\
        .where(SettlementTransaction.payer_id == user_id)

    return db.query(Settlement).filter(
        or_(Settlement.creator_id == user_id, Settlement.id.in_(participant_of))
    )


def get_user_settlements(
    db: Session,
    user_id: str,
    statuses: Optional[Iterable[SettlementStatus]] = None,
    limit: Optional[int] = None,
    offset: int = 0
) -> List[Settlement]:
    """All settlements the user created or participates in, newest first"""
    with store_errors(db, "get_user_settlements"):
        query = _user_settlements_query(db, user_id)
        if statuses is not None:
            query = query.filter(Settlement.status.in_(list(statuses)))

        query = query.order_by(Settlement.created_at.desc(), Settlement.id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()


def get_transactions_for_settlements(
    db: Session,
    settlement_ids: List[str],
    statuses: Optional[Iterable[TransactionStatus]] = None
) -> List[SettlementTransaction]:
    if not settlement_ids:
        return []

    with store_errors(db, "get_transactions_for_settlements"):
        query = db.query(SettlementTransaction)\
            .filter(SettlementTransaction.settlement_id.in_(settlement_ids))
        if statuses is not None:
            query = query.filter(SettlementTransaction.status.in_(list(statuses)))
        return query.order_by(SettlementTransaction.settlement_id, SettlementTransaction.position).all()


def get_user_transactions(db: Session, user_id: str) -> List[SettlementTransaction]:
    """Transactions where the user is the payer or the payee"""
    with store_errors(db, "get_user_transactions"):
        return db.query(SettlementTransaction)\
            .join(Settlement, SettlementTransaction.settlement_id == Settlement.id)\
            .filter(
                or_(
                    SettlementTransaction.payer_id == user_id,
                    SettlementTransaction.payee_id == user_id
                )
            )\
            .order_by(SettlementTransaction.settlement_id, SettlementTransaction.position)\
            .all()
