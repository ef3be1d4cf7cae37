"""
Settlement engine - creation, payments, cancellation and settlement queries.

The engine holds no per-request state. Every operation takes the SQLAlchemy
session of the current request; one engine instance is shared per process
(see get_settlement_engine).
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.settlements import (
    Settlement, SettlementTransaction, PaymentRecord, SettlementStatus, TransactionStatus, SplitType
)
from app.schemas.settlement_schema import (
    SettlementCreate, SettlementOut, SettlementDetail, TransactionOut, TransactionBreakdown,
    SettlementSummary, OptimizedSettlement, OptimalSettlementOut, SplitResult
)
from app.services import ledger_store
from app.services import settlement_guard
from app.services.exceptions import NotFoundError, InvalidTransitionError, ValidationError, AuthorizationError
from app.utils.min_cash_flow import optimize_debts
from app.utils.split_calculator import calculate_split, calculate_itemized_split, calculate_next_due_date
from app.utils.time_utils import utcnow, as_utc

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = [SettlementStatus.pending, SettlementStatus.partial]
OUTSTANDING_TRANSACTION_STATUSES = [TransactionStatus.pending, TransactionStatus.partial]


class SettlementEngine:
    """Orchestrates the settlement lifecycle on top of the ledger store"""

    def __init__(self, notifier=None):
        self.notifier = notifier

    def calculate(self, split) -> SplitResult:
        """Compute the shares for any split rule variant"""
        if split.split_type == SplitType.itemized.value:
            return calculate_itemized_split(split.items, split.shared_items, split.participants)
        return calculate_split(split.total_amount, split.split_type, split.participants)

    def create_settlement(self, db: Session, data: SettlementCreate, creator_id: str) -> Settlement:
        """
        Validate, split and persist a settlement with one transaction per participant.

        The creator is the payee of every transaction. Participants whose share
        is 0.00 get no transaction. Settlement and transactions are written in
        a single commit.
        """
        settlement_guard.validate_settlement_creation(data)

        split = self.calculate(data.split)
        settlement_guard.validate_total_amount(split.total_amount)

        transactions = [
            SettlementTransaction(
                payer_id=share.user_id,
                payee_id=creator_id,
                position=index,
                amount_owed=share.amount,
                amount_paid=Decimal("0.00"),
                status=TransactionStatus.pending,
                due_date=data.due_date,
                version=0
            )
            for index, share in enumerate(split.participants)
            if share.amount > 0
        ]

        next_due_date = None
        if data.is_recurring:
            next_due_date = calculate_next_due_date(data.recurring_frequency, data.due_date or utcnow())

        settlement = Settlement(
            title=data.title,
            description=data.description,
            total_amount=split.total_amount,
            currency=data.currency.value,
            split_type=split.split_type,
            creator_id=creator_id,
            participants=[share.model_dump(mode="json") for share in split.participants],
            status=SettlementStatus.pending,
            settled_amount=Decimal("0.00"),
            remaining_amount=sum((share.amount for share in split.participants), Decimal("0.00")),
            due_date=data.due_date,
            is_recurring=data.is_recurring,
            recurring_frequency=data.recurring_frequency if data.is_recurring else None,
            next_due_date=next_due_date
        )

        ledger_store.add_settlement(db, settlement, transactions)
        logger.info(
            f"Created settlement {settlement.id} ({split.split_type.value}, "
            f"{len(transactions)} transactions, total {split.total_amount} {settlement.currency})"
        )
        return settlement

    def record_payment(
        self,
        db: Session,
        transaction_id: str,
        amount,
        method=None,
        reference: Optional[str] = None,
        notes: Optional[str] = None
    ) -> SettlementTransaction:
        """
        Record a payment against a transaction and recompute statuses.

        The paid amount is written with a compare-and-set on the transaction
        version; a lost race raises ConcurrencyConflictError and nothing is
        written. The settlement row is locked while sibling transactions are
        re-read so the status is computed from one consistent snapshot.
        """
        transaction = ledger_store.get_transaction(db, transaction_id)
        if not transaction:
            raise NotFoundError("Transaction not found", transaction_id=transaction_id)

        method = settlement_guard.validate_payment_details(method, reference, notes)
        amount = settlement_guard.validate_payment_amount(amount, transaction)

        new_paid = transaction.amount_paid + amount
        if new_paid == transaction.amount_owed:
            new_status = TransactionStatus.completed
        else:
            new_status = TransactionStatus.partial

        settlement = ledger_store.get_settlement(db, transaction.settlement_id, lock=True)
        if settlement_guard.is_terminal(settlement.status):
            current_status = settlement.status.value
            settlement_id = settlement.id
            # Release the settlement row lock
            db.rollback()
            logger.warning(f"Rejected payment on {current_status} settlement {settlement_id}")
            raise InvalidTransitionError(
                current_status,
                new_status.value,
                f"Settlement is {current_status}; no further payments can be recorded",
                settlement_id=settlement_id,
                transaction_id=transaction_id
            )

        payment = PaymentRecord(amount=amount, method=method, reference=reference, notes=notes)
        ledger_store.apply_payment(
            db,
            transaction,
            payment,
            new_paid,
            new_status,
            paid_at=utcnow() if new_status == TransactionStatus.completed else None
        )

        previous_status = settlement.status
        self._refresh_settlement_status(db, settlement)
        ledger_store.commit(db, "record_payment")

        logger.info(f"Recorded payment of {amount} on transaction {transaction_id} ({new_status.value})")

        self._notify("payment_recorded", transaction, payment)
        if settlement.status == SettlementStatus.completed and previous_status != SettlementStatus.completed:
            logger.info(f"Settlement {settlement.id} completed")
            self._notify("settlement_completed", settlement)

        return transaction

    def _refresh_settlement_status(self, db: Session, settlement: Settlement) -> None:
        """Recompute status and derived totals from a fresh read of all transactions"""
        transactions = ledger_store.get_settlement_transactions(db, settlement.id)

        total_owed = sum((tx.amount_owed for tx in transactions), Decimal("0.00"))
        total_paid = sum((tx.amount_paid for tx in transactions), Decimal("0.00"))

        if all(tx.status == TransactionStatus.completed for tx in transactions):
            new_status = SettlementStatus.completed
        elif any(tx.amount_paid > 0 for tx in transactions):
            new_status = SettlementStatus.partial
        else:
            new_status = settlement.status

        if new_status != settlement.status:
            settlement_guard.validate_status_transition(settlement.status, new_status)
            settlement.status = new_status
            if new_status == SettlementStatus.completed:
                settlement.completed_at = utcnow()

        settlement.settled_amount = total_paid
        settlement.remaining_amount = total_owed - total_paid

    def cancel_settlement(self, db: Session, settlement_id: str, requester_id: str) -> Settlement:
        """Creator-only cancel from pending or partial; transactions are left as they are"""
        settlement = ledger_store.get_settlement(db, settlement_id)
        if not settlement:
            raise NotFoundError("Settlement not found", settlement_id=settlement_id)

        try:
            settlement_guard.can_cancel_settlement(settlement, requester_id)
        except (AuthorizationError, InvalidTransitionError) as e:
            logger.warning(f"Rejected cancel of settlement {settlement_id} by {requester_id}: {e}")
            raise

        ledger_store.cancel_settlement(db, settlement)
        logger.info(f"Settlement {settlement_id} cancelled by {requester_id}")

        self._notify("settlement_cancelled", settlement)
        return settlement

    def get_settlement(self, db: Session, settlement_id: str) -> SettlementDetail:
        """Settlement with its transactions, a per-status breakdown and an overdue flag"""
        settlement = ledger_store.get_settlement(db, settlement_id)
        if not settlement:
            raise NotFoundError("Settlement not found", settlement_id=settlement_id)

        transactions = ledger_store.get_settlement_transactions(db, settlement_id)
        now = utcnow()

        breakdown = TransactionBreakdown(
            total=len(transactions),
            pending=sum(1 for tx in transactions if tx.status == TransactionStatus.pending),
            partial=sum(1 for tx in transactions if tx.status == TransactionStatus.partial),
            completed=sum(1 for tx in transactions if tx.status == TransactionStatus.completed)
        )
        has_overdue = settlement.status not in (SettlementStatus.completed, SettlementStatus.cancelled) and any(
            tx.status != TransactionStatus.completed and tx.due_date is not None and as_utc(tx.due_date) < now
            for tx in transactions
        )

        return SettlementDetail(
            **SettlementOut.model_validate(settlement).model_dump(),
            transactions=[TransactionOut.model_validate(tx) for tx in transactions],
            breakdown=breakdown,
            has_overdue=has_overdue
        )

    def get_user_settlements(
        self,
        db: Session,
        user_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Settlement]:
        """Settlements the user created or participates in, newest first"""
        statuses = None
        if status is not None:
            try:
                statuses = [SettlementStatus(status)]
            except ValueError:
                raise ValidationError(f"Invalid settlement status: {status}", status=status)

        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative", limit=limit, offset=offset)

        return ledger_store.get_user_settlements(db, user_id, statuses, limit=limit, offset=offset)

    def get_transaction_payments(self, db: Session, transaction_id: str) -> List[PaymentRecord]:
        transaction = ledger_store.get_transaction(db, transaction_id)
        if not transaction:
            raise NotFoundError("Transaction not found", transaction_id=transaction_id)
        return ledger_store.get_transaction_payments(db, transaction_id)

    def get_settlement_summary(self, db: Session, user_id: str) -> SettlementSummary:
        """
        Amounts owed to and by the user plus per-status counts.

        Only outstanding balances of non-cancelled settlements count towards
        the totals. A creator's own share (payer == payee) is not a debt.
        """
        total_owed_by_user = Decimal("0.00")
        total_owed_to_user = Decimal("0.00")
        as_payer = 0
        as_payee = 0

        for tx in ledger_store.get_user_transactions(db, user_id):
            if tx.payer_id == tx.payee_id:
                continue

            if tx.payer_id == user_id:
                as_payer += 1
            else:
                as_payee += 1

            if tx.status == TransactionStatus.completed or tx.settlement.status == SettlementStatus.cancelled:
                continue

            if tx.payer_id == user_id:
                total_owed_by_user += tx.amount_remaining
            else:
                total_owed_to_user += tx.amount_remaining

        settlement_counts: Dict[str, int] = {status.value: 0 for status in SettlementStatus}
        for settlement in ledger_store.get_user_settlements(db, user_id):
            settlement_counts[settlement.status.value] += 1

        net_position = total_owed_to_user - total_owed_by_user
        if net_position > 0:
            position = "creditor"
        elif net_position < 0:
            position = "debtor"
        else:
            position = "settled"

        return SettlementSummary(
            user_id=user_id,
            total_owed_by_user=total_owed_by_user,
            total_owed_to_user=total_owed_to_user,
            net_position=net_position,
            position=position,
            settlement_counts=settlement_counts,
            transactions_as_payer=as_payer,
            transactions_as_payee=as_payee
        )

    def calculate_optimal_settlement(self, db: Session, user_id: str) -> OptimalSettlementOut:
        """
        Net the outstanding debts of the user's open settlements.

        Builds a payer -> payee -> amount graph from every outstanding
        transaction of the user's pending/partial settlements and reduces it
        with the min-cash-flow optimizer.
        """
        settlements = ledger_store.get_user_settlements(db, user_id, NON_TERMINAL_STATUSES)
        transactions = ledger_store.get_transactions_for_settlements(
            db,
            [settlement.id for settlement in settlements],
            OUTSTANDING_TRANSACTION_STATUSES
        )

        debts: Dict[str, Dict[str, Decimal]] = {}
        raw_count = 0
        total_amount = Decimal("0.00")

        for tx in transactions:
            remaining = tx.amount_remaining
            if tx.payer_id == tx.payee_id or remaining <= 0:
                continue

            payees = debts.setdefault(tx.payer_id, {})
            payees[tx.payee_id] = payees.get(tx.payee_id, Decimal("0.00")) + remaining
            raw_count += 1
            total_amount += remaining

        optimized = [
            OptimizedSettlement(from_user_id=edge["from"], to_user_id=edge["to"], amount=edge["amount"])
            for edge in optimize_debts(debts)
        ]

        logger.info(f"Optimized {raw_count} outstanding transactions into {len(optimized)} for user {user_id}")

        return OptimalSettlementOut(
            user_id=user_id,
            raw_count=raw_count,
            optimized_count=len(optimized),
            savings=raw_count - len(optimized),
            total_amount=total_amount,
            transactions=optimized
        )

    def _notify(self, event: str, *args) -> None:
        """Fire a notification; failures are logged and never fail the operation"""
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, f"notify_{event}")(*args)
        except Exception as e:
            logger.warning(f"Settlement notification {event} failed: {e}")


# Global engine instance
_settlement_engine: Optional[SettlementEngine] = None


def get_settlement_engine() -> SettlementEngine:
    """Get or create the shared settlement engine"""
    global _settlement_engine
    if _settlement_engine is None:
        notifier = None
        if settings.NOTIFICATIONS_ENABLED:
            from app.rabbitmq.producer import get_settlement_notifier
            notifier = get_settlement_notifier()
        _settlement_engine = SettlementEngine(notifier=notifier)
    return _settlement_engine
