import enum
import uuid
from decimal import Decimal
from sqlalchemy.sql import func
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Boolean, DECIMAL, Text, Integer, JSON
from sqlalchemy.orm import relationship
from app.db.database import Base


class SplitType(str, enum.Enum):
    equal = "equal"
    percentage = "percentage"
    custom = "custom"
    weighted = "weighted"
    itemized = "itemized"


class SettlementStatus(str, enum.Enum):
    pending = "pending"
    partial = "partial"
    completed = "completed"
    cancelled = "cancelled"


class TransactionStatus(str, enum.Enum):
    pending = "pending"
    partial = "partial"
    completed = "completed"


class PaymentMethod(str, enum.Enum):
    cash = "cash"
    card = "card"
    bank_transfer = "bank_transfer"
    venmo = "venmo"
    paypal = "paypal"
    zelle = "zelle"
    other = "other"


class Currency(str, enum.Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    INR = "INR"
    JPY = "JPY"
    AUD = "AUD"
    CAD = "CAD"


class RecurringFrequency(str, enum.Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    total_amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default=Currency.USD.value)
    split_type = Column(Enum(SplitType), nullable=False)
    creator_id = Column(String, nullable=False, index=True)  # Reference to user service
    participants = Column(JSON, nullable=False)  # Computed shares: [{user_id, name, amount, percentage, weight}]
    status = Column(Enum(SettlementStatus), nullable=False, default=SettlementStatus.pending, index=True)
    settled_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    remaining_amount = Column(DECIMAL(12, 2), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_frequency = Column(Enum(RecurringFrequency), nullable=True)
    next_due_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    transactions = relationship(
        "SettlementTransaction",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementTransaction.position"
    )


class SettlementTransaction(Base):
    """One participant's owed/paid record within a settlement"""
    __tablename__ = "settlement_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    settlement_id = Column(String, ForeignKey("settlements.id", ondelete="CASCADE"), nullable=False, index=True)
    payer_id = Column(String, nullable=False, index=True)  # Participant who owes
    payee_id = Column(String, nullable=False, index=True)  # Settlement creator
    position = Column(Integer, nullable=False, default=0)  # Index in the participant list
    amount_owed = Column(DECIMAL(12, 2), nullable=False)
    amount_paid = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    status = Column(Enum(TransactionStatus), nullable=False, default=TransactionStatus.pending, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)  # Bumped on every payment (compare-and-set)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    settlement = relationship("Settlement", back_populates="transactions")
    payments = relationship(
        "PaymentRecord",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="PaymentRecord.created_at"
    )

    @property
    def amount_remaining(self) -> Decimal:
        return Decimal(self.amount_owed) - Decimal(self.amount_paid or 0)


class PaymentRecord(Base):
    __tablename__ = "payment_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), unique=True, nullable=False)
    transaction_id = Column(String, ForeignKey("settlement_transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(DECIMAL(12, 2), nullable=False)
    method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.other)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    transaction = relationship("SettlementTransaction", back_populates="payments")
