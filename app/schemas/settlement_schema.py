from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Union, Literal, Annotated
from datetime import datetime
from decimal import Decimal
from app.models.settlements import (
    SplitType, SettlementStatus, TransactionStatus, PaymentMethod, Currency, RecurringFrequency
)


class ParticipantIn(BaseModel):
    user_id: str
    name: Optional[str] = None


class PercentageParticipant(ParticipantIn):
    percentage: Decimal


class CustomParticipant(ParticipantIn):
    amount: Decimal


class WeightedParticipant(ParticipantIn):
    weight: Optional[Decimal] = None  # Defaults to 1


class IncomeParticipant(ParticipantIn):
    income: Optional[Decimal] = None


class SplitItem(BaseModel):
    user_id: str
    amount: Decimal
    description: Optional[str] = None


class SharedItem(BaseModel):
    amount: Decimal
    description: Optional[str] = None


class EqualSplitRule(BaseModel):
    split_type: Literal["equal"]
    total_amount: Decimal
    participants: List[ParticipantIn]


class PercentageSplitRule(BaseModel):
    split_type: Literal["percentage"]
    total_amount: Decimal
    participants: List[PercentageParticipant]


class CustomSplitRule(BaseModel):
    split_type: Literal["custom"]
    total_amount: Decimal
    participants: List[CustomParticipant]


class WeightedSplitRule(BaseModel):
    split_type: Literal["weighted"]
    total_amount: Decimal
    participants: List[WeightedParticipant]


class ItemizedSplitRule(BaseModel):
    split_type: Literal["itemized"]
    participants: List[ParticipantIn]
    items: List[SplitItem] = []
    shared_items: List[SharedItem] = []


SplitRule = Annotated[
    Union[EqualSplitRule, PercentageSplitRule, CustomSplitRule, WeightedSplitRule, ItemizedSplitRule],
    Field(discriminator="split_type")
]


class SplitAdjustments(BaseModel):
    tax: Decimal = Decimal("0")  # Percent of base amount
    tip: Decimal = Decimal("0")  # Percent of base amount
    discount: Decimal = Decimal("0")
    service_fee: Decimal = Decimal("0")


class SplitShare(BaseModel):
    """A participant's computed share of a split"""
    user_id: str
    name: Optional[str] = None
    amount: Decimal
    percentage: Decimal
    weight: Optional[Decimal] = None


class SplitResult(BaseModel):
    split_type: SplitType
    total_amount: Decimal
    participants: List[SplitShare]
    adjustments: Optional[Dict[str, Decimal]] = None


class SettlementCreate(BaseModel):
    title: str
    description: Optional[str] = None
    currency: Currency = Currency.USD
    due_date: Optional[datetime] = None
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    split: SplitRule


class PaymentCreate(BaseModel):
    amount: Decimal
    method: PaymentMethod = PaymentMethod.other
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_id: str
    amount: Decimal
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    settlement_id: str
    payer_id: str
    payee_id: str
    amount_owed: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal
    status: TransactionStatus
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    total_amount: Decimal
    currency: str
    split_type: SplitType
    creator_id: str
    participants: List[SplitShare]
    status: SettlementStatus
    settled_amount: Decimal
    remaining_amount: Decimal
    due_date: Optional[datetime] = None
    is_recurring: bool
    recurring_frequency: Optional[RecurringFrequency] = None
    next_due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class TransactionBreakdown(BaseModel):
    total: int
    pending: int
    partial: int
    completed: int


class SettlementDetail(SettlementOut):
    transactions: List[TransactionOut] = []
    breakdown: TransactionBreakdown
    has_overdue: bool = False


class SettlementCreated(BaseModel):
    settlement: SettlementOut
    transactions: List[TransactionOut]


class SettlementSummary(BaseModel):
    user_id: str
    total_owed_by_user: Decimal
    total_owed_to_user: Decimal
    net_position: Decimal
    position: Literal["creditor", "debtor", "settled"]
    settlement_counts: Dict[str, int]
    transactions_as_payer: int
    transactions_as_payee: int


class OptimizedSettlement(BaseModel):
    """A single transfer in a netted settlement plan (a debt edge)"""
    from_user_id: str
    to_user_id: str
    amount: Decimal


class OptimalSettlementOut(BaseModel):
    user_id: str
    raw_count: int
    optimized_count: int
    savings: int
    total_amount: Decimal
    transactions: List[OptimizedSettlement]


class SplitPreviewRequest(BaseModel):
    split: SplitRule
    adjustments: Optional[SplitAdjustments] = None
