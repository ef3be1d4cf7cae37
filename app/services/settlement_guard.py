"""
Settlement Guard - validation and authorization predicates.

The functions here never touch the database or mutate their arguments. They
are shared by the HTTP layer (early rejection before any persistence attempt)
and by the settlement engine itself.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Union

from app.models.settlements import (
    SplitType, SettlementStatus, PaymentMethod, Currency, RecurringFrequency
)
from app.schemas.settlement_schema import SettlementCreate, ItemizedSplitRule
from app.services.exceptions import ValidationError, AuthorizationError, InvalidTransitionError
from app.utils.split_calculator import to_decimal, check_percentage_total, check_custom_total, calculate_split
from app.utils.time_utils import utcnow, as_utc

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_TOTAL_AMOUNT = Decimal("1000000")
MAX_PARTICIPANTS = 50
MAX_REFERENCE_LENGTH = 100
MAX_NOTES_LENGTH = 500

VALID_TRANSITIONS = {
    SettlementStatus.pending: {SettlementStatus.partial, SettlementStatus.completed, SettlementStatus.cancelled},
    SettlementStatus.partial: {SettlementStatus.completed, SettlementStatus.cancelled},
    SettlementStatus.completed: set(),
    SettlementStatus.cancelled: set(),
}

TERMINAL_STATUSES = {SettlementStatus.completed, SettlementStatus.cancelled}

RESIDUAL_SPLIT_TYPES = {SplitType.percentage, SplitType.custom, SplitType.weighted}


def validate_title(title: Optional[str]) -> None:
    if not title or not title.strip():
        raise ValidationError("Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title must not exceed {MAX_TITLE_LENGTH} characters",
            title_length=len(title)
        )


def validate_total_amount(total_amount) -> Decimal:
    total = to_decimal(total_amount, "total_amount")
    if total <= 0:
        raise ValidationError("Total amount must be greater than 0", total_amount=total)
    if total > MAX_TOTAL_AMOUNT:
        raise ValidationError(
            f"Settlement amount cannot exceed {MAX_TOTAL_AMOUNT}",
            total_amount=total
        )
    return total


def validate_split_type(split_type: Union[SplitType, str]) -> SplitType:
    try:
        return SplitType(split_type)
    except ValueError:
        raise ValidationError(f"Invalid split type: {split_type}", split_type=split_type)


def validate_currency(currency: Union[Currency, str]) -> Currency:
    try:
        return Currency(currency)
    except ValueError:
        raise ValidationError(f"Invalid currency: {currency}", currency=currency)


def validate_participants(participants: Sequence) -> None:
    """Participants must be non-empty, at most 50, each with a unique user_id"""
    if not participants:
        raise ValidationError("At least one participant is required", participant_count=0)

    if len(participants) > MAX_PARTICIPANTS:
        raise ValidationError(
            f"Cannot have more than {MAX_PARTICIPANTS} participants",
            participant_count=len(participants)
        )

    user_ids = set()
    for participant in participants:
        if not participant.user_id:
            raise ValidationError("Each participant must have a userId")
        if participant.user_id in user_ids:
            raise ValidationError("Duplicate participants are not allowed", user_id=participant.user_id)
        user_ids.add(participant.user_id)


def validate_due_date(due_date: Optional[datetime], now: Optional[datetime] = None) -> None:
    if due_date is None:
        return
    now = now or utcnow()
    if as_utc(due_date) < now:
        raise ValidationError("Due date cannot be in the past", due_date=due_date.isoformat())


def validate_recurring_settings(is_recurring: bool, frequency: Optional[Union[RecurringFrequency, str]]) -> None:
    if not is_recurring:
        return
    if frequency is None:
        raise ValidationError("Recurring settlements require a recurring frequency")
    try:
        RecurringFrequency(frequency)
    except ValueError:
        raise ValidationError(f"Invalid recurring frequency: {frequency}", recurring_frequency=frequency)


def validate_split_rule(split_type: Union[SplitType, str], participants: Sequence, total_amount=None, rule=None) -> None:
    """Split-sum pre-checks mirroring the calculator, for early rejection"""
    split_type = validate_split_type(split_type)
    validate_participants(participants)

    if split_type == SplitType.percentage:
        for participant in participants:
            if to_decimal(participant.percentage, "percentage") < 0:
                raise ValidationError(
                    "Percentages cannot be negative",
                    user_id=participant.user_id,
                    percentage=participant.percentage
                )
        check_percentage_total(participants)
    elif split_type == SplitType.custom:
        for participant in participants:
            if to_decimal(participant.amount) < 0:
                raise ValidationError(
                    "Custom amounts cannot be negative",
                    user_id=participant.user_id,
                    amount=participant.amount
                )
        check_custom_total(total_amount, participants)
    elif split_type == SplitType.weighted:
        weights = [p.weight for p in participants]
        if any(weight is not None and to_decimal(weight, "weight") < 0 for weight in weights):
            raise ValidationError("Weights cannot be negative")
        if all(weight is not None and to_decimal(weight, "weight") == 0 for weight in weights):
            raise ValidationError("Total weight cannot be zero", total_weight=0)
    elif split_type == SplitType.itemized and rule is not None:
        validate_itemized_items(rule)

    if split_type in RESIDUAL_SPLIT_TYPES and total_amount is not None:
        # Rounding residual must not push any share below zero
        calculate_split(total_amount, split_type, participants)


def validate_itemized_items(rule: ItemizedSplitRule) -> None:
    if not rule.items and not rule.shared_items:
        raise ValidationError("Itemized split must contain at least one item")

    participant_ids = {participant.user_id for participant in rule.participants}
    for item in rule.items:
        if to_decimal(item.amount) <= 0:
            raise ValidationError("Each item amount must be greater than 0", user_id=item.user_id, amount=item.amount)
        if item.description and len(item.description) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Item description must not exceed {MAX_TITLE_LENGTH} characters")
        if item.user_id not in participant_ids:
            raise ValidationError("Item is assigned to a user who is not a participant", user_id=item.user_id)

    for item in rule.shared_items:
        if to_decimal(item.amount) <= 0:
            raise ValidationError("Shared item amount must be greater than 0", amount=item.amount)


def validate_settlement_creation(data: SettlementCreate, now: Optional[datetime] = None) -> None:
    """Run every creation check that does not need the database"""
    validate_title(data.title)
    validate_currency(data.currency)
    validate_due_date(data.due_date, now)
    validate_recurring_settings(data.is_recurring, data.recurring_frequency)

    rule = data.split
    validate_split_type(rule.split_type)
    if rule.split_type != SplitType.itemized.value:
        validate_total_amount(rule.total_amount)

    validate_split_rule(rule.split_type, rule.participants, getattr(rule, "total_amount", None), rule)


def validate_payment_amount(amount, transaction) -> Decimal:
    """Payment must be positive and must not exceed the transaction's remaining amount"""
    amount = to_decimal(amount)
    amount_remaining = transaction.amount_remaining

    if amount <= 0:
        raise ValidationError(
            "Payment amount must be greater than 0",
            transaction_id=transaction.id,
            amount=amount
        )
    if amount > amount_remaining:
        raise ValidationError(
            f"Payment amount ({amount}) exceeds remaining amount ({amount_remaining})",
            transaction_id=transaction.id,
            amount=amount,
            amount_remaining=amount_remaining
        )
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError("Payment amount cannot have more than 2 decimal places", amount=amount)
    return amount


def validate_payment_details(
    method: Union[PaymentMethod, str, None],
    reference: Optional[str] = None,
    notes: Optional[str] = None
) -> PaymentMethod:
    try:
        method = PaymentMethod(method or PaymentMethod.other)
    except ValueError:
        raise ValidationError(f"Invalid payment method: {method}", method=method)

    if reference is not None and len(reference) > MAX_REFERENCE_LENGTH:
        raise ValidationError(
            f"Payment reference must not exceed {MAX_REFERENCE_LENGTH} characters",
            reference_length=len(reference)
        )
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(
            f"Notes must not exceed {MAX_NOTES_LENGTH} characters",
            notes_length=len(notes)
        )
    return method


def validate_status_transition(
    current_status: Union[SettlementStatus, str],
    new_status: Union[SettlementStatus, str]
) -> None:
    current_status = SettlementStatus(current_status)
    new_status = SettlementStatus(new_status)

    if new_status not in VALID_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status.value, new_status.value)


def is_terminal(status: Union[SettlementStatus, str]) -> bool:
    return SettlementStatus(status) in TERMINAL_STATUSES


def can_cancel_settlement(settlement, user_id: str) -> None:
    """Only the creator can cancel, and only from pending or partial"""
    if settlement.creator_id != user_id:
        raise AuthorizationError(
            "Only the creator can cancel a settlement",
            settlement_id=settlement.id,
            user_id=user_id
        )

    try:
        validate_status_transition(settlement.status, SettlementStatus.cancelled)
    except InvalidTransitionError as e:
        raise InvalidTransitionError(
            e.current_status,
            e.requested_status,
            settlement_id=settlement.id
        ) from e
