"""
Split Calculator Module

Pure functions that divide a settlement total among its participants.

Supported split types:
- equal: everyone pays the same share, the first participant absorbs the remainder
- percentage: each participant pays a percentage of the total
- custom: each participant pays an explicit amount
- weighted: shares proportional to weights (missing weight counts as 1)
- itemized: per-person items plus shared items divided equally

For equal, percentage, custom and weighted splits the shares always add up to
the total exactly at cent precision: any rounding residual is assigned to
participants[0]. Itemized splits derive their total from the items and are
not residual-corrected.

Example Usage:
    from app.utils.split_calculator import calculate_split

    result = calculate_split(Decimal("100.00"), "equal", participants)
    [share.amount for share in result.participants]
    # [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
"""

import calendar
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_DOWN, InvalidOperation
from typing import List, Optional, Sequence, Union

from app.models.settlements import SplitType, RecurringFrequency
from app.schemas.settlement_schema import (
    SplitShare, SplitResult, SplitAdjustments, WeightedParticipant
)
from app.services.exceptions import ValidationError
from app.utils.min_cash_flow import CENT, TOLERANCE, round_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def to_decimal(value, field: str = "amount") -> Decimal:
    """Convert a number or numeric string to Decimal without float drift"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number", **{field: value})


def _require_participants(participants: Sequence) -> None:
    if not participants:
        raise ValidationError("At least one participant is required", participant_count=0)


def _require_positive_total(total_amount) -> Decimal:
    total = round_decimal(to_decimal(total_amount, "total_amount"))
    if total <= 0:
        raise ValidationError("Total amount must be greater than zero", total_amount=total_amount)
    return total


def _apply_residual(total: Decimal, shares: List[SplitShare]) -> None:
    """Force the rounding residual onto the first participant, never below zero"""
    difference = total - sum((share.amount for share in shares), Decimal("0"))
    if not difference:
        return

    corrected = shares[0].amount + difference
    if corrected < 0:
        raise ValidationError(
            "Rounding leaves the first participant with a negative share",
            user_id=shares[0].user_id,
            amount=corrected
        )
    shares[0].amount = corrected


def check_percentage_total(participants: Sequence) -> Decimal:
    """Raise ValidationError unless percentages sum to 100 (within 0.01)"""
    total_percentage = sum(
        (to_decimal(getattr(p, "percentage", None) or 0, "percentage") for p in participants),
        Decimal("0")
    )
    if abs(total_percentage - HUNDRED) > TOLERANCE:
        raise ValidationError(
            f"Percentages must sum to 100% (got {total_percentage}%)",
            total_percentage=total_percentage
        )
    return total_percentage


def check_custom_total(total_amount, participants: Sequence) -> Decimal:
    """Raise ValidationError unless custom amounts sum to the total (within 0.01)"""
    total = to_decimal(total_amount, "total_amount")
    total_custom = sum(
        (to_decimal(getattr(p, "amount", None) or 0) for p in participants),
        Decimal("0")
    )
    if abs(total_custom - total) > TOLERANCE:
        raise ValidationError(
            f"Custom amounts must sum to total (got {total_custom}, expected {total})",
            total_custom=total_custom,
            total_amount=total
        )
    return total_custom


def calculate_split(total_amount, split_type: Union[SplitType, str], participants: Sequence) -> SplitResult:
    """
    Calculate per-participant shares for the given split type.

    Args:
        total_amount: Amount to divide, must be greater than zero
        split_type: One of equal, percentage, custom, weighted
        participants: Objects with ``user_id``/``name`` and the field the
            split type needs (``percentage``, ``amount`` or ``weight``)

    Returns:
        SplitResult whose participant amounts sum exactly to the total

    Raises:
        ValidationError: Unknown split type, empty participants, bad split sums
    """
    try:
        split_type = SplitType(split_type)
    except ValueError:
        raise ValidationError(f"Unsupported split type: {split_type}", split_type=split_type)

    if split_type == SplitType.equal:
        return calculate_equal_split(total_amount, participants)
    if split_type == SplitType.percentage:
        return calculate_percentage_split(total_amount, participants)
    if split_type == SplitType.custom:
        return calculate_custom_split(total_amount, participants)
    if split_type == SplitType.weighted:
        return calculate_weighted_split(total_amount, participants)

    # Itemized totals come from the items, not from the caller
    raise ValidationError(
        "Itemized splits must be calculated with calculate_itemized_split",
        split_type=split_type.value
    )


def calculate_equal_split(total_amount, participants: Sequence) -> SplitResult:
    """Equal split - divide the amount equally, remainder goes to participants[0]"""
    _require_participants(participants)
    total = _require_positive_total(total_amount)

    participant_count = len(participants)
    base_amount = (total / participant_count).quantize(CENT, rounding=ROUND_DOWN)
    remainder = total - base_amount * participant_count
    percentage = round_decimal(HUNDRED / participant_count)

    shares = [
        SplitShare(
            user_id=participant.user_id,
            name=participant.name,
            amount=base_amount + remainder if index == 0 else base_amount,
            percentage=percentage
        )
        for index, participant in enumerate(participants)
    ]

    return SplitResult(split_type=SplitType.equal, total_amount=total, participants=shares)


def calculate_percentage_split(total_amount, participants: Sequence) -> SplitResult:
    """Percentage split - divide based on specified percentages"""
    _require_participants(participants)
    total = _require_positive_total(total_amount)
    check_percentage_total(participants)

    shares = []
    for participant in participants:
        percentage = to_decimal(participant.percentage or 0, "percentage")
        shares.append(SplitShare(
            user_id=participant.user_id,
            name=participant.name,
            amount=round_decimal(total * percentage / HUNDRED),
            percentage=percentage
        ))

    _apply_residual(total, shares)
    return SplitResult(split_type=SplitType.percentage, total_amount=total, participants=shares)


def calculate_custom_split(total_amount, participants: Sequence) -> SplitResult:
    """Custom split - use specified amounts; percentages are for display only"""
    _require_participants(participants)
    total = _require_positive_total(total_amount)
    check_custom_total(total, participants)

    shares = []
    for participant in participants:
        amount = round_decimal(to_decimal(participant.amount or 0))
        shares.append(SplitShare(
            user_id=participant.user_id,
            name=participant.name,
            amount=amount,
            percentage=round_decimal(amount / total * HUNDRED)
        ))

    _apply_residual(total, shares)
    return SplitResult(split_type=SplitType.custom, total_amount=total, participants=shares)


def calculate_weighted_split(total_amount, participants: Sequence) -> SplitResult:
    """Weighted split - divide based on weights (e.g. income, usage)"""
    _require_participants(participants)
    total = _require_positive_total(total_amount)

    weights = []
    for participant in participants:
        weight = getattr(participant, "weight", None)
        weight = Decimal("1") if weight is None else to_decimal(weight, "weight")
        if weight < 0:
            raise ValidationError(
                "Weights cannot be negative",
                user_id=participant.user_id,
                weight=weight
            )
        weights.append(weight)

    total_weight = sum(weights, Decimal("0"))
    if total_weight == 0:
        raise ValidationError("Total weight cannot be zero", total_weight=total_weight)

    shares = [
        SplitShare(
            user_id=participant.user_id,
            name=participant.name,
            amount=round_decimal(total * weight / total_weight),
            percentage=round_decimal(weight / total_weight * HUNDRED),
            weight=weight
        )
        for participant, weight in zip(participants, weights)
    ]

    _apply_residual(total, shares)
    return SplitResult(split_type=SplitType.weighted, total_amount=total, participants=shares)


def calculate_itemized_split(items: Sequence, shared_items: Optional[Sequence], participants: Sequence) -> SplitResult:
    """
    Itemized split (for restaurant bills, etc.).

    Each item is charged to its owner; shared items are divided equally among
    all participants. The total is the sum of all items. Shares are rounded
    to cents individually and are not residual-corrected, so their sum may
    differ from the total by a few cents.
    """
    _require_participants(participants)

    amounts = {participant.user_id: Decimal("0") for participant in participants}

    for item in items:
        if item.user_id not in amounts:
            raise ValidationError(
                "Item is assigned to a user who is not a participant",
                user_id=item.user_id,
                amount=item.amount
            )
        amounts[item.user_id] += to_decimal(item.amount)

    if shared_items:
        shared_total = sum((to_decimal(item.amount) for item in shared_items), Decimal("0"))
        shared_per_person = shared_total / len(participants)
        for user_id in amounts:
            amounts[user_id] += shared_per_person

    total = sum(amounts.values(), Decimal("0"))
    if total <= 0:
        raise ValidationError("Itemized split must contain at least one item", total_amount=total)

    shares = [
        SplitShare(
            user_id=participant.user_id,
            name=participant.name,
            amount=round_decimal(amounts[participant.user_id]),
            percentage=round_decimal(amounts[participant.user_id] / total * HUNDRED)
        )
        for participant in participants
    ]

    return SplitResult(split_type=SplitType.itemized, total_amount=round_decimal(total), participants=shares)


def calculate_split_with_adjustments(
    base_amount,
    adjustments: SplitAdjustments,
    split_type: Union[SplitType, str],
    participants: Sequence
) -> SplitResult:
    """Apply tax and tip (percent of base), discount and service fee, then split"""
    base = to_decimal(base_amount, "base_amount")

    total = base
    total += base * adjustments.tax / HUNDRED
    total += base * adjustments.tip / HUNDRED
    total -= adjustments.discount
    total += adjustments.service_fee
    total = round_decimal(total)

    if total <= 0:
        raise ValidationError(
            "Adjusted total must be greater than zero",
            base_amount=base,
            total_amount=total
        )

    result = calculate_split(total, split_type, participants)
    result.adjustments = {
        "base_amount": base,
        "tax": adjustments.tax,
        "tip": adjustments.tip,
        "discount": adjustments.discount,
        "service_fee": adjustments.service_fee,
        "total_amount": total,
    }
    return result


def suggest_income_based_split(total_amount, participants: Sequence) -> SplitResult:
    """Weighted split by income; falls back to an equal split without income data"""
    _require_participants(participants)

    incomes = [to_decimal(getattr(p, "income", None) or 0, "income") for p in participants]
    if sum(incomes, Decimal("0")) == 0:
        logger.debug("No income data, falling back to equal split")
        return calculate_equal_split(total_amount, participants)

    weighted = [
        WeightedParticipant(user_id=participant.user_id, name=participant.name, weight=income)
        for participant, income in zip(participants, incomes)
    ]
    return calculate_weighted_split(total_amount, weighted)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_next_due_date(
    frequency: Union[RecurringFrequency, str],
    start: Optional[datetime] = None
) -> datetime:
    """Next due date for a recurring settlement"""
    try:
        frequency = RecurringFrequency(frequency)
    except ValueError:
        raise ValidationError(f"Invalid recurring frequency: {frequency}", recurring_frequency=frequency)

    start = start or datetime.now(timezone.utc)

    if frequency == RecurringFrequency.weekly:
        return start + timedelta(days=7)
    if frequency == RecurringFrequency.biweekly:
        return start + timedelta(days=14)
    if frequency == RecurringFrequency.monthly:
        return _add_months(start, 1)
    if frequency == RecurringFrequency.quarterly:
        return _add_months(start, 3)
    return _add_months(start, 12)
