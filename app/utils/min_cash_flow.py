"""
Min-Cash-Flow (debt netting) Module

This module reduces a graph of pairwise debts to a small set of transfers with
the same net effect on every participant.

The algorithm works by:
1. Calculating a net balance for each user (owed to them - what they owe)
2. Separating users into creditors (positive balance) and debtors (negative balance)
3. Using a greedy matching strategy to match max creditor with max debtor
4. Emitting one transfer per match until either side is exhausted

The greedy matching is a heuristic. It guarantees at most
``creditors + debtors - 1`` transfers, but it does not always find the
smallest possible set (that problem is NP-hard in general). optimize_debts
nets each group of users connected by debts on its own, so it never returns
more transfers than there are debts.

Time Complexity: O(e) to build balances + O(n log n) for sorting + O(n) for matching
Space Complexity: O(n) for storing balances and settlement results

Example Usage:
    from app.utils.min_cash_flow import optimize_debts

    debts = {
        "A": {"B": Decimal("30")},
        "B": {"C": Decimal("30")},
    }

    optimize_debts(debts)
    # Result: [{"from": "A", "to": "C", "amount": Decimal("30.00")}]
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, Tuple

# Configure logger
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TOLERANCE = Decimal("0.01")

DebtGraph = Mapping[str, Mapping[str, Decimal]]


def round_decimal(value: Decimal, precision: Decimal = CENT) -> Decimal:
    """
    Round a Decimal value to the specified precision, half away from zero.

    This utility ensures consistent rounding of monetary values throughout
    the split and netting code.

    Args:
        value: The Decimal value to round
        precision: The precision to round to (default: 0.01 for cents)

    Returns:
        Rounded Decimal value

    Example:
        >>> round_decimal(Decimal("43.335"))
        Decimal('43.34')
    """
    return Decimal(value).quantize(precision, rounding=ROUND_HALF_UP)


def calculate_net_balances(debts: DebtGraph) -> Dict[str, Decimal]:
    """
    Calculate the net balance of every participant in a debt graph.

    Net balance = total owed to the user - total the user owes
    - Positive balance: User is owed money (creditor)
    - Negative balance: User owes money (debtor)

    Args:
        debts: Mapping of payer -> payee -> amount the payer owes the payee.
            Several debts between the same pair must be summed by the caller.

    Returns:
        Dictionary mapping user_id -> net_balance, in first-appearance order

    Example:
        >>> calculate_net_balances({"A": {"B": Decimal("30")}, "B": {"C": Decimal("30")}})
        {'A': Decimal('-30'), 'B': Decimal('0'), 'C': Decimal('30')}
    """
    balances: Dict[str, Decimal] = {}

    for payer, payees in debts.items():
        balances.setdefault(payer, Decimal("0"))

        for payee, amount in payees.items():
            balances.setdefault(payee, Decimal("0"))
            if payer == payee:
                continue

            amount = Decimal(str(amount))
            balances[payer] -= amount
            balances[payee] += amount

    return balances


def min_cash_flow(
    balances: Mapping[str, Decimal],
    tolerance: Decimal = TOLERANCE
) -> List[Dict]:
    """
    Minimize the number of transfers needed to settle a set of net balances.

    Uses a greedy algorithm that:
    1. Separates users into creditors (balance > tolerance) and debtors
       (balance < -tolerance); near-zero balances are dropped
    2. Sorts both lists by absolute amount (largest first, ties keep input order)
    3. Iteratively matches max creditor with max debtor
    4. Transfers the minimum of their amounts
    5. Advances whichever side is settled, until either list is exhausted

    Edge Cases Handled:
    - Empty input or a single user: returns []
    - All balances zero (within tolerance): returns []
    - Only creditors or only debtors left: returns []

    Args:
        balances: Dictionary mapping user_id -> net_balance
        tolerance: Balances within this distance of zero count as settled

    Returns:
        List of transfers, each with format:
        [{"from": str, "to": str, "amount": Decimal}, ...]

    Example:
        >>> balances = {"A": Decimal("80"), "B": Decimal("-10"), "C": Decimal("-70")}
        >>> min_cash_flow(balances)
        [{"from": "C", "to": "A", "amount": Decimal("70.00")},
         {"from": "B", "to": "A", "amount": Decimal("10.00")}]
    """
    if len(balances) < 2:
        return []

    # Separate into creditors and debtors
    creditors: List[Tuple[str, Decimal]] = [
        (user_id, Decimal(balance))
        for user_id, balance in balances.items()
        if balance > tolerance
    ]
    debtors: List[Tuple[str, Decimal]] = [
        (user_id, -Decimal(balance))  # Store as positive for easier matching
        for user_id, balance in balances.items()
        if balance < -tolerance
    ]

    if not creditors or not debtors:
        return []

    # Sort by amount (largest first) for greedy matching
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    settlements = []

    i, j = 0, 0
    while i < len(creditors) and j < len(debtors):
        creditor_id, credit_amount = creditors[i]
        debtor_id, debt_amount = debtors[j]

        settlement_amount = min(credit_amount, debt_amount)

        # Only emit a transfer if the amount is significant
        if settlement_amount > tolerance:
            settlements.append({
                "from": debtor_id,
                "to": creditor_id,
                "amount": round_decimal(settlement_amount)
            })

        credit_amount -= settlement_amount
        debt_amount -= settlement_amount

        creditors[i] = (creditor_id, credit_amount)
        debtors[j] = (debtor_id, debt_amount)

        # Advance pointer if balance is settled (within tolerance)
        if credit_amount <= tolerance:
            i += 1
        if debt_amount <= tolerance:
            j += 1

    logger.debug(
        f"Netted {len(creditors)} creditors and {len(debtors)} debtors "
        f"into {len(settlements)} transfers"
    )
    return settlements


def split_components(debts: DebtGraph) -> List[Dict[str, Dict[str, Decimal]]]:
    """
    Partition a debt graph into groups of users connected by debts.

    Groups come out in first-appearance order; a payer's debts always land in
    the payer's group.
    """
    neighbours: Dict[str, set] = {}
    for payer, payees in debts.items():
        neighbours.setdefault(payer, set())
        for payee in payees:
            neighbours.setdefault(payee, set())
            if payer != payee:
                neighbours[payer].add(payee)
                neighbours[payee].add(payer)

    component_of: Dict[str, int] = {}
    count = 0
    for user in neighbours:
        if user in component_of:
            continue
        component_of[user] = count
        stack = [user]
        while stack:
            current = stack.pop()
            for other in neighbours[current]:
                if other not in component_of:
                    component_of[other] = count
                    stack.append(other)
        count += 1

    components: List[Dict[str, Dict[str, Decimal]]] = [{} for _ in range(count)]
    for payer, payees in debts.items():
        components[component_of[payer]][payer] = dict(payees)
    return components


def optimize_debts(debts: DebtGraph, tolerance: Decimal = TOLERANCE) -> List[Dict]:
    """
    Reduce a debt graph to an equivalent, smaller set of transfers.

    Each connected group is netted separately, so transfers never cross
    between users who have no debts linking them.

    Args:
        debts: Mapping of payer -> payee -> amount owed
        tolerance: Balances within this distance of zero count as settled

    Returns:
        List of transfers [{"from": str, "to": str, "amount": Decimal}, ...]

    Example:
        >>> optimize_debts({"A": {"B": Decimal("30")}, "B": {"C": Decimal("30")}})
        [{"from": "A", "to": "C", "amount": Decimal("30.00")}]
    """
    if not debts:
        return []

    transfers = []
    for component in split_components(debts):
        transfers.extend(min_cash_flow(calculate_net_balances(component), tolerance))
    return transfers
