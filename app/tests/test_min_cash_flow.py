"""
Unit Tests for Min-Cash-Flow Algorithm

Tests cover:
- Net balance calculation from a debt graph
- Greedy transfer matching
- Edge cases (zero balances, single user, self debts, disconnected groups)
- Rounding tolerance
"""

import pytest
from decimal import Decimal
from app.utils.min_cash_flow import (
    calculate_net_balances,
    min_cash_flow,
    optimize_debts,
    split_components,
    round_decimal
)
from app.tests.conftest import verify_transfers_settle_debts


@pytest.mark.unit
class TestRoundDecimal:
    """Test the round_decimal utility function."""

    def test_round_to_cents(self):
        assert round_decimal(Decimal("43.333333")) == Decimal("43.33")
        assert round_decimal(Decimal("43.336666")) == Decimal("43.34")

    def test_half_rounds_away_from_zero(self):
        assert round_decimal(Decimal("100.005")) == Decimal("100.01")
        assert round_decimal(Decimal("43.335")) == Decimal("43.34")
        assert round_decimal(Decimal("-0.005")) == Decimal("-0.01")

    def test_custom_precision(self):
        """Test rounding with custom precision."""
        precision = Decimal("0.1")
        assert round_decimal(Decimal("43.34"), precision) == Decimal("43.3")
        assert round_decimal(Decimal("43.35"), precision) == Decimal("43.4")


@pytest.mark.unit
class TestCalculateNetBalances:
    """Test the calculate_net_balances function."""

    def test_chain(self):
        debts = {"A": {"B": Decimal("30")}, "B": {"C": Decimal("30")}}
        balances = calculate_net_balances(debts)

        assert balances == {"A": Decimal("-30"), "B": Decimal("0"), "C": Decimal("30")}

    def test_first_appearance_order(self):
        debts = {"B": {"C": Decimal("5")}, "A": {"B": Decimal("5")}}
        assert list(calculate_net_balances(debts)) == ["B", "C", "A"]

    def test_balances_sum_to_zero(self):
        debts = {
            "A": {"B": Decimal("12.50"), "C": Decimal("7.25")},
            "B": {"C": Decimal("3.10")},
            "D": {"A": Decimal("40.00")},
        }
        balances = calculate_net_balances(debts)
        assert sum(balances.values()) == Decimal("0")

    def test_self_debt_ignored(self):
        balances = calculate_net_balances({"A": {"A": Decimal("25")}})
        assert balances == {"A": Decimal("0")}

    def test_empty_graph(self):
        assert calculate_net_balances({}) == {}


@pytest.mark.unit
class TestMinCashFlow:
    """Test the greedy matching on net balances."""

    def test_single_creditor_many_debtors(self):
        balances = {"A": Decimal("80"), "B": Decimal("-10"), "C": Decimal("-70")}
        transfers = min_cash_flow(balances)

        assert transfers == [
            {"from": "C", "to": "A", "amount": Decimal("70.00")},
            {"from": "B", "to": "A", "amount": Decimal("10.00")},
        ]

    def test_empty_and_single_user(self):
        assert min_cash_flow({}) == []
        assert min_cash_flow({"A": Decimal("10")}) == []

    def test_all_settled(self):
        balances = {"A": Decimal("0"), "B": Decimal("0.005"), "C": Decimal("-0.005")}
        assert min_cash_flow(balances) == []

    def test_only_creditors(self):
        assert min_cash_flow({"A": Decimal("10"), "B": Decimal("5")}) == []

    def test_near_zero_balances_dropped(self):
        balances = {"A": Decimal("50.004"), "B": Decimal("-50"), "C": Decimal("-0.004")}
        transfers = min_cash_flow(balances)

        assert transfers == [{"from": "B", "to": "A", "amount": Decimal("50.00")}]

    def test_transfer_count_bound(self):
        balances = {
            "A": Decimal("100"), "B": Decimal("40"), "C": Decimal("-60"),
            "D": Decimal("-50"), "E": Decimal("-30"),
        }
        transfers = min_cash_flow(balances)

        # At most creditors + debtors - 1
        assert len(transfers) <= 4
        assert all(t["amount"] > Decimal("0") for t in transfers)

    def test_deterministic(self):
        balances = {"A": Decimal("20"), "B": Decimal("20"), "C": Decimal("-20"), "D": Decimal("-20")}
        assert min_cash_flow(balances) == min_cash_flow(dict(balances))


@pytest.mark.unit
class TestOptimizeDebts:
    """Test the optimize_debts entry point."""

    def test_transitive_chain_collapses(self):
        debts = {"A": {"B": Decimal("30")}, "B": {"C": Decimal("30")}}
        assert optimize_debts(debts) == [{"from": "A", "to": "C", "amount": Decimal("30.00")}]

    def test_mutual_debts_cancel(self):
        debts = {"A": {"B": Decimal("20")}, "B": {"A": Decimal("20")}}
        assert optimize_debts(debts) == []

    def test_mutual_debts_partially_cancel(self):
        debts = {"A": {"B": Decimal("50")}, "B": {"A": Decimal("20")}}
        assert optimize_debts(debts) == [{"from": "A", "to": "B", "amount": Decimal("30.00")}]

    def test_empty(self):
        assert optimize_debts({}) == []

    @pytest.mark.parametrize("debts", [
        {"A": {"B": Decimal("33.34"), "C": Decimal("12.10")}, "B": {"C": Decimal("8.00")}},
        {"A": {"D": Decimal("40")}, "B": {"D": Decimal("40")}, "C": {"D": Decimal("40")}},
        {"A": {"B": Decimal("10")}, "C": {"D": Decimal("15")}},
        {
            "A": {"B": Decimal("19.99"), "E": Decimal("5.01")},
            "B": {"C": Decimal("7.50")},
            "C": {"A": Decimal("3.33")},
            "D": {"E": Decimal("60.00"), "A": Decimal("0.01")},
        },
    ])
    def test_transfers_preserve_net_balances(self, debts):
        transfers = optimize_debts(debts)

        verify_transfers_settle_debts(debts, transfers)
        for transfer in transfers:
            assert transfer["from"] != transfer["to"]
            assert transfer["amount"] > Decimal("0")

    def test_disconnected_groups(self):
        debts = {"A": {"B": Decimal("10")}, "C": {"D": Decimal("15")}}
        transfers = optimize_debts(debts)

        assert len(transfers) == 2
        assert {"from": "C", "to": "D", "amount": Decimal("15.00")} in transfers
        assert {"from": "A", "to": "B", "amount": Decimal("10.00")} in transfers

    def test_groups_netted_separately(self):
        debts = {
            "A": {"B": Decimal("6"), "X": Decimal("4")},
            "C": {"D": Decimal("7"), "Y": Decimal("3")},
        }
        transfers = optimize_debts(debts)

        # Never more transfers than debts, and none across groups
        assert len(transfers) <= 4
        group_of = {"A": 1, "B": 1, "X": 1, "C": 2, "D": 2, "Y": 2}
        assert all(group_of[t["from"]] == group_of[t["to"]] for t in transfers)
        verify_transfers_settle_debts(debts, transfers)


@pytest.mark.unit
class TestSplitComponents:

    def test_connected_graph_is_one_group(self):
        debts = {"A": {"B": Decimal("1")}, "C": {"B": Decimal("2")}}
        assert split_components(debts) == [debts]

    def test_disconnected_groups_in_order(self):
        debts = {
            "A": {"B": Decimal("1")},
            "C": {"D": Decimal("2")},
            "B": {"E": Decimal("3")},
        }
        assert split_components(debts) == [
            {"A": {"B": Decimal("1")}, "B": {"E": Decimal("3")}},
            {"C": {"D": Decimal("2")}},
        ]

    def test_self_debt_is_its_own_group(self):
        assert split_components({"A": {"A": Decimal("5")}}) == [{"A": {"A": Decimal("5")}}]
