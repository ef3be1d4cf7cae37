"""
Pytest configuration and fixtures for split_service tests.
"""
import pytest
from decimal import Decimal
from typing import Dict, List
from unittest.mock import Mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base
from app.models import settlements  # noqa: F401  (registers tables on Base)
from app.schemas.settlement_schema import (
    ParticipantIn, SettlementCreate, EqualSplitRule
)
from app.services.settlement_service import SettlementEngine


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mock_notifier():
    """Notification hook that records calls."""
    return Mock()


@pytest.fixture
def settlement_engine(mock_notifier):
    return SettlementEngine(notifier=mock_notifier)


@pytest.fixture
def three_participants():
    """Sample participants for testing."""
    return [
        ParticipantIn(user_id="alice", name="Alice"),
        ParticipantIn(user_id="bob", name="Bob"),
        ParticipantIn(user_id="carol", name="Carol"),
    ]


def make_equal_settlement(total: str, user_ids: List[str], title: str = "Dinner") -> SettlementCreate:
    """Build an equal-split creation payload."""
    return SettlementCreate(
        title=title,
        split=EqualSplitRule(
            split_type="equal",
            total_amount=Decimal(total),
            participants=[ParticipantIn(user_id=user_id) for user_id in user_ids]
        )
    )


def net_balances_from_debts(debts: Dict[str, Dict[str, Decimal]]) -> Dict[str, Decimal]:
    """Net balance per user implied by a payer -> payee -> amount graph."""
    balances: Dict[str, Decimal] = {}
    for payer, payees in debts.items():
        for payee, amount in payees.items():
            balances[payer] = balances.get(payer, Decimal("0")) - amount
            balances[payee] = balances.get(payee, Decimal("0")) + amount
    return balances


def verify_transfers_settle_debts(debts: Dict[str, Dict[str, Decimal]], transfers: List[Dict]) -> None:
    """
    Helper to verify transfers have the same net effect as the debts.

    Every user's net balance reconstructed from the transfers must match the
    balance implied by the original debts within 0.01.
    """
    expected = net_balances_from_debts(debts)

    actual: Dict[str, Decimal] = {}
    for transfer in transfers:
        actual[transfer["from"]] = actual.get(transfer["from"], Decimal("0")) - transfer["amount"]
        actual[transfer["to"]] = actual.get(transfer["to"], Decimal("0")) + transfer["amount"]

    for user in set(expected) | set(actual):
        difference = expected.get(user, Decimal("0")) - actual.get(user, Decimal("0"))
        assert abs(difference) <= Decimal("0.01"), \
            f"User {user} not settled: expected={expected.get(user)}, " \
            f"transferred={actual.get(user)}, difference={difference}"
