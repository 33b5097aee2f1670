"""
tests/test_store_orders.py — Store Order Points Lifecycle
==========================================================
suspend → approve | cancel | reject, with per-order conservation:
points held when an order goes pending are either spent once or returned
once, never both.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from sundaypoints.database.models import PointsTransaction, StudentPointsBalance, TransactionType
from sundaypoints.engine.errors import (
    InsufficientBalanceError,
    InvalidOrderTransitionError,
    LedgerValidationError,
)
from sundaypoints.services import ledger_service

USER = "student-1"


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def funded(engine):
    """Student with 50 available points."""
    ledger_service.admin_adjust(engine, user_id=USER, points=50, notes="opening balance")
    return engine


def _balance(engine) -> StudentPointsBalance:
    with Session(engine) as session:
        return session.get(StudentPointsBalance, USER)


def _order_rows(engine, order_id: str) -> list[PointsTransaction]:
    with Session(engine) as session:
        return list(session.scalars(
            select(PointsTransaction)
            .where(PointsTransaction.order_id == order_id)
            .order_by(PointsTransaction.id)
        ))


class TestSuspend:
    def test_moves_points_to_suspended(self, funded):
        result = ledger_service.suspend_order_points(
            funded, user_id=USER, order_id="o1", points=20,
        )
        assert result.transaction.points == -20
        assert result.transaction.transaction_type == TransactionType.STORE_ORDER_PENDING
        balance = _balance(funded)
        assert balance.available_points == 30
        assert balance.suspended_points == 20
        assert ledger_service.order_state(funded, USER, "o1") == "store_order_pending"

    def test_insufficient(self, funded):
        with pytest.raises(InsufficientBalanceError):
            ledger_service.suspend_order_points(
                funded, user_id=USER, order_id="o1", points=80,
            )
        assert _order_rows(funded, "o1") == []

    def test_resuspend_is_duplicate(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        again = ledger_service.suspend_order_points(
            funded, user_id=USER, order_id="o1", points=20,
        )
        assert again.duplicate
        assert _balance(funded).available_points == 30

    def test_other_users_order(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        ledger_service.admin_adjust(funded, user_id="student-2", points=50, notes="x")
        with pytest.raises(LedgerValidationError):
            ledger_service.suspend_order_points(
                funded, user_id="student-2", order_id="o1", points=20,
            )


class TestTerminalTransitions:
    def test_suspend_then_approve(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        result = ledger_service.approve_order(funded, user_id=USER, order_id="o1")

        assert result.transaction.points == 0
        assert "20 points deducted" in result.transaction.notes
        balance = _balance(funded)
        assert balance.available_points == 30
        assert balance.suspended_points == 0
        assert balance.used_points == 20

    def test_suspend_cancel_recancel(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        first = ledger_service.cancel_order(funded, user_id=USER, order_id="o1")
        second = ledger_service.cancel_order(funded, user_id=USER, order_id="o1")

        assert first.transaction.points == 20
        assert second.duplicate
        balance = _balance(funded)
        assert balance.available_points == 50
        assert balance.suspended_points == 0
        assert len(_order_rows(funded, "o1")) == 2

    def test_reject_returns_points(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        result = ledger_service.reject_order(funded, user_id=USER, order_id="o1")
        assert result.transaction.transaction_type == TransactionType.STORE_ORDER_REJECTED
        assert _balance(funded).available_points == 50

    def test_approve_without_pending(self, funded):
        with pytest.raises(InvalidOrderTransitionError):
            ledger_service.approve_order(funded, user_id=USER, order_id="nope")

    def test_cancel_after_approve(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        ledger_service.approve_order(funded, user_id=USER, order_id="o1")
        with pytest.raises(InvalidOrderTransitionError):
            ledger_service.cancel_order(funded, user_id=USER, order_id="o1")
        assert _balance(funded).used_points == 20

    def test_suspend_after_terminal(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        ledger_service.cancel_order(funded, user_id=USER, order_id="o1")
        with pytest.raises(InvalidOrderTransitionError):
            ledger_service.suspend_order_points(
                funded, user_id=USER, order_id="o1", points=20,
            )

    def test_conservation_across_orders(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=10)
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o2", points=15)
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o3", points=5)
        ledger_service.approve_order(funded, user_id=USER, order_id="o1")
        ledger_service.reject_order(funded, user_id=USER, order_id="o2")

        balance = _balance(funded)
        assert balance.used_points == 10
        assert balance.suspended_points == 5
        assert balance.available_points == 35
        assert (
            balance.total_earned - balance.total_deducted
            == balance.available_points + balance.suspended_points
            + balance.used_points - balance.deficit_points
        )

    def test_rows_record_suspended_moves(self, funded):
        ledger_service.suspend_order_points(funded, user_id=USER, order_id="o1", points=20)
        ledger_service.approve_order(funded, user_id=USER, order_id="o1")
        pending, approved = _order_rows(funded, "o1")
        assert pending.suspended_delta == 20
        assert approved.suspended_delta == -20
        assert approved.balance_after == 30
