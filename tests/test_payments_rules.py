from datetime import datetime, timedelta

from cardflow.domain.payments import (
    apply_payment,
    apply_purchase,
    calculate_days_overdue,
    calculate_minimum_payment,
    is_payment_on_time,
    validate_payment,
    validate_purchase,
)
from cardflow.models.card import Card


def _card(limit: int = 1000) -> Card:
    return Card.new("u1", limit, approved_by="auto", score_at_approval=700)


def test_minimum_payment():
    assert calculate_minimum_payment(0) == 0
    assert calculate_minimum_payment(10) == 10
    assert calculate_minimum_payment(500) == 25
    assert calculate_minimum_payment(5000) == 100


def test_validate_purchase():
    card = _card()
    assert validate_purchase(100, card) is None
    assert validate_purchase(1000, card) is None
    assert validate_purchase(0, card) == "Amount must be positive"
    assert "exceeds available credit" in validate_purchase(1000.01, card)
    suspended = card.transition("suspended")
    assert "cannot process purchase" in validate_purchase(10, suspended)


def test_validate_payment():
    assert validate_payment(50, 100) is None
    assert validate_payment(-1, 100) == "Amount must be positive"
    assert validate_payment(10, 0) == "No balance to pay"
    assert "exceeds balance" in validate_payment(150, 100)


def test_payment_on_due_date_is_on_time():
    due = datetime(2026, 5, 10, 8, 0)
    assert is_payment_on_time(datetime(2026, 5, 10, 23, 59), due)
    assert not is_payment_on_time(datetime(2026, 5, 11, 0, 1), due)
    assert calculate_days_overdue(datetime(2026, 5, 10, 23, 0), due) == 0


def test_days_overdue_rounds_up():
    due = datetime(2026, 5, 10, 8, 0)
    assert calculate_days_overdue(due + timedelta(days=1, hours=1), due) == 2
    assert calculate_days_overdue(due + timedelta(days=10), due) == 10


def test_purchase_then_payment_keeps_balances_consistent():
    card = apply_purchase(_card(), 300.10)
    assert card.balance == 300.1
    assert card.available_credit == 699.9
    assert card.minimum_payment == 25
    assert card.version == 2

    paid_at = datetime(2026, 1, 1)
    card = apply_payment(card, 100.05, paid_at=paid_at)
    assert card.balance == 200.05
    assert card.available_credit == 799.95
    assert card.next_due_date == paid_at + timedelta(days=30)
    assert card.version == 3
