"""Purchase and payment validation and balance arithmetic."""

import math
from datetime import datetime, timedelta

from cardflow.models.card import PAYMENT_CYCLE_DAYS, Card

MINIMUM_PAYMENT_RATE = 0.02
MINIMUM_PAYMENT_FLOOR = 25.0


def round_money(value: float) -> float:
    return round(value + 0.0, 2)


def validate_purchase(amount: float, card: Card) -> str | None:
    """Return an error message, or None when the purchase is allowed."""
    if amount is None or amount <= 0:
        return "Amount must be positive"
    if card.status != "active":
        return f"Card is {card.status}, cannot process purchase"
    if amount > card.available_credit:
        return f"Purchase amount (${amount}) exceeds available credit (${card.available_credit})"
    return None


def validate_payment(amount: float, balance: float) -> str | None:
    if amount is None or amount <= 0:
        return "Amount must be positive"
    if balance <= 0:
        return "No balance to pay"
    if amount > balance:
        return f"Payment amount (${amount}) exceeds balance (${balance})"
    return None


def calculate_minimum_payment(balance: float) -> float:
    """2% of the balance or $25, whichever is greater, never more than the balance."""
    if balance <= 0:
        return 0.0
    return round_money(min(balance, max(balance * MINIMUM_PAYMENT_RATE, MINIMUM_PAYMENT_FLOOR)))


def calculate_next_due_date(from_date: datetime | None = None) -> datetime:
    return (from_date or datetime.utcnow()) + timedelta(days=PAYMENT_CYCLE_DAYS)


def is_payment_on_time(payment_date: datetime, due_date: datetime) -> bool:
    """Compared by calendar date; paying on the due date counts as on time."""
    return payment_date.date() <= due_date.date()


def calculate_days_overdue(payment_date: datetime, due_date: datetime) -> int:
    if is_payment_on_time(payment_date, due_date):
        return 0
    return math.ceil((payment_date - due_date).total_seconds() / 86400)


def apply_purchase(card: Card, amount: float) -> Card:
    balance = round_money(card.balance + amount)
    return card.evolve(
        balance=balance,
        available_credit=round_money(card.limit - balance),
        minimum_payment=calculate_minimum_payment(balance),
        version=card.version + 1,
        updated_at=datetime.utcnow(),
    )


def apply_payment(card: Card, amount: float, paid_at: datetime | None = None) -> Card:
    balance = round_money(max(0.0, card.balance - amount))
    return card.evolve(
        balance=balance,
        available_credit=round_money(card.limit - balance),
        minimum_payment=calculate_minimum_payment(balance),
        next_due_date=calculate_next_due_date(paid_at),
        version=card.version + 1,
        updated_at=datetime.utcnow(),
    )
