from datetime import datetime, timedelta
from typing import Literal

from pydantic import Field, model_validator

from cardflow.core.exceptions import ConflictError
from cardflow.models.base import Entity, new_id

CardStatus = Literal["active", "suspended", "cancelled"]
ApprovedBy = Literal["auto", "admin"]

PAYMENT_CYCLE_DAYS = 30

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"suspended", "cancelled"}),
    "suspended": frozenset({"active", "cancelled"}),
    "cancelled": frozenset(),
}


def _first_due_date() -> datetime:
    return datetime.utcnow() + timedelta(days=PAYMENT_CYCLE_DAYS)


class Card(Entity):
    card_id: str = Field(default_factory=new_id)
    user_id: str
    status: CardStatus = "active"
    limit: int = Field(gt=0)
    balance: float = 0
    available_credit: float
    minimum_payment: float = 0
    next_due_date: datetime = Field(default_factory=_first_due_date)
    version: int = Field(default=1, ge=1)
    approved_by: ApprovedBy
    approved_by_admin_id: str | None = None
    score_at_approval: int
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    cancelled_at: datetime | None = None

    @model_validator(mode="after")
    def _check_balances(self) -> "Card":
        if self.balance < 0 or self.balance > self.limit:
            raise ValueError(f"balance {self.balance} outside [0, {self.limit}]")
        if abs(self.available_credit - (self.limit - self.balance)) > 0.005:
            raise ValueError("available_credit must equal limit - balance")
        if self.approved_by == "admin" and not self.approved_by_admin_id:
            raise ValueError("admin-approved cards require approved_by_admin_id")
        if self.status == "cancelled" and self.balance != 0:
            raise ValueError("cancelled cards must have zero balance")
        return self

    @classmethod
    def new(
        cls,
        user_id: str,
        limit: int,
        approved_by: ApprovedBy,
        score_at_approval: int,
        admin_id: str | None = None,
    ) -> "Card":
        return cls(
            user_id=user_id,
            limit=limit,
            available_credit=limit,
            approved_by=approved_by,
            approved_by_admin_id=admin_id,
            score_at_approval=score_at_approval,
        )

    @property
    def last4(self) -> str:
        digits = "".join(c for c in self.card_id if c.isdigit())
        return (digits or self.card_id)[-4:]

    def can_transition(self, target: CardStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: CardStatus) -> "Card":
        if not self.can_transition(target):
            raise ConflictError(
                f"Cannot change card status from {self.status} to {target}",
                code="INVALID_STATUS_TRANSITION",
                details={"card_id": self.card_id, "status": self.status, "target": target},
            )
        if target == "cancelled" and self.balance > 0:
            raise ConflictError(
                "Card balance must be zero before cancellation",
                code="INVALID_STATUS_TRANSITION",
                details={"card_id": self.card_id, "balance": self.balance},
            )
        now = datetime.utcnow()
        return self.evolve(
            status=target,
            version=self.version + 1,
            updated_at=now,
            cancelled_at=now if target == "cancelled" else self.cancelled_at,
        )
