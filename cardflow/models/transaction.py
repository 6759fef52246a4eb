from datetime import datetime
from typing import Literal

from pydantic import Field, model_validator

from cardflow.models.base import Entity, new_id

TransactionType = Literal["purchase", "payment"]
TransactionStatus = Literal["completed", "failed"]
PaymentStatus = Literal["on_time", "late"]


class Transaction(Entity):
    transaction_id: str = Field(default_factory=new_id)
    card_id: str
    user_id: str
    type: TransactionType
    amount: float
    merchant: str | None = None
    payment_status: PaymentStatus | None = None
    days_overdue: int | None = None
    score_impact: int | None = None
    idempotency_key: str
    status: TransactionStatus = "completed"
    failure_reason: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    processed_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _check_completed(self) -> "Transaction":
        if self.status == "failed":
            if not self.failure_reason:
                raise ValueError("failed transactions require failure_reason")
            return self
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if self.type == "purchase" and not self.merchant:
            raise ValueError("merchant is required for purchases")
        if self.type == "payment" and self.payment_status is None:
            raise ValueError("payment_status is required for payments")
        return self

    @classmethod
    def purchase(cls, card_id: str, user_id: str, amount: float, merchant: str, idempotency_key: str) -> "Transaction":
        return cls(
            card_id=card_id,
            user_id=user_id,
            type="purchase",
            amount=amount,
            merchant=merchant,
            idempotency_key=idempotency_key,
        )

    @classmethod
    def payment(
        cls,
        card_id: str,
        user_id: str,
        amount: float,
        idempotency_key: str,
        payment_status: PaymentStatus,
        score_impact: int,
        days_overdue: int | None = None,
    ) -> "Transaction":
        return cls(
            card_id=card_id,
            user_id=user_id,
            type="payment",
            amount=amount,
            idempotency_key=idempotency_key,
            payment_status=payment_status,
            score_impact=score_impact,
            days_overdue=days_overdue,
        )

    @classmethod
    def failed(
        cls,
        card_id: str,
        user_id: str,
        type: TransactionType,
        amount: float,
        idempotency_key: str,
        reason: str,
        merchant: str | None = None,
    ) -> "Transaction":
        return cls(
            card_id=card_id,
            user_id=user_id,
            type=type,
            amount=amount,
            merchant=merchant,
            idempotency_key=idempotency_key,
            status="failed",
            failure_reason=reason,
        )
