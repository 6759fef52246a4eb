from datetime import datetime, timedelta
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

from cardflow.core.exceptions import ConflictError
from cardflow.domain.scoring import Tier
from cardflow.models.base import Entity, new_id

CardRequestStatus = Literal["pending", "approved", "rejected"]
DecisionOutcome = Literal["approved", "rejected"]

DEFAULT_PRODUCT_ID = "default-credit-card"
REQUEST_EXPIRY_DAYS = 7


class AutoDecision(BaseModel):
    source: Literal["auto"] = "auto"
    outcome: DecisionOutcome
    approved_limit: int | None = None
    reason: str | None = None
    decided_at: datetime = Field(default_factory=datetime.utcnow)


class AdminDecision(BaseModel):
    source: Literal["admin"] = "admin"
    outcome: DecisionOutcome
    admin_id: str = Field(min_length=1)
    approved_limit: int | None = None
    reason: str | None = None
    decided_at: datetime = Field(default_factory=datetime.utcnow)


Decision = Annotated[Union[AutoDecision, AdminDecision], Field(discriminator="source")]


def _request_expiry() -> datetime:
    return datetime.utcnow() + timedelta(days=REQUEST_EXPIRY_DAYS)


class CardRequest(Entity):
    request_id: str = Field(default_factory=new_id)
    user_id: str
    product_id: str = DEFAULT_PRODUCT_ID
    idempotency_key: str = Field(min_length=1, max_length=64)
    status: CardRequestStatus = "pending"
    score_at_request: int
    tier_at_request: Tier
    decision: Decision | None = None
    resulting_card_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(default_factory=_request_expiry)

    @model_validator(mode="after")
    def _decision_matches_status(self) -> "CardRequest":
        if self.status == "pending":
            if self.decision is not None:
                raise ValueError("pending requests cannot carry a decision")
            return self
        if self.decision is None:
            raise ValueError(f"{self.status} requests require a decision")
        if self.decision.outcome != self.status:
            raise ValueError(f"decision outcome {self.decision.outcome} does not match status {self.status}")
        if self.status == "approved" and not self.resulting_card_id:
            raise ValueError("approved requests require resulting_card_id")
        return self

    @property
    def short_id(self) -> str:
        return short_request_id(self.request_id)

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def requires_attention(self, now: datetime | None = None) -> bool:
        """Pending past the advisory deadline."""
        now = now or datetime.utcnow()
        return self.is_pending and now - self.created_at >= timedelta(days=REQUEST_EXPIRY_DAYS)

    def decide(self, decision: AutoDecision | AdminDecision, resulting_card_id: str | None = None) -> "CardRequest":
        if not self.is_pending:
            raise ConflictError(
                f"Request is not pending (status: {self.status})",
                code="REQUEST_NOT_PENDING",
                details={"request_id": self.request_id, "status": self.status},
            )
        return self.evolve(
            status=decision.outcome,
            decision=decision.model_dump(),
            resulting_card_id=resulting_card_id,
            updated_at=datetime.utcnow(),
        )


def short_request_id(request_id: str) -> str:
    return request_id[:8].upper()
