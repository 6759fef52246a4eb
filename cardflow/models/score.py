"""Append-only score history."""

from datetime import datetime
from typing import Literal

from pydantic import Field, model_validator

from cardflow.domain.scoring import MAX_SCORE, MIN_SCORE
from cardflow.models.base import Entity, new_id

ScoreReason = Literal[
    "payment_on_time",
    "payment_late",
    "admin_adjustment",
    "initial_score",
    "account_activity",
]
ScoreSource = Literal["system", "admin"]


class ScoreEntry(Entity):
    score_id: str = Field(default_factory=new_id)
    user_id: str
    value: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    previous_value: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    delta: int
    reason: ScoreReason
    source: ScoreSource
    source_id: str | None = None  # admin id when source == "admin"
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _check_delta(self) -> "ScoreEntry":
        if self.delta != self.value - self.previous_value:
            raise ValueError("delta must equal value - previous_value")
        if self.source == "admin" and not self.source_id:
            raise ValueError("admin score changes require source_id")
        return self

    @classmethod
    def record(
        cls,
        user_id: str,
        previous_value: int,
        value: int,
        reason: ScoreReason,
        source: ScoreSource = "system",
        source_id: str | None = None,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
    ) -> "ScoreEntry":
        return cls(
            user_id=user_id,
            value=value,
            previous_value=previous_value,
            delta=value - previous_value,
            reason=reason,
            source=source,
            source_id=source_id,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
