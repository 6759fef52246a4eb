from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from cardflow.domain.scoring import INITIAL_SCORE, MAX_SCORE, MIN_SCORE, Tier, derive_tier
from cardflow.models.base import Entity, new_id

UserRole = Literal["user", "admin"]
UserStatus = Literal["active", "disabled"]


class CardSummary(BaseModel):
    active_cards: int = 0
    total_balance: float = 0
    total_limit: int = 0


class User(Entity):
    user_id: str = Field(default_factory=new_id)
    external_id: str  # auth provider uid
    email: str
    role: UserRole = "user"
    status: UserStatus = "active"
    current_score: int = Field(default=INITIAL_SCORE, ge=MIN_SCORE, le=MAX_SCORE)
    tier: Tier = "medium"
    card_summary: CardSummary = Field(default_factory=CardSummary)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    last_login_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _tier_matches_score(self) -> "User":
        expected = derive_tier(self.current_score)
        if self.tier != expected:
            raise ValueError(f"tier {self.tier} does not match score {self.current_score} ({expected})")
        return self

    @classmethod
    def new(cls, external_id: str, email: str, role: UserRole = "user", score: int = INITIAL_SCORE) -> "User":
        return cls(external_id=external_id, email=email, role=role, current_score=score, tier=derive_tier(score))

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def with_score(self, score: int) -> "User":
        return self.evolve(current_score=score, tier=derive_tier(score), updated_at=datetime.utcnow())
