"""User provisioning, score changes and card summary."""

from datetime import datetime
from typing import Any

from cardflow.core.exceptions import BadRequestError, NotFoundError
from cardflow.core.logging import get_logger
from cardflow.domain import events
from cardflow.domain.scoring import derive_tier
from cardflow.models.card import Card
from cardflow.models.score import ScoreEntry
from cardflow.models.user import CardSummary, User
from cardflow.repositories.base import Repositories

log = get_logger(__name__)


async def get_or_create_user(repos: Repositories, claims: dict[str, Any], admin_emails: list[str] | None = None) -> User:
    """Resolve verified auth claims ({uid, email, role}) to a User, creating it on first sight."""
    uid = claims.get("uid")
    if not uid:
        raise BadRequestError("Missing uid in token")
    email = (claims.get("email") or "").strip()

    user = await repos.users.find_by_external_id(uid)
    if user:
        user = user.evolve(last_login_at=datetime.utcnow())
        await repos.users.save(user)
        return user

    role = "admin" if claims.get("role") == "admin" or email.lower() in (admin_emails or []) else "user"
    user = User.new(external_id=uid, email=email, role=role)
    await repos.users.save(user)
    await repos.scores.append(
        ScoreEntry.record(user.user_id, user.current_score, user.current_score, reason="initial_score")
    )
    await repos.outbox.append(events.user_created(user))
    log.info("user_created", user_id=user.user_id, role=role)
    return user


async def get_user(repos: Repositories, user_id: str) -> User:
    user = await repos.users.get(user_id)
    if not user:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def summarize_cards(cards: list[Card]) -> CardSummary:
    live = [c for c in cards if c.status != "cancelled"]
    return CardSummary(
        active_cards=sum(1 for c in cards if c.status == "active"),
        total_balance=round(sum(c.balance for c in live), 2),
        total_limit=sum(c.limit for c in live),
    )


async def refresh_card_summary(repos: Repositories, user_id: str) -> CardSummary:
    summary = summarize_cards(await repos.cards.list_for_user(user_id))
    await repos.users.update_card_summary(user_id, summary)
    return summary


async def apply_score_change(
    repos: Repositories,
    user: User,
    new_score: int,
    reason: str,
    source: str = "system",
    source_id: str | None = None,
    related_entity_type: str | None = None,
    related_entity_id: str | None = None,
) -> User:
    """Persist the new score and tier, append history and queue score.changed."""
    previous = user.current_score
    updated = user.with_score(new_score)
    await repos.users.save(updated)
    await repos.scores.append(
        ScoreEntry.record(
            user.user_id,
            previous,
            new_score,
            reason=reason,
            source=source,
            source_id=source_id,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
    )
    await repos.outbox.append(
        events.score_changed(
            user.user_id,
            previous,
            new_score,
            reason,
            source,
            admin_id=source_id if source == "admin" else None,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
    )
    log.info(
        "score_changed",
        user_id=user.user_id,
        previous_score=previous,
        new_score=new_score,
        previous_tier=derive_tier(previous),
        new_tier=updated.tier,
        reason=reason,
    )
    return updated


def user_profile(user: User) -> dict[str, Any]:
    return {
        "user_id": user.user_id,
        "email": user.email,
        "role": user.role,
        "status": user.status,
        "score": user.current_score,
        "tier": user.tier,
        "card_summary": user.card_summary.model_dump(mode="json"),
        "created_at": user.created_at.isoformat(),
    }


async def get_score_history(repos: Repositories, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
    entries = await repos.scores.list_for_user(user_id, limit=limit)
    return [e.model_dump(mode="json") for e in entries]
