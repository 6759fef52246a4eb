"""Admin score adjustment, account deletion and two-step system cleanup."""

from datetime import datetime, timedelta
from typing import Any

from cardflow.core.audit import AdminActor, log_admin_action
from cardflow.core.exceptions import BadRequestError
from cardflow.core.logging import get_logger
from cardflow.core.security import generate_confirmation_token, hash_idempotency_key
from cardflow.domain import events
from cardflow.domain.scoring import clamp_score, derive_tier
from cardflow.repositories.base import Repositories
from cardflow.services.idempotency import CommandResult, find_cached, remember, run_idempotent
from cardflow.services.users import apply_score_change, get_score_history, get_user, user_profile

log = get_logger(__name__)

ADJUST_SCORE_OPERATION = "admin-adjust-score"
CLEANUP_CONFIRM_OPERATION = "system-cleanup-confirm"

SENT_EVENT_RETENTION = timedelta(days=7)
TERMINAL_TRACKER_RETENTION = timedelta(days=30)


async def adjust_score(
    container,
    actor: AdminActor,
    user_id: str,
    new_score: int,
    reason: str,
    idempotency_key: str,
) -> CommandResult:
    repos: Repositories = container.repos

    async def _execute() -> dict[str, Any]:
        user = await get_user(repos, user_id)
        previous_score = user.current_score
        score = clamp_score(new_score)
        updated = await apply_score_change(
            repos, user, score, "admin_adjustment", source="admin", source_id=actor.admin_id
        )
        await log_admin_action(
            repos,
            actor,
            "score.adjusted",
            "user",
            user_id,
            target_user_id=user_id,
            previous_value={"score": previous_score, "tier": derive_tier(previous_score)},
            new_value={"score": score, "tier": updated.tier},
            reason=reason,
        )
        return {
            "user_id": user_id,
            "previous_score": previous_score,
            "new_score": score,
            "previous_tier": derive_tier(previous_score),
            "new_tier": updated.tier,
        }

    return await run_idempotent(repos, actor.admin_id, idempotency_key, ADJUST_SCORE_OPERATION, _execute)


async def get_user_score(repos: Repositories, user_id: str, history_limit: int = 50) -> dict[str, Any]:
    user = await get_user(repos, user_id)
    return {
        "user": user_profile(user),
        "score": user.current_score,
        "tier": user.tier,
        "history": await get_score_history(repos, user_id, limit=history_limit),
    }


async def issue_cleanup_token(container, actor: AdminActor) -> dict[str, Any]:
    """First step: a single-use token kept in the idempotency store with a short TTL."""
    ttl = timedelta(seconds=container.settings.cleanup_token_ttl_seconds)
    token = generate_confirmation_token()
    await remember(
        container.repos,
        actor.admin_id,
        token,
        CLEANUP_CONFIRM_OPERATION,
        {"issued_at": datetime.utcnow().isoformat()},
        ttl=ttl,
    )
    log.info("cleanup_token_issued", admin_id=actor.admin_id)
    return {"confirmation_token": token, "expires_in_seconds": int(ttl.total_seconds())}


async def run_system_cleanup(container, actor: AdminActor, confirmation_token: str) -> dict[str, Any]:
    repos: Repositories = container.repos
    cached = await find_cached(repos, actor.admin_id, confirmation_token, CLEANUP_CONFIRM_OPERATION)
    if cached is None:
        raise BadRequestError("Invalid or expired confirmation token", code="INVALID_CONFIRMATION_TOKEN")
    await repos.idempotency.delete(actor.admin_id, hash_idempotency_key(confirmation_token))

    now = datetime.utcnow()
    deleted = {
        "outbox_events": await repos.outbox.delete_sent_before(now - SENT_EVENT_RETENTION),
        "idempotency_records": await repos.idempotency.delete_expired(now),
        "pending_approvals": await repos.pending_approvals.delete_terminal_before(now - TERMINAL_TRACKER_RETENTION),
    }
    await log_admin_action(
        repos,
        actor,
        "system.cleanup",
        "system",
        "cleanup",
        new_value={"deleted": deleted},
        reason="System cleanup",
    )
    await repos.outbox.append(events.system_cleanup(actor.admin_id, actor.email, deleted))
    log.info("system_cleanup_completed", admin_id=actor.admin_id, **deleted)
    return {"deleted": deleted}


async def delete_account(container, actor: AdminActor, user_id: str, reason: str | None = None) -> dict[str, Any]:
    """Cascade delete of a user and everything they own. Audit logs are kept."""
    repos: Repositories = container.repos
    user = await get_user(repos, user_id)
    deleted = {
        "cards": await repos.cards.delete_for_user(user_id),
        "card_requests": await repos.card_requests.delete_for_user(user_id),
        "transactions": await repos.transactions.delete_for_user(user_id),
        "score_history": await repos.scores.delete_for_user(user_id),
        "pending_approvals": await repos.pending_approvals.delete_for_user(user_id),
        "idempotency_records": await repos.idempotency.delete_for_actor(user_id),
    }
    await repos.users.delete(user_id)
    await log_admin_action(
        repos,
        actor,
        "user.disabled",
        "user",
        user_id,
        target_user_id=user_id,
        previous_value={"email": user.email, "score": user.current_score, "role": user.role},
        new_value={"deleted": True, "deleted_counts": deleted},
        reason=reason or "Account deleted by admin",
    )
    log.info("account_deleted", user_id=user_id, admin_id=actor.admin_id)
    return {"user_id": user_id, "deleted": deleted}
