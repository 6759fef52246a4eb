"""Audit trail for admin actions."""

from dataclasses import dataclass
from typing import Any

from cardflow.core.logging import get_logger
from cardflow.models.audit_log import AuditLog
from cardflow.repositories.base import Repositories

log = get_logger(__name__)


@dataclass(frozen=True)
class AdminActor:
    """Who is acting: an HTTP admin, a whitelisted phone, or the system itself."""

    admin_id: str
    email: str
    correlation_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None


SYSTEM_ACTOR = AdminActor(admin_id="system", email="system@cardflow")


async def log_admin_action(
    repos: Repositories,
    actor: AdminActor,
    action: str,
    target_type: str,
    target_id: str,
    target_user_id: str | None = None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
    reason: str | None = None,
) -> AuditLog:
    """Append to the audit log. Entries are never updated or deleted."""
    entry = AuditLog(
        admin_id=actor.admin_id,
        admin_email=actor.email,
        action=action,
        target_type=target_type,
        target_id=target_id,
        target_user_id=target_user_id,
        previous_value=previous_value,
        new_value=new_value,
        reason=reason,
        correlation_id=actor.correlation_id,
        ip=actor.ip,
        user_agent=actor.user_agent,
    )
    await repos.audit_logs.append(entry)
    log.info("admin_action", action=action, admin_id=actor.admin_id, target_type=target_type, target_id=target_id)
    return entry
