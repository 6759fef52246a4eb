"""ARQ job definitions."""

import uuid
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from cardflow.container import Container, build_container
from cardflow.core.config import get_settings
from cardflow.core.logging import configure_logging, get_logger
from cardflow.db.init import init_db
from cardflow.models.failed_job import FailedJob
from cardflow.services.idempotency import purge_expired
from cardflow.services.outbox import drain_outbox as _drain_outbox
from cardflow.whatsapp.approvals import expire_pending_approvals as _expire_pending_approvals
from cardflow.whatsapp.notifications import dispatch_due_notifications as _dispatch_due_notifications

log = get_logger(__name__)


async def _run_with_dlq(
    container: Container,
    job_name: str,
    job_id: str | None,
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist a FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await container.repos.failed_jobs.save(
            FailedJob(job_name=job_name, job_id=fid, kwargs=kwargs, reason=str(e)[:2000])
        )
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def drain_outbox(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: publish undelivered outbox events."""
    container: Container = ctx["container"]
    report = await _run_with_dlq(container, "drain_outbox", _job_id(ctx), {}, _drain_outbox(container))
    return report.as_dict()


async def dispatch_notifications(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: send pending WhatsApp notifications and retry failed ones that are due."""
    container: Container = ctx["container"]
    return await _run_with_dlq(
        container, "dispatch_notifications", _job_id(ctx), {"limit": 10}, _dispatch_due_notifications(container, limit=10)
    )


async def expire_pending_approvals(ctx: dict[str, Any]) -> dict[str, int]:
    container: Container = ctx["container"]
    return await _run_with_dlq(
        container, "expire_pending_approvals", _job_id(ctx), {}, _expire_pending_approvals(container)
    )


async def cleanup_idempotency_records(ctx: dict[str, Any]) -> int:
    container: Container = ctx["container"]
    return await _run_with_dlq(
        container, "cleanup_idempotency_records", _job_id(ctx), {}, purge_expired(container.repos)
    )


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    await init_db(settings)
    ctx["container"] = build_container(settings)
    log.info("worker_started", backend=settings.repository_backend)


async def shutdown(ctx: dict) -> None:
    container = ctx.get("container")
    if container:
        await container.close()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
