"""Run ARQ worker. Usage: python -m cardflow.worker.run_worker (or: arq cardflow.worker.run_worker.WorkerSettings)"""

from arq import run_worker
from arq.cron import cron

from cardflow.worker.tasks import (
    cleanup_idempotency_records,
    dispatch_notifications,
    drain_outbox,
    expire_pending_approvals,
    get_redis_settings,
    shutdown,
    startup,
)


class WorkerSettings:
    redis_settings = get_redis_settings()
    cron_jobs = [
        cron(drain_outbox, second=0),  # every minute at :00
        cron(dispatch_notifications, second=30),
        cron(expire_pending_approvals, minute=5, second=0),  # hourly
        cron(cleanup_idempotency_records, minute=35, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
