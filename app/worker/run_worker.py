"""Run the ARQ worker. Usage: python -m app.worker.run_worker (or: arq app.worker.run_worker.WorkerSettings)"""

from arq import run_worker
from arq.cron import cron

from app.worker.cron import sweep_minutes
from app.worker.tasks import get_redis_settings, retry_pending_deliveries, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    cron_jobs = [
        cron(retry_pending_deliveries, minute=sweep_minutes(), second=0, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
