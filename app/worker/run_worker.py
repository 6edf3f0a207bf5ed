"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from app.worker.tasks import get_redis_settings, reconcile_ledger, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [reconcile_ledger]
    cron_jobs = [
        cron(reconcile_ledger, second=30),  # every minute at :30
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_tries = 1  # the sweep is re-run by the next tick anyway


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
