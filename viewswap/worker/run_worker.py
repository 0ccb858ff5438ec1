"""Run arq worker. Usage: python -m viewswap.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from viewswap.worker.tasks import expire_holds, get_redis_settings, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [expire_holds]
    cron_jobs = [
        cron(expire_holds, second={0, 30}, run_at_startup=True),  # every 30 seconds
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
