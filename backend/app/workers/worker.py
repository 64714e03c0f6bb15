"""Start a Celery worker bound to one hosting queue.

    python -m app.workers.worker static-hosting
    python -m app.workers.worker dynamic-hosting
    python -m app.workers.worker maintenance --beat
"""

import sys

from app.core.config import settings
from app.workers.celery_app import celery_app

CONCURRENCY = {
    "static-hosting": settings.STATIC_QUEUE_CONCURRENCY,
    "dynamic-hosting": settings.DYNAMIC_QUEUE_CONCURRENCY,
    "maintenance": 1,
}


def worker_argv(queue: str, beat: bool = False) -> list[str]:
    if queue not in CONCURRENCY:
        raise ValueError(f"Unknown queue {queue!r}, expected one of {sorted(CONCURRENCY)}")
    argv = [
        "worker",
        "--queues",
        queue,
        "--concurrency",
        str(CONCURRENCY[queue]),
        "--hostname",
        f"{queue}@%h",
        "--loglevel",
        settings.LOG_LEVEL,
    ]
    if beat:
        argv.append("--beat")
    return argv


if __name__ == "__main__":
    args = sys.argv[1:]
    queue = args[0] if args else "maintenance"
    celery_app.worker_main(worker_argv(queue, beat="--beat" in args))
