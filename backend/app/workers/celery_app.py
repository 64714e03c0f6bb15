from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as setup_logging_signal
from kombu import Queue

from app.core.config import settings
from app.core.logging import setup_logging

celery_app = Celery(
    "saasify",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # One job per worker slot; a job is only acked once it has finished
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_queues=(
        Queue("static-hosting"),
        Queue("dynamic-hosting"),
        Queue("maintenance"),
    ),
    task_default_queue="maintenance",
    task_routes={
        "hosting.provision_static": {"queue": "static-hosting"},
        "hosting.terminate_static": {"queue": "static-hosting"},
        "hosting.provision_dynamic": {"queue": "dynamic-hosting"},
        "hosting.terminate_dynamic": {"queue": "dynamic-hosting"},
    },
    # Redis connection resilience: survive transient Redis restarts
    broker_connection_retry_on_startup=True,
    redis_retry_on_timeout=True,
    redis_socket_connect_timeout=10,
    redis_socket_timeout=10,
    # Retried jobs may sit in the broker for a while; keep them visible
    # longer than the slowest provisioning run
    broker_transport_options={"visibility_timeout": settings.JOB_LOCK_TTL_SECONDS},
    result_expires=settings.JOB_RETENTION_HOURS * 3600,
    result_backend_transport_options={
        "retry_policy": {
            "timeout": 5.0,
        },
    },
)

# Celery Beat periodic tasks
celery_app.conf.beat_schedule = {
    "prune-finished-jobs": {
        "task": "jobs.prune_finished",
        "schedule": crontab(minute=0),  # Hourly
    },
    "auto-unsuspend-hosting": {
        "task": "hosting.auto_unsuspend",
        "schedule": crontab(minute="*/5"),  # Every 5 minutes
    },
}

celery_app.autodiscover_tasks([
    "app.workers.hosting_tasks",
])


@setup_logging_signal.connect
def configure_worker_logging(**kwargs) -> None:
    # Replace Celery's own logging setup with the application formatter
    setup_logging(settings.LOG_LEVEL)
