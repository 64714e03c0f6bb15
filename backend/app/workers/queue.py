"""Job queue for provisioning and termination jobs.

Every job has a deterministic id such as ``provision-static-12``. The id is
used both as the Celery task id and as a Redis ``SET NX`` lock, so a second
enqueue for the same id is rejected while the first job is pending or
running. The worker releases the lock when the job finishes for good.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

import redis

from app.core.config import settings
from app.hosting.errors import DuplicateJobError
from app.hosting.record import HostingType

logger = logging.getLogger(__name__)

LOCK_PREFIX = "saasify:job:"

PROVISION = "provision"
TERMINATE = "terminate"


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    backoff: int  # seconds, doubled on every retry

    @property
    def max_retries(self) -> int:
        return self.attempts - 1


RETRY_POLICIES: dict[HostingType, RetryPolicy] = {
    HostingType.STATIC: RetryPolicy(attempts=3, backoff=2),
    HostingType.DYNAMIC: RetryPolicy(attempts=2, backoff=5),
}

QUEUES: dict[HostingType, str] = {
    HostingType.STATIC: "static-hosting",
    HostingType.DYNAMIC: "dynamic-hosting",
}


def job_id_for(operation: str, hosting_type: HostingType | str, hosting_service_id: int) -> str:
    return f"{operation}-{HostingType(hosting_type).value}-{hosting_service_id}"


def task_name_for(operation: str, hosting_type: HostingType | str) -> str:
    return f"hosting.{operation}_{HostingType(hosting_type).value}"


class JobQueue:
    def __init__(
        self,
        redis_client=None,
        *,
        send: Callable | None = None,
        lock_ttl: int | None = None,
    ):
        self.redis = redis_client or redis.from_url(settings.REDIS_URL, decode_responses=True)
        self._send = send
        self.lock_ttl = lock_ttl or settings.JOB_LOCK_TTL_SECONDS

    @property
    def send(self) -> Callable:
        if self._send is None:
            from app.workers.celery_app import celery_app

            self._send = celery_app.send_task
        return self._send

    def is_pending(self, job_id: str) -> bool:
        """True while a job with this id is queued, running or awaiting retry."""
        return bool(self.redis.exists(LOCK_PREFIX + job_id))

    def release(self, job_id: str) -> None:
        self.redis.delete(LOCK_PREFIX + job_id)

    def _enqueue(
        self,
        operation: str,
        hosting_service_id: int,
        hosting_type: HostingType,
        options: dict | None = None,
    ) -> str:
        job_id = job_id_for(operation, hosting_type, hosting_service_id)
        if not self.redis.set(LOCK_PREFIX + job_id, hosting_service_id, nx=True, ex=self.lock_ttl):
            raise DuplicateJobError(job_id)

        try:
            self.send(
                task_name_for(operation, hosting_type),
                args=[hosting_service_id],
                kwargs={"options": options or {}},
                task_id=job_id,
                queue=QUEUES[HostingType(hosting_type)],
            )
        except Exception:
            self.release(job_id)
            raise
        logger.info("Enqueued %s on %s", job_id, QUEUES[HostingType(hosting_type)])
        return job_id

    def enqueue_provision(
        self,
        hosting_service_id: int,
        hosting_type: HostingType,
        options: dict | None = None,
    ) -> str:
        return self._enqueue(PROVISION, hosting_service_id, hosting_type, options)

    def enqueue_terminate(self, hosting_service_id: int, hosting_type: HostingType) -> str:
        return self._enqueue(TERMINATE, hosting_service_id, hosting_type)
