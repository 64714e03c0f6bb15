"""Shared utilities for Celery worker tasks."""

import json
import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.database_sync import get_sync_db
from app.models.hosting_job import HostingJob

logger = logging.getLogger(__name__)

JOB_OPEN_STATUSES = ("pending", "running", "retrying")
JOB_FINISHED_STATUSES = ("success", "failed")


def open_job(db: Session, job_id: str) -> HostingJob | None:
    """Latest unfinished row for ``job_id``; finished rows are history."""
    return db.execute(
        select(HostingJob)
        .where(HostingJob.job_id == job_id, HostingJob.status.in_(JOB_OPEN_STATUSES))
        .order_by(HostingJob.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def update_job_log(
    job_id: str,
    status: str,
    *,
    hosting_service_id: int | None = None,
    operation: str | None = None,
    result: dict | None = None,
    progress: int | None = None,
    attempts: int | None = None,
    db: Session | None = None,
) -> None:
    """Update the open HostingJob row for ``job_id``, creating it if the
    worker picked the job up before the API committed its row.

    Failures are logged and swallowed: job bookkeeping must never fail the
    job itself.
    """
    owns_session = db is None
    db = db or get_sync_db()
    try:
        job = open_job(db, job_id)
        if job is None:
            if hosting_service_id is None or operation is None:
                return
            job = HostingJob(
                job_id=job_id,
                hosting_service_id=hosting_service_id,
                operation=operation,
            )
            db.add(job)

        job.status = status
        if status == "running" and job.started_at is None:
            job.started_at = datetime.now(UTC)
        if status in JOB_FINISHED_STATUSES:
            job.completed_at = datetime.now(UTC)
        if result is not None:
            job.result = json.dumps(result)
        if progress is not None:
            job.progress = max(job.progress or 0, progress)
        if attempts is not None:
            job.attempts = attempts
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Failed to update job %s to status %s: %s", job_id, status, e)
    finally:
        if owns_session:
            db.close()


class TaskLogger:
    """Logger for a hosting job that prefixes lines with the hosting id.

    The job id itself is added by the log formatter while a task runs.

    Usage:
        tlog = TaskLogger("provision-static-7", hosting_id=7)
        tlog.info("Starting provisioning")
    """

    def __init__(self, job_id: str, *, hosting_id: int | None = None):
        self.job_id = job_id
        self._logger = logging.getLogger("app.workers")
        self._prefix = f"[hosting={hosting_id}]" if hosting_id is not None else f"[{job_id}]"

    def info(self, msg: str, *args) -> None:
        self._logger.info(f"{self._prefix} {msg}", *args)

    def warning(self, msg: str, *args) -> None:
        self._logger.warning(f"{self._prefix} {msg}", *args)

    def error(self, msg: str, *args) -> None:
        self._logger.error(f"{self._prefix} {msg}", *args)
