import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select

from app.core.config import settings
from app.core.database_sync import get_sync_db
from app.hosting import lifecycle
from app.hosting.errors import HostingError, StepFailedError
from app.hosting.orchestrator import PROVISIONERS
from app.hosting.record import HostingStatus, HostingType
from app.hosting.teardown import TERMINATORS
from app.models.hosting_job import HostingJob
from app.models.hosting_service import HostingService
from app.services.hosting_store import HostingStore
from app.services.providers import default_providers
from app.workers.celery_app import celery_app
from app.workers.queue import PROVISION, RETRY_POLICIES, TERMINATE, JobQueue
from app.workers.utils import JOB_FINISHED_STATUSES, TaskLogger, update_job_log

logger = logging.getLogger(__name__)

STATIC_POLICY = RETRY_POLICIES[HostingType.STATIC]
DYNAMIC_POLICY = RETRY_POLICIES[HostingType.DYNAMIC]


def _job_queue() -> JobQueue:
    return JobQueue()


def _run_provision(task, hosting_type: HostingType, hosting_id: int) -> dict:
    job_id = task.request.id
    attempt = task.request.retries + 1
    tlog = TaskLogger(job_id, hosting_id=hosting_id)
    update_job_log(
        job_id,
        "running",
        hosting_service_id=hosting_id,
        operation=PROVISION,
        attempts=attempt,
    )
    tlog.info("Provisioning %s hosting (attempt %d)", hosting_type.value, attempt)

    def on_progress(progress: int, step: str | None) -> None:
        task.update_state(state="PROGRESS", meta={"progress": progress, "step": step})
        update_job_log(job_id, "running", progress=progress)

    db = get_sync_db()
    try:
        provisioner = PROVISIONERS[hosting_type](
            HostingStore(db),
            default_providers(),
            on_progress=on_progress,
            log=tlog,
        )
        try:
            record = provisioner.run(hosting_id)
        except StepFailedError as e:
            result = {"error": str(e), "step": e.step, "attempt": attempt}
            if task.request.retries >= task.max_retries:
                tlog.error("Provisioning failed after %d attempts: %s", attempt, e)
                update_job_log(job_id, "failed", result=result)
                _job_queue().release(job_id)
            else:
                tlog.warning("Attempt %d failed, job will be retried: %s", attempt, e)
                update_job_log(job_id, "retrying", result=result)
            raise
        except Exception as e:
            # Not a step failure (record missing, bad state): no retry
            tlog.error("Provisioning aborted: %s", e)
            update_job_log(job_id, "failed", result={"error": str(e)})
            _job_queue().release(job_id)
            raise

        result = {"status": record.status.value, "hosting_id": hosting_id}
        tlog.info("Provisioning finished with status %s", record.status.value)
        update_job_log(job_id, "success", result=result, progress=100)
        _job_queue().release(job_id)
        return result
    finally:
        db.close()


def _run_termination(task, hosting_type: HostingType, hosting_id: int) -> dict:
    job_id = task.request.id
    tlog = TaskLogger(job_id, hosting_id=hosting_id)
    update_job_log(
        job_id,
        "running",
        hosting_service_id=hosting_id,
        operation=TERMINATE,
        attempts=task.request.retries + 1,
    )
    tlog.info("Terminating %s hosting", hosting_type.value)

    db = get_sync_db()
    try:
        terminator = TERMINATORS[hosting_type](HostingStore(db), default_providers(), log=tlog)
        try:
            record = terminator.run(hosting_id)
        except Exception as e:
            tlog.error("Termination failed: %s", e)
            update_job_log(job_id, "failed", result={"error": str(e)})
            raise
        finally:
            _job_queue().release(job_id)

        result = {"status": record.status.value, "hosting_id": hosting_id}
        update_job_log(job_id, "success", result=result, progress=100)
        return result
    finally:
        db.close()


@celery_app.task(
    bind=True,
    name="hosting.provision_static",
    autoretry_for=(StepFailedError,),
    retry_backoff=STATIC_POLICY.backoff,
    retry_backoff_max=60,
    retry_jitter=False,
    max_retries=STATIC_POLICY.max_retries,
)
def provision_static_hosting(self, hosting_id: int, options: dict | None = None) -> dict:
    """Create bucket, certificate, CDN and DNS for a static hosting service."""
    return _run_provision(self, HostingType.STATIC, hosting_id)


@celery_app.task(
    bind=True,
    name="hosting.provision_dynamic",
    autoretry_for=(StepFailedError,),
    retry_backoff=DYNAMIC_POLICY.backoff,
    retry_backoff_max=120,
    retry_jitter=False,
    max_retries=DYNAMIC_POLICY.max_retries,
)
def provision_dynamic_hosting(self, hosting_id: int, options: dict | None = None) -> dict:
    """Create security group, key pair, instance, IP, database and DNS."""
    return _run_provision(self, HostingType.DYNAMIC, hosting_id)


@celery_app.task(bind=True, name="hosting.terminate_static")
def terminate_static_hosting(self, hosting_id: int, options: dict | None = None) -> dict:
    return _run_termination(self, HostingType.STATIC, hosting_id)


@celery_app.task(bind=True, name="hosting.terminate_dynamic")
def terminate_dynamic_hosting(self, hosting_id: int, options: dict | None = None) -> dict:
    return _run_termination(self, HostingType.DYNAMIC, hosting_id)


@celery_app.task(name="jobs.prune_finished")
def prune_finished_jobs() -> dict:
    """Delete finished job rows older than the retention window."""
    cutoff = datetime.now(UTC) - timedelta(hours=settings.JOB_RETENTION_HOURS)
    db = get_sync_db()
    try:
        result = db.execute(
            delete(HostingJob).where(
                HostingJob.status.in_(JOB_FINISHED_STATUSES),
                HostingJob.completed_at < cutoff,
            )
        )
        db.commit()
        logger.info("Pruned %d finished jobs", result.rowcount)
        return {"pruned": result.rowcount}
    finally:
        db.close()


@celery_app.task(name="hosting.auto_unsuspend")
def auto_unsuspend_hosting() -> dict:
    """Reactivate suspended services whose auto-unsuspend time has passed."""
    now = datetime.now(UTC)
    db = get_sync_db()
    reactivated = []
    try:
        ids = db.execute(
            select(HostingService.id).where(
                HostingService.status == HostingStatus.SUSPENDED.value,
                HostingService.auto_unsuspend_at.is_not(None),
                HostingService.auto_unsuspend_at <= now,
            )
        ).scalars().all()

        store = HostingStore(db)
        for hosting_id in ids:
            try:
                record = store.load(hosting_id)
                store.save(lifecycle.unsuspend(record, now))
                reactivated.append(hosting_id)
            except HostingError as e:
                db.rollback()
                logger.warning("Could not unsuspend hosting %s: %s", hosting_id, e)

        if reactivated:
            logger.info("Auto-unsuspended hosting services %s", reactivated)
        return {"unsuspended": reactivated}
    finally:
        db.close()
