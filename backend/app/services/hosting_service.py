import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.encryption import decrypt_value
from app.hosting import lifecycle, naming, steps
from app.hosting.errors import (
    CredentialsGoneError,
    HostingConflictError,
    HostingNotFoundError,
    InvalidStatusTransition,
)
from app.hosting.record import (
    DatabaseConfig,
    DynamicConfig,
    HostingRecord,
    HostingStatus,
    HostingType,
    LogLevel,
    Plan,
    StaticConfig,
)
from app.models.domain import Domain
from app.models.hosting_job import HostingJob
from app.models.hosting_service import HostingService
from app.models.user import User
from app.schemas.hosting import DynamicHostingCreate, PlanIn, StaticHostingCreate
from app.services.hosting_store import apply_record, new_hosting_row, to_record
from app.services.providers import ResourceProviders, StoredObject
from app.workers.queue import PROVISION, TERMINATE, JobQueue, job_id_for
from app.workers.utils import JOB_OPEN_STATUSES

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


# -- Domains -----------------------------------------------------------------


async def get_or_create_domain(
    db: AsyncSession,
    user: User,
    domain_id: int | None = None,
    domain_name: str | None = None,
) -> Domain:
    if domain_id is not None:
        result = await db.execute(
            select(Domain).where(Domain.id == domain_id, Domain.owner_id == user.id)
        )
        domain = result.scalar_one_or_none()
        if domain is None:
            raise HostingNotFoundError(f"Domain {domain_id} not found")
        return domain

    result = await db.execute(select(Domain).where(Domain.domain_name == domain_name))
    domain = result.scalar_one_or_none()
    if domain is not None:
        if domain.owner_id != user.id:
            raise HostingConflictError(f"Domain {domain_name} belongs to another account")
        return domain

    domain = Domain(owner_id=user.id, domain_name=domain_name, registrar="other")
    db.add(domain)
    await db.flush()
    return domain


async def ensure_domain_available(db: AsyncSession, domain: Domain) -> None:
    """Only a terminated service (or none) frees a domain for new hosting."""
    result = await db.execute(
        select(HostingService.id).where(
            HostingService.domain_id == domain.id,
            HostingService.status != HostingStatus.TERMINATED.value,
        )
    )
    if result.first() is not None:
        raise HostingConflictError(f"Domain {domain.domain_name} already has active hosting")


# -- Jobs --------------------------------------------------------------------


async def create_job_log(
    db: AsyncSession,
    job_id: str,
    hosting_service_id: int,
    operation: str,
) -> HostingJob:
    # The worker may already have created the row if it picked the job up first
    result = await db.execute(
        select(HostingJob)
        .where(HostingJob.job_id == job_id, HostingJob.status.in_(JOB_OPEN_STATUSES))
        .order_by(HostingJob.id.desc())
        .limit(1)
    )
    job = result.scalar_one_or_none()
    if job is None:
        job = HostingJob(
            job_id=job_id,
            hosting_service_id=hosting_service_id,
            operation=operation,
            status="pending",
        )
        db.add(job)
        await db.commit()
        await db.refresh(job)
    return job


async def get_job(db: AsyncSession, user: User, job_id: str) -> HostingJob:
    result = await db.execute(
        select(HostingJob)
        .join(HostingService, HostingJob.hosting_service_id == HostingService.id)
        .where(HostingJob.job_id == job_id, HostingService.user_id == user.id)
        .order_by(HostingJob.id.desc())
        .limit(1)
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise HostingNotFoundError(f"Job {job_id} not found")
    return job


async def _enqueue_provision(
    db: AsyncSession,
    row: HostingService,
    queue: JobQueue,
    options: dict,
) -> str:
    try:
        job_id = queue.enqueue_provision(row.id, HostingType(row.type), options)
    except Exception as e:
        record = to_record(row)
        record = lifecycle.transition(record, HostingStatus.FAILED, _now())
        record = lifecycle.append_log(record, LogLevel.ERROR, f"Could not queue provisioning: {e}", _now())
        apply_record(row, record)
        await db.commit()
        raise
    await create_job_log(db, job_id, row.id, PROVISION)
    return job_id


# -- Creation ----------------------------------------------------------------


def _plan(data: PlanIn | None, default: Plan) -> Plan:
    return Plan.model_validate(data.model_dump()) if data is not None else default


async def create_static_hosting(
    db: AsyncSession,
    user: User,
    data: StaticHostingCreate,
    queue: JobQueue,
) -> tuple[HostingService, str]:
    domain = await get_or_create_domain(db, user, data.domain_id, data.domain_name)
    await ensure_domain_available(db, domain)

    names = steps.static_step_names(data.enable_ssl, bool(domain.hosted_zone_id))
    row = new_hosting_row(
        user_id=user.id,
        domain=domain,
        hosting_type=HostingType.STATIC,
        plan=_plan(data.plan, naming.DEFAULT_STATIC_PLAN),
        steps=steps.build_steps(names),
        static=StaticConfig(enable_ssl=data.enable_ssl, bucket_region=data.bucket_region),
        billing_period_days=settings.BILLING_PERIOD_DAYS,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.info("Created static hosting %s for %s", row.id, domain.domain_name)

    job_id = await _enqueue_provision(db, row, queue, {"enable_ssl": data.enable_ssl})
    return row, job_id


async def create_dynamic_hosting(
    db: AsyncSession,
    user: User,
    data: DynamicHostingCreate,
    queue: JobQueue,
) -> tuple[HostingService, str]:
    domain = await get_or_create_domain(db, user, data.domain_id, data.domain_name)
    await ensure_domain_available(db, domain)

    database = DatabaseConfig(enabled=False)
    if data.database.enabled:
        database = DatabaseConfig(
            enabled=True,
            engine=data.database.engine,
            instance_class=data.database.instance_class,
            instance_identifier=naming.database_identifier(domain.domain_name),
            name=naming.database_name(domain.domain_name),
            username="admin",
            status="pending",
        )

    names = steps.dynamic_step_names(data.database.enabled, bool(domain.hosted_zone_id))
    row = new_hosting_row(
        user_id=user.id,
        domain=domain,
        hosting_type=HostingType.DYNAMIC,
        plan=_plan(data.plan, naming.DEFAULT_DYNAMIC_PLAN),
        steps=steps.build_steps(names),
        dynamic=DynamicConfig(
            instance_type=data.instance_type,
            runtime=data.runtime,
            app_port=data.app_port,
            database=database,
        ),
        billing_period_days=settings.BILLING_PERIOD_DAYS,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.info("Created dynamic hosting %s for %s", row.id, domain.domain_name)

    job_id = await _enqueue_provision(
        db, row, queue, {"database_enabled": data.database.enabled}
    )
    return row, job_id


# -- Reads -------------------------------------------------------------------


async def get_hosting(db: AsyncSession, user: User, hosting_id: int) -> HostingService:
    result = await db.execute(
        select(HostingService).where(
            HostingService.id == hosting_id,
            HostingService.user_id == user.id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise HostingNotFoundError(f"Hosting service {hosting_id} not found")
    return row


async def list_hosting(
    db: AsyncSession,
    user: User,
    hosting_type: str | None = None,
    status: str | None = None,
) -> list[HostingService]:
    query = select(HostingService).where(HostingService.user_id == user.id)
    if hosting_type:
        query = query.where(HostingService.type == hosting_type)
    if status:
        query = query.where(HostingService.status == status)
    result = await db.execute(query.order_by(HostingService.created_at.desc()))
    return list(result.scalars().all())


# -- Lifecycle requests ------------------------------------------------------


async def _save(db: AsyncSession, row: HostingService, record: HostingRecord) -> HostingRecord:
    apply_record(row, record)
    await db.commit()
    return record


async def request_termination(
    db: AsyncSession,
    user: User,
    hosting_id: int,
    queue: JobQueue,
) -> tuple[HostingRecord, str]:
    row = await get_hosting(db, user, hosting_id)
    record = to_record(row)

    provision_job = job_id_for(PROVISION, record.type, record.id)
    if record.status == HostingStatus.PROVISIONING or queue.is_pending(provision_job):
        raise HostingConflictError("Provisioning is still in progress; wait for it to finish")
    if not lifecycle.can_terminate(record):
        raise InvalidStatusTransition(record.status.value, HostingStatus.TERMINATING.value)

    now = _now()
    record = lifecycle.transition(record, HostingStatus.TERMINATING, now)
    record = lifecycle.append_log(record, LogLevel.INFO, "Termination requested", now)
    await _save(db, row, record)

    try:
        job_id = queue.enqueue_terminate(record.id, record.type)
    except Exception as e:
        record = lifecycle.transition(record, HostingStatus.FAILED, _now())
        record = lifecycle.append_log(record, LogLevel.ERROR, f"Could not queue termination: {e}", _now())
        await _save(db, row, record)
        raise
    await create_job_log(db, job_id, record.id, TERMINATE)
    return record, job_id


async def suspend_hosting(
    db: AsyncSession,
    user: User,
    hosting_id: int,
    reason: str,
    auto_unsuspend_at: datetime | None = None,
) -> HostingRecord:
    row = await get_hosting(db, user, hosting_id)
    record = lifecycle.suspend(to_record(row), reason, _now(), auto_unsuspend_at)
    return await _save(db, row, record)


async def unsuspend_hosting(db: AsyncSession, user: User, hosting_id: int) -> HostingRecord:
    row = await get_hosting(db, user, hosting_id)
    record = lifecycle.unsuspend(to_record(row), _now())
    return await _save(db, row, record)


async def reveal_credentials(db: AsyncSession, user: User, hosting_id: int) -> dict:
    """Return the key-pair private key and database password once, then forget them."""
    row = await get_hosting(db, user, hosting_id)
    record = to_record(row)
    if not record.key_material_encrypted and not record.db_password_encrypted:
        raise CredentialsGoneError("Credentials were already retrieved or have not been issued yet")

    dynamic = record.dynamic or DynamicConfig()
    credentials = {
        "key_name": dynamic.key_name,
        "private_key": decrypt_value(record.key_material_encrypted) if record.key_material_encrypted else None,
        "database_username": dynamic.database.username if record.db_password_encrypted else None,
        "database_password": decrypt_value(record.db_password_encrypted) if record.db_password_encrypted else None,
    }
    record = record.model_copy(update={"key_material_encrypted": None, "db_password_encrypted": None})
    record = lifecycle.append_log(record, LogLevel.INFO, "One-time credentials retrieved", _now())
    await _save(db, row, record)
    logger.info("Credentials for hosting %s revealed to user %s", hosting_id, user.id)
    return credentials


# -- Static extras -----------------------------------------------------------


def _require(record: HostingRecord, hosting_type: HostingType) -> None:
    if record.type != hosting_type:
        raise HostingConflictError(f"Hosting service {record.id} is not {hosting_type.value} hosting")


def _require_bucket(record: HostingRecord) -> str:
    _require(record, HostingType.STATIC)
    if not record.static or not record.static.bucket_name:
        raise HostingConflictError("Storage bucket has not been created yet")
    if record.status not in (HostingStatus.ACTIVE, HostingStatus.SUSPENDED):
        raise HostingConflictError(f"Hosting service is {record.status.value}")
    return record.static.bucket_name


async def list_files(
    db: AsyncSession,
    user: User,
    hosting_id: int,
    providers: ResourceProviders,
    prefix: str = "",
) -> tuple[list[StoredObject], HostingRecord]:
    """List bucket objects and refresh the storage usage figure."""
    row = await get_hosting(db, user, hosting_id)
    record = to_record(row)
    bucket = _require_bucket(record)
    objects = await asyncio.to_thread(providers.storage.list_objects, bucket, prefix)

    if not prefix:
        total_mb = round(sum(obj.size for obj in objects) / (1024 * 1024), 2)
        record = lifecycle.update_usage(record, _now(), storage_used=total_mb)
        await _save(db, row, record)
    return objects, record


async def create_upload_url(
    db: AsyncSession,
    user: User,
    hosting_id: int,
    providers: ResourceProviders,
    key: str,
    content_type: str,
    expires_in: int,
) -> str:
    record = to_record(await get_hosting(db, user, hosting_id))
    bucket = _require_bucket(record)
    if record.status != HostingStatus.ACTIVE:
        raise HostingConflictError("Uploads are disabled while hosting is suspended")
    return await asyncio.to_thread(
        providers.storage.presigned_upload_url, bucket, key.lstrip("/"), content_type, expires_in
    )


async def delete_files(
    db: AsyncSession,
    user: User,
    hosting_id: int,
    providers: ResourceProviders,
    keys: list[str],
) -> int:
    record = to_record(await get_hosting(db, user, hosting_id))
    bucket = _require_bucket(record)
    return await asyncio.to_thread(providers.storage.delete_objects, bucket, keys)


async def invalidate_cache(
    db: AsyncSession,
    user: User,
    hosting_id: int,
    providers: ResourceProviders,
    paths: list[str],
) -> str:
    record = to_record(await get_hosting(db, user, hosting_id))
    _require(record, HostingType.STATIC)
    if not record.static or not record.static.cloudfront_id:
        raise HostingConflictError("CloudFront distribution has not been created yet")
    return await asyncio.to_thread(providers.cdn.invalidate, record.static.cloudfront_id, paths)


# -- Dynamic extras ----------------------------------------------------------


async def get_dynamic_record(db: AsyncSession, user: User, hosting_id: int) -> HostingRecord:
    record = to_record(await get_hosting(db, user, hosting_id))
    _require(record, HostingType.DYNAMIC)
    return record


def ssh_info(record: HostingRecord) -> dict:
    dynamic = record.dynamic or DynamicConfig()
    host = dynamic.elastic_ip.public_ip or dynamic.public_ip
    command = None
    if host and dynamic.key_name:
        command = f"ssh -i ~/.ssh/{dynamic.key_name}.pem ubuntu@{host}"
        if dynamic.ssh_port != 22:
            command += f" -p {dynamic.ssh_port}"
    return {
        "host": host,
        "port": dynamic.ssh_port,
        "username": "ubuntu",
        "key_name": dynamic.key_name,
        "command": command,
    }


async def instance_status(record: HostingRecord, providers: ResourceProviders) -> dict:
    """Live instance state from the provider, falling back to the cached values."""
    dynamic = record.dynamic or DynamicConfig()
    cached = {
        "instance_id": dynamic.instance_id,
        "state": dynamic.instance_state,
        "public_ip": dynamic.elastic_ip.public_ip or dynamic.public_ip,
        "private_ip": dynamic.private_ip,
        "live": False,
    }
    if not dynamic.instance_id:
        return cached
    try:
        instance = await asyncio.to_thread(providers.compute.describe_instance, dynamic.instance_id)
    except Exception as e:
        logger.warning("Could not describe instance %s: %s", dynamic.instance_id, e)
        return cached
    return {
        "instance_id": instance.id,
        "state": instance.state,
        "public_ip": dynamic.elastic_ip.public_ip or instance.public_ip,
        "private_ip": instance.private_ip,
        "live": True,
    }
