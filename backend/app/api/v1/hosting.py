from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user, get_job_queue, get_providers
from app.models.user import User
from app.schemas.hosting import (
    CredentialsRead,
    DatabaseInfo,
    DeleteFilesRequest,
    DeleteFilesResult,
    DynamicHostingCreate,
    FileList,
    FileRead,
    HostingJobAccepted,
    HostingProgress,
    HostingRead,
    InstanceStatus,
    InvalidateRequest,
    InvalidationRead,
    SshInfo,
    StaticHostingCreate,
    SuspendRequest,
    UploadUrlRead,
    UploadUrlRequest,
)
from app.services import hosting_service
from app.services.hosting_store import to_record
from app.services.providers import ResourceProviders
from app.workers.queue import JobQueue

router = APIRouter(prefix="/hosting", tags=["hosting"])

PROGRESS_LOG_TAIL = 50


@router.post("/static", response_model=HostingJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_static_hosting_endpoint(
    data: StaticHostingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    row, job_id = await hosting_service.create_static_hosting(db, current_user, data, queue)
    return HostingJobAccepted(
        hosting=HostingRead.from_record(to_record(row)),
        job_id=job_id,
        message="Static hosting provisioning started",
    )


@router.post("/dynamic", response_model=HostingJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_dynamic_hosting_endpoint(
    data: DynamicHostingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    row, job_id = await hosting_service.create_dynamic_hosting(db, current_user, data, queue)
    return HostingJobAccepted(
        hosting=HostingRead.from_record(to_record(row)),
        job_id=job_id,
        message="Dynamic hosting provisioning started",
    )


@router.get("", response_model=list[HostingRead])
async def list_hosting_endpoint(
    type: str | None = Query(default=None, pattern="^(static|dynamic)$"),
    status_filter: str | None = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = await hosting_service.list_hosting(db, current_user, type, status_filter)
    return [HostingRead.from_record(to_record(row)) for row in rows]


@router.get("/{hosting_id}", response_model=HostingRead)
async def get_hosting_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    row = await hosting_service.get_hosting(db, current_user, hosting_id)
    return HostingRead.from_record(to_record(row))


@router.get("/{hosting_id}/progress", response_model=HostingProgress)
async def get_progress_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = to_record(await hosting_service.get_hosting(db, current_user, hosting_id))
    return HostingProgress(
        id=record.id,
        status=record.status.value,
        progress=record.progress,
        steps=list(record.steps),
        logs=list(record.logs[-PROGRESS_LOG_TAIL:]),
        provisioning_completed_at=record.completed_at,
    )


@router.post("/{hosting_id}/suspend", response_model=HostingRead)
async def suspend_hosting_endpoint(
    hosting_id: int,
    data: SuspendRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await hosting_service.suspend_hosting(
        db, current_user, hosting_id, data.reason, data.auto_unsuspend_at
    )
    return HostingRead.from_record(record)


@router.post("/{hosting_id}/unsuspend", response_model=HostingRead)
async def unsuspend_hosting_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await hosting_service.unsuspend_hosting(db, current_user, hosting_id)
    return HostingRead.from_record(record)


@router.delete("/{hosting_id}", response_model=HostingJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def terminate_hosting_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: JobQueue = Depends(get_job_queue),
):
    record, job_id = await hosting_service.request_termination(db, current_user, hosting_id, queue)
    return HostingJobAccepted(
        hosting=HostingRead.from_record(record),
        job_id=job_id,
        message="Hosting termination started",
    )


@router.post("/{hosting_id}/credentials", response_model=CredentialsRead)
async def reveal_credentials_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    credentials = await hosting_service.reveal_credentials(db, current_user, hosting_id)
    return CredentialsRead(
        **credentials,
        message="Store these credentials now; they cannot be retrieved again",
    )


# -- Static hosting ------------------------------------------------------------


@router.get("/{hosting_id}/files", response_model=FileList)
async def list_files_endpoint(
    hosting_id: int,
    prefix: str = "",
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    providers: ResourceProviders = Depends(get_providers),
):
    objects, record = await hosting_service.list_files(db, current_user, hosting_id, providers, prefix)
    return FileList(
        files=[FileRead(key=o.key, size=o.size, last_modified=o.last_modified) for o in objects],
        total_files=len(objects),
        total_size=sum(o.size for o in objects),
        storage_used=record.usage.storage_used,
        storage_usage_percent=record.storage_usage_percent,
    )


@router.post("/{hosting_id}/upload-url", response_model=UploadUrlRead)
async def create_upload_url_endpoint(
    hosting_id: int,
    data: UploadUrlRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    providers: ResourceProviders = Depends(get_providers),
):
    url = await hosting_service.create_upload_url(
        db, current_user, hosting_id, providers, data.key, data.content_type, data.expires_in
    )
    return UploadUrlRead(upload_url=url, key=data.key.lstrip("/"), expires_in=data.expires_in)


@router.delete("/{hosting_id}/files", response_model=DeleteFilesResult)
async def delete_files_endpoint(
    hosting_id: int,
    data: DeleteFilesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    providers: ResourceProviders = Depends(get_providers),
):
    deleted = await hosting_service.delete_files(db, current_user, hosting_id, providers, data.keys)
    return DeleteFilesResult(deleted=deleted)


@router.post("/{hosting_id}/invalidate", response_model=InvalidationRead)
async def invalidate_cache_endpoint(
    hosting_id: int,
    data: InvalidateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    providers: ResourceProviders = Depends(get_providers),
):
    invalidation_id = await hosting_service.invalidate_cache(
        db, current_user, hosting_id, providers, data.paths
    )
    return InvalidationRead(invalidation_id=invalidation_id, paths=data.paths)


# -- Dynamic hosting -----------------------------------------------------------


@router.get("/{hosting_id}/ssh", response_model=SshInfo)
async def get_ssh_info_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await hosting_service.get_dynamic_record(db, current_user, hosting_id)
    return SshInfo(**hosting_service.ssh_info(record))


@router.get("/{hosting_id}/database", response_model=DatabaseInfo)
async def get_database_info_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await hosting_service.get_dynamic_record(db, current_user, hosting_id)
    return DatabaseInfo(**record.dynamic.database.model_dump())


@router.get("/{hosting_id}/instance", response_model=InstanceStatus)
async def get_instance_status_endpoint(
    hosting_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    providers: ResourceProviders = Depends(get_providers),
):
    record = await hosting_service.get_dynamic_record(db, current_user, hosting_id)
    return InstanceStatus(**await hosting_service.instance_status(record, providers))
