"""Service-layer tests for hosting requests that are awkward to reach over HTTP."""

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.hosting.errors import HostingConflictError
from app.models.hosting_job import HostingJob
from app.models.hosting_service import HostingService
from app.schemas.hosting import StaticHostingCreate
from app.services import hosting_service
from app.tests.fakes import FakeRedis, RecordingSender
from app.workers.queue import JobQueue


class TestCreateStaticHosting:
    @pytest.mark.asyncio
    async def test_dispatch_failure_marks_record_failed(self, db: AsyncSession, test_user):
        queue = JobQueue(FakeRedis(), send=RecordingSender(exc=ConnectionError("broker down")))

        with pytest.raises(ConnectionError):
            await hosting_service.create_static_hosting(
                db, test_user, StaticHostingCreate(domain_name="example.com"), queue
            )

        row = (await db.execute(select(HostingService))).scalar_one()
        assert row.status == "failed"
        assert row.logs[-1]["message"] == "Could not queue provisioning: broker down"
        assert not queue.is_pending(f"provision-static-{row.id}")

    @pytest.mark.asyncio
    async def test_domain_owned_by_someone_else(self, db: AsyncSession, test_user, other_user, queue):
        await hosting_service.create_static_hosting(
            db, other_user, StaticHostingCreate(domain_name="taken.com"), queue
        )
        with pytest.raises(HostingConflictError):
            await hosting_service.create_static_hosting(
                db, test_user, StaticHostingCreate(domain_name="taken.com"), queue
            )


class TestJobLog:
    @pytest.mark.asyncio
    async def test_open_job_row_is_reused(self, db: AsyncSession, test_user, queue):
        row, job_id = await hosting_service.create_static_hosting(
            db, test_user, StaticHostingCreate(domain_name="example.com"), queue
        )

        again = await hosting_service.create_job_log(db, job_id, row.id, "provision")

        jobs = (await db.execute(select(HostingJob))).scalars().all()
        assert len(jobs) == 1
        assert again.id == jobs[0].id

    @pytest.mark.asyncio
    async def test_finished_job_starts_new_row(self, db: AsyncSession, test_user, queue):
        row, job_id = await hosting_service.create_static_hosting(
            db, test_user, StaticHostingCreate(domain_name="example.com"), queue
        )
        job = (await db.execute(select(HostingJob))).scalar_one()
        job.status = "failed"
        await db.commit()

        await hosting_service.create_job_log(db, job_id, row.id, "provision")

        latest = await hosting_service.get_job(db, test_user, job_id)
        assert latest.status == "pending"
        assert latest.id != job.id
