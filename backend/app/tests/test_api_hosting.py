"""Integration tests for the hosting and job API endpoints.

The job queue sends to a recorder instead of a broker and cloud calls go to
the in-memory providers, so these exercise the full request path without
Redis, Celery or AWS.
"""

from datetime import UTC, datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.encryption import encrypt_value
from app.hosting import lifecycle
from app.hosting.record import HostingStatus, LogLevel
from app.models.domain import Domain
from app.models.hosting_service import HostingService
from app.services.hosting_store import apply_record, to_record
from app.services.providers import Instance

NOW = datetime(2026, 3, 1, tzinfo=UTC)


async def _update(db: AsyncSession, hosting_id: int, change) -> None:
    """Apply a lifecycle change directly, the way a worker would."""
    row = await db.get(HostingService, hosting_id)
    apply_record(row, change(to_record(row)))
    await db.commit()


def _activate(record):
    return lifecycle.transition(record, HostingStatus.ACTIVE, NOW)


async def _create_static(client: AsyncClient, domain: str = "example.com", **extra) -> dict:
    resp = await client.post("/api/v1/hosting/static", json={"domain_name": domain, **extra})
    assert resp.status_code == 202, resp.text
    return resp.json()


async def _create_dynamic(client: AsyncClient, domain: str = "app.example.com", **extra) -> dict:
    resp = await client.post("/api/v1/hosting/dynamic", json={"domain_name": domain, **extra})
    assert resp.status_code == 202, resp.text
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════
# Creation
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateHosting:
    @pytest.mark.asyncio
    async def test_create_static(self, auth_client: AsyncClient, sender):
        data = await _create_static(auth_client, "Example.com", enable_ssl=True)

        hosting = data["hosting"]
        assert hosting["status"] == "provisioning"
        assert hosting["domain_name"] == "example.com"
        assert hosting["type"] == "static"
        assert hosting["plan"]["name"] == "Basic Static"
        assert [s["name"] for s in hosting["steps"]] == [
            "create_s3_bucket",
            "configure_static_website",
            "set_bucket_policy",
            "configure_cors",
            "request_ssl_certificate",
            "validate_ssl_certificate",
            "create_cloudfront_distribution",
        ]
        assert all(s["status"] == "pending" for s in hosting["steps"])
        assert data["job_id"] == f"provision-static-{hosting['id']}"

        assert len(sender.sent) == 1
        assert sender.sent[0]["queue"] == "static-hosting"
        assert sender.sent[0]["task_id"] == data["job_id"]

    @pytest.mark.asyncio
    async def test_job_is_recorded(self, auth_client: AsyncClient):
        data = await _create_static(auth_client)

        resp = await auth_client.get(f"/api/v1/jobs/{data['job_id']}")
        assert resp.status_code == 200
        job = resp.json()
        assert job["status"] == "pending"
        assert job["operation"] == "provision"
        assert job["hosting_service_id"] == data["hosting"]["id"]

    @pytest.mark.asyncio
    async def test_domain_with_zone_gets_dns_step(
        self, auth_client: AsyncClient, db: AsyncSession, test_user
    ):
        domain = Domain(owner_id=test_user.id, domain_name="zoned.io", hosted_zone_id="Z42")
        db.add(domain)
        await db.commit()

        resp = await auth_client.post(
            "/api/v1/hosting/static", json={"domain_id": domain.id, "enable_ssl": False}
        )
        assert resp.status_code == 202
        names = [s["name"] for s in resp.json()["hosting"]["steps"]]
        assert names[-1] == "update_dns_records"
        assert "request_ssl_certificate" not in names

    @pytest.mark.asyncio
    async def test_foreign_domain_id_is_not_found(
        self, auth_client: AsyncClient, db: AsyncSession, other_user
    ):
        domain = Domain(owner_id=other_user.id, domain_name="theirs.com")
        db.add(domain)
        await db.commit()

        resp = await auth_client.post("/api/v1/hosting/static", json={"domain_id": domain.id})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_second_live_hosting_for_domain_conflicts(self, auth_client: AsyncClient):
        await _create_static(auth_client)
        resp = await auth_client.post("/api/v1/hosting/dynamic", json={"domain_name": "example.com"})
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_domain_rejected(self, auth_client: AsyncClient):
        resp = await auth_client.post("/api/v1/hosting/static", json={"domain_name": "not a domain"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_domain_required(self, auth_client: AsyncClient):
        resp = await auth_client.post("/api/v1/hosting/static", json={"enable_ssl": True})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_create_dynamic_without_database(self, auth_client: AsyncClient, sender):
        data = await _create_dynamic(auth_client, database={"enabled": False})

        names = [s["name"] for s in data["hosting"]["steps"]]
        assert "create_rds_database" not in names
        assert "wait_for_database_available" not in names
        assert data["hosting"]["dynamic"]["database"]["enabled"] is False
        assert sender.sent[0]["queue"] == "dynamic-hosting"

    @pytest.mark.asyncio
    async def test_create_dynamic_with_database(self, auth_client: AsyncClient):
        data = await _create_dynamic(
            auth_client, app_port=8080, database={"enabled": True, "engine": "postgres"}
        )

        hosting = data["hosting"]
        names = [s["name"] for s in hosting["steps"]]
        assert names[-2:] == ["create_rds_database", "wait_for_database_available"]
        assert hosting["dynamic"]["app_port"] == 8080

        resp = await auth_client.get(f"/api/v1/hosting/{hosting['id']}/database")
        assert resp.status_code == 200
        database = resp.json()
        assert database["enabled"] is True
        assert database["engine"] == "postgres"
        assert database["instance_identifier"] == "app-example-com-db"

    @pytest.mark.asyncio
    async def test_unsupported_runtime(self, auth_client: AsyncClient):
        resp = await auth_client.post(
            "/api/v1/hosting/dynamic", json={"domain_name": "x.io", "runtime": "php"}
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        resp = await client.post("/api/v1/hosting/static", json={"domain_name": "example.com"})
        assert resp.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════════════════

class TestReadHosting:
    @pytest.mark.asyncio
    async def test_list_with_filters(self, auth_client: AsyncClient):
        await _create_static(auth_client, "one.com")
        await _create_dynamic(auth_client, "two.com")

        resp = await auth_client.get("/api/v1/hosting")
        assert resp.status_code == 200
        assert len(resp.json()) == 2

        resp = await auth_client.get("/api/v1/hosting", params={"type": "dynamic"})
        assert [h["domain_name"] for h in resp.json()] == ["two.com"]

        resp = await auth_client.get("/api/v1/hosting", params={"status": "active"})
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_get_missing(self, auth_client: AsyncClient):
        resp = await auth_client.get("/api/v1/hosting/9999")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_progress(self, auth_client: AsyncClient, db: AsyncSession):
        hosting_id = (await _create_static(auth_client, enable_ssl=False))["hosting"]["id"]
        await _update(
            db,
            hosting_id,
            lambda r: lifecycle.append_log(
                lifecycle.start_step(lifecycle.set_progress(r, 5), "create_s3_bucket", NOW),
                LogLevel.INFO,
                "Creating S3 bucket...",
                NOW,
            ),
        )

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/progress")
        assert resp.status_code == 200
        progress = resp.json()
        assert progress["status"] == "provisioning"
        assert progress["progress"] == 5
        assert progress["steps"][0]["status"] == "in-progress"
        assert progress["logs"][-1]["message"] == "Creating S3 bucket..."


# ═══════════════════════════════════════════════════════════════════════════
# Lifecycle requests
# ═══════════════════════════════════════════════════════════════════════════

class TestLifecycleRequests:
    @pytest.mark.asyncio
    async def test_terminate_while_provisioning_conflicts(self, auth_client: AsyncClient):
        hosting_id = (await _create_static(auth_client))["hosting"]["id"]
        resp = await auth_client.delete(f"/api/v1/hosting/{hosting_id}")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_terminate_active(self, auth_client: AsyncClient, db: AsyncSession, queue, sender):
        data = await _create_static(auth_client)
        hosting_id = data["hosting"]["id"]
        queue.release(data["job_id"])
        await _update(db, hosting_id, _activate)

        resp = await auth_client.delete(f"/api/v1/hosting/{hosting_id}")
        assert resp.status_code == 202
        body = resp.json()
        assert body["job_id"] == f"terminate-static-{hosting_id}"
        assert body["hosting"]["status"] == "terminating"
        assert sender.sent[-1]["name"] == "hosting.terminate_static"

        # A second request is rejected while the first is in flight
        resp = await auth_client.delete(f"/api/v1/hosting/{hosting_id}")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_terminate_while_provision_job_pending(
        self, auth_client: AsyncClient, db: AsyncSession
    ):
        # Record already failed but the provision job still holds its lock (retry pending)
        hosting_id = (await _create_static(auth_client))["hosting"]["id"]
        await _update(db, hosting_id, lambda r: lifecycle.transition(r, HostingStatus.FAILED, NOW))

        resp = await auth_client.delete(f"/api/v1/hosting/{hosting_id}")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_suspend_and_unsuspend(self, auth_client: AsyncClient, db: AsyncSession):
        hosting_id = (await _create_static(auth_client))["hosting"]["id"]
        await _update(db, hosting_id, _activate)

        resp = await auth_client.post(
            f"/api/v1/hosting/{hosting_id}/suspend",
            json={"reason": "Payment overdue", "auto_unsuspend_at": "2026-04-01T00:00:00Z"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "suspended"
        assert resp.json()["suspension_reason"] == "Payment overdue"

        resp = await auth_client.post(f"/api/v1/hosting/{hosting_id}/unsuspend")
        assert resp.status_code == 200
        assert resp.json()["status"] == "active"
        assert resp.json()["suspension_reason"] is None

    @pytest.mark.asyncio
    async def test_suspend_while_provisioning_conflicts(self, auth_client: AsyncClient):
        hosting_id = (await _create_static(auth_client))["hosting"]["id"]
        resp = await auth_client.post(f"/api/v1/hosting/{hosting_id}/suspend", json={"reason": "abuse"})
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_credentials_are_revealed_once(self, auth_client: AsyncClient, db: AsyncSession):
        hosting_id = (await _create_dynamic(auth_client, database={"enabled": True}))["hosting"]["id"]
        await _update(
            db,
            hosting_id,
            lambda r: lifecycle.update_dynamic(r, key_name="app-example-com-key").model_copy(
                update={
                    "key_material_encrypted": encrypt_value("PRIVATE KEY"),
                    "db_password_encrypted": encrypt_value("s3cret"),
                }
            ),
        )

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}")
        assert resp.json()["credentials_available"] is True

        resp = await auth_client.post(f"/api/v1/hosting/{hosting_id}/credentials")
        assert resp.status_code == 200
        creds = resp.json()
        assert creds["private_key"] == "PRIVATE KEY"
        assert creds["key_name"] == "app-example-com-key"
        assert creds["database_username"] == "admin"
        assert creds["database_password"] == "s3cret"

        resp = await auth_client.post(f"/api/v1/hosting/{hosting_id}/credentials")
        assert resp.status_code == 410


# ═══════════════════════════════════════════════════════════════════════════
# Static extras
# ═══════════════════════════════════════════════════════════════════════════

BUCKET = "saasify-example-com-1700000000000"


class TestStaticFiles:
    @pytest.fixture()
    def bucket(self, providers):
        providers.storage.buckets[BUCKET] = {}
        providers.storage.put(BUCKET, "index.html", 1024 * 1024)
        providers.storage.put(BUCKET, "assets/app.js", 512 * 1024)
        return BUCKET

    async def _active_site(self, client: AsyncClient, db: AsyncSession) -> int:
        hosting_id = (await _create_static(client))["hosting"]["id"]
        await _update(
            db,
            hosting_id,
            lambda r: _activate(lifecycle.update_static(r, bucket_name=BUCKET, cloudfront_id="E123")),
        )
        return hosting_id

    @pytest.mark.asyncio
    async def test_list_files_updates_usage(self, auth_client: AsyncClient, db: AsyncSession, bucket):
        hosting_id = await self._active_site(auth_client, db)

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/files")
        assert resp.status_code == 200
        listing = resp.json()
        assert listing["total_files"] == 2
        assert listing["total_size"] == 1536 * 1024
        assert listing["storage_used"] == 1.5

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}")
        assert resp.json()["usage"]["storage_used"] == 1.5

    @pytest.mark.asyncio
    async def test_list_files_with_prefix(self, auth_client: AsyncClient, db: AsyncSession, bucket):
        hosting_id = await self._active_site(auth_client, db)

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/files", params={"prefix": "assets/"})
        assert [f["key"] for f in resp.json()["files"]] == ["assets/app.js"]

    @pytest.mark.asyncio
    async def test_upload_url(self, auth_client: AsyncClient, db: AsyncSession, bucket):
        hosting_id = await self._active_site(auth_client, db)

        resp = await auth_client.post(
            f"/api/v1/hosting/{hosting_id}/upload-url",
            json={"key": "/about.html", "content_type": "text/html", "expires_in": 600},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["key"] == "about.html"
        assert body["upload_url"].startswith(f"https://{BUCKET}.s3.amazonaws.com/about.html")

    @pytest.mark.asyncio
    async def test_upload_url_blocked_when_suspended(
        self, auth_client: AsyncClient, db: AsyncSession, bucket
    ):
        hosting_id = await self._active_site(auth_client, db)
        await _update(db, hosting_id, lambda r: lifecycle.suspend(r, "overdue", NOW))

        resp = await auth_client.post(f"/api/v1/hosting/{hosting_id}/upload-url", json={"key": "a.html"})
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_delete_files(self, auth_client: AsyncClient, db: AsyncSession, providers, bucket):
        hosting_id = await self._active_site(auth_client, db)

        resp = await auth_client.request(
            "DELETE",
            f"/api/v1/hosting/{hosting_id}/files",
            json={"keys": ["index.html", "missing.html"]},
        )
        assert resp.status_code == 200
        assert resp.json() == {"deleted": 1}
        assert list(providers.storage.buckets[BUCKET]) == ["assets/app.js"]

    @pytest.mark.asyncio
    async def test_invalidate_cache(self, auth_client: AsyncClient, db: AsyncSession, providers, bucket):
        hosting_id = await self._active_site(auth_client, db)

        resp = await auth_client.post(f"/api/v1/hosting/{hosting_id}/invalidate", json={})
        assert resp.status_code == 200
        assert resp.json()["paths"] == ["/*"]
        assert providers.cdn.invalidations == [["/*"]]

    @pytest.mark.asyncio
    async def test_files_before_bucket_exists(self, auth_client: AsyncClient):
        hosting_id = (await _create_static(auth_client))["hosting"]["id"]
        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/files")
        assert resp.status_code == 409


# ═══════════════════════════════════════════════════════════════════════════
# Dynamic extras
# ═══════════════════════════════════════════════════════════════════════════

class TestDynamicInfo:
    async def _running_app(self, client: AsyncClient, db: AsyncSession) -> int:
        hosting_id = (await _create_dynamic(client))["hosting"]["id"]
        await _update(
            db,
            hosting_id,
            lambda r: _activate(
                lifecycle.update_elastic_ip(
                    lifecycle.update_dynamic(
                        r, instance_id="i-0abc", instance_state="running", key_name="app-example-com-key"
                    ),
                    allocation_id="eipalloc-1",
                    public_ip="52.1.2.3",
                )
            ),
        )
        return hosting_id

    @pytest.mark.asyncio
    async def test_ssh_info(self, auth_client: AsyncClient, db: AsyncSession):
        hosting_id = await self._running_app(auth_client, db)

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/ssh")
        assert resp.status_code == 200
        assert resp.json()["command"] == "ssh -i ~/.ssh/app-example-com-key.pem ubuntu@52.1.2.3"

    @pytest.mark.asyncio
    async def test_ssh_info_for_static_conflicts(self, auth_client: AsyncClient):
        hosting_id = (await _create_static(auth_client))["hosting"]["id"]
        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/ssh")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_live_instance_status(self, auth_client: AsyncClient, db: AsyncSession, providers):
        hosting_id = await self._running_app(auth_client, db)
        providers.compute.instances["i-0abc"] = Instance(
            id="i-0abc", state="stopped", public_ip=None, private_ip="10.0.0.7"
        )

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/instance")
        assert resp.status_code == 200
        body = resp.json()
        assert body["live"] is True
        assert body["state"] == "stopped"
        assert body["public_ip"] == "52.1.2.3"

    @pytest.mark.asyncio
    async def test_cached_instance_status_when_provider_fails(
        self, auth_client: AsyncClient, db: AsyncSession
    ):
        # The fake compute has no such instance, so describe raises
        hosting_id = await self._running_app(auth_client, db)

        resp = await auth_client.get(f"/api/v1/hosting/{hosting_id}/instance")
        assert resp.status_code == 200
        assert resp.json()["live"] is False
        assert resp.json()["state"] == "running"
