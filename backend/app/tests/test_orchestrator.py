"""Provisioning runs against in-memory providers and a SQLite store."""

import pytest

from app.core.encryption import decrypt_value
from app.hosting import steps
from app.hosting.errors import StepFailedError
from app.hosting.orchestrator import DynamicProvisioner, StaticProvisioner
from app.hosting.record import HostingStatus, HostingType, LogLevel, StepStatus


def _static(store, providers, **kwargs):
    return StaticProvisioner(store, providers, sleep=lambda _: None, **kwargs)


def _dynamic(store, providers, **kwargs):
    return DynamicProvisioner(store, providers, sleep=lambda _: None, **kwargs)


def _statuses(record):
    return {step.name: step.status for step in record.steps}


class TestStaticProvisioning:
    def test_success_with_ssl(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.STATIC, enable_ssl=True)
        progress = []

        record = _static(store, providers, on_progress=lambda p, s: progress.append(p)).run(hosting_id)

        assert record.status == HostingStatus.ACTIVE
        assert record.progress == 100
        assert record.completed_at is not None
        assert all(s == StepStatus.COMPLETED for s in _statuses(record).values())
        assert [s.name for s in record.steps] == steps.static_step_names(True, False)
        assert progress == sorted(progress)
        assert progress[-1] == 100

        static = record.static
        assert static.bucket_name.startswith("saasify-example-com-")
        assert static.certificate_status == "ISSUED"
        assert static.cloudfront_url.endswith(".cloudfront.net")
        assert record.public_url == f"https://{static.cloudfront_url}"

        created = providers.cdn.created[0]
        assert created["certificate_arn"] == static.certificate_arn
        assert created["aliases"] == ["example.com", "www.example.com"]
        assert created["origin"].startswith(static.bucket_name)

        # Persisted, not just returned
        assert store.load(hosting_id).status == HostingStatus.ACTIVE

    def test_validation_records_logged_without_dns_zone(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.STATIC)
        record = _static(store, providers).run(hosting_id)

        messages = [log.message for log in record.logs]
        assert any(m.startswith("Add DNS validation record: _acme.example.com.") for m in messages)
        assert providers.dns.records == []

    def test_dns_zone_gets_validation_and_cname(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.STATIC, hosted_zone_id="Z123")
        record = _static(store, providers).run(hosting_id)

        assert record.step(steps.UPDATE_DNS_RECORDS).status == StepStatus.COMPLETED
        types = [(name, rtype) for _, name, rtype, _ in providers.dns.records]
        assert ("example.com", "CNAME") in types
        assert ("_acme.example.com.", "CNAME") in types

    def test_pending_certificate_is_not_attached(self, store, providers, make_hosting):
        providers.certificates.status = "PENDING_VALIDATION"
        hosting_id = make_hosting(HostingType.STATIC)

        record = _static(store, providers).run(hosting_id)

        assert record.status == HostingStatus.ACTIVE
        assert providers.cdn.created[0]["certificate_arn"] is None
        assert providers.cdn.created[0]["aliases"] == []
        assert any(log.level == LogLevel.WARNING for log in record.logs)

    def test_failure_marks_step_and_record(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.STATIC, enable_ssl=False)
        providers.storage.fail("set_public_read_policy", RuntimeError("AccessDenied"))

        with pytest.raises(StepFailedError) as exc_info:
            _static(store, providers).run(hosting_id)
        assert exc_info.value.step == steps.SET_BUCKET_POLICY

        record = store.load(hosting_id)
        statuses = _statuses(record)
        assert record.status == HostingStatus.FAILED
        assert statuses[steps.CREATE_S3_BUCKET] == StepStatus.COMPLETED
        assert statuses[steps.CONFIGURE_STATIC_WEBSITE] == StepStatus.COMPLETED
        assert statuses[steps.SET_BUCKET_POLICY] == StepStatus.FAILED
        assert statuses[steps.CONFIGURE_CORS] == StepStatus.PENDING
        assert record.step(steps.SET_BUCKET_POLICY).error == "AccessDenied"
        assert record.logs[-1].level == LogLevel.ERROR

    def test_retry_resumes_after_last_completed_step(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.STATIC, enable_ssl=False)
        providers.storage.fail("configure_cors", RuntimeError("Throttling"))
        with pytest.raises(StepFailedError):
            _static(store, providers).run(hosting_id)
        bucket = store.load(hosting_id).static.bucket_name

        providers.storage.heal("configure_cors")
        providers.storage.calls.clear()
        record = _static(store, providers).run(hosting_id)

        assert record.status == HostingStatus.ACTIVE
        assert record.static.bucket_name == bucket
        assert "create_bucket" not in providers.storage.calls
        assert "set_public_read_policy" not in providers.storage.calls
        assert providers.storage.calls == ["configure_cors"]
        assert any("Retrying provisioning" in log.message for log in record.logs)

    def test_active_record_is_left_alone(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.STATIC, enable_ssl=False)
        _static(store, providers).run(hosting_id)
        providers.storage.calls.clear()

        record = _static(store, providers).run(hosting_id)

        assert record.status == HostingStatus.ACTIVE
        assert providers.storage.calls == []


class TestDynamicProvisioning:
    def test_launch_failure_stops_the_walk(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.DYNAMIC)
        providers.compute.fail("launch_instance", RuntimeError("InsufficientInstanceCapacity"))

        with pytest.raises(StepFailedError):
            _dynamic(store, providers).run(hosting_id)

        record = store.load(hosting_id)
        statuses = _statuses(record)
        assert record.status == HostingStatus.FAILED
        assert statuses[steps.CREATE_SECURITY_GROUP] == StepStatus.COMPLETED
        assert statuses[steps.CREATE_KEY_PAIR] == StepStatus.COMPLETED
        assert statuses[steps.LAUNCH_EC2_INSTANCE] == StepStatus.FAILED
        assert statuses[steps.WAIT_FOR_INSTANCE_RUNNING] == StepStatus.PENDING
        assert "describe_instance" not in providers.compute.calls

    def test_success_without_database(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.DYNAMIC, domain_name="app.example.com")

        record = _dynamic(store, providers).run(hosting_id)

        assert record.status == HostingStatus.ACTIVE
        assert steps.CREATE_RDS_DATABASE not in _statuses(record)
        assert providers.database.calls == []

        dynamic = record.dynamic
        assert dynamic.instance_state == "running"
        assert dynamic.elastic_ip.public_ip == "52.1.2.3"
        assert dynamic.elastic_ip.association_id is not None
        assert dynamic.key_name == "app-example-com-key"
        assert providers.compute.ports == [22, 80, 443, 3000]
        assert providers.compute.launched[0]["client_token"] == f"saasify-hosting-{hosting_id}"

        assert "BEGIN RSA PRIVATE KEY" in decrypt_value(record.key_material_encrypted)
        assert record.logs[-1].message.startswith("App will be available at")
        assert any(m.message.startswith("SSH: ssh -i ~/.ssh/app-example-com-key.pem ubuntu@52.1.2.3")
                   for m in record.logs)

    def test_success_with_database_and_dns(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.DYNAMIC, database_enabled=True, hosted_zone_id="Z9")

        record = _dynamic(store, providers).run(hosting_id)

        database = record.dynamic.database
        assert record.status == HostingStatus.ACTIVE
        assert database.status == "available"
        assert database.endpoint == "example-com-db.rds.amazonaws.com"
        assert database.username == "admin"
        assert decrypt_value(record.db_password_encrypted) == providers.database.passwords["example-com-db"]
        assert ("Z9", "example.com", "A", ["52.1.2.3"]) in providers.dns.records

    def test_retry_reuses_database_password(self, store, providers, make_hosting):
        hosting_id = make_hosting(HostingType.DYNAMIC, database_enabled=True)
        providers.database.fail("create_database", RuntimeError("DBInstanceQuotaExceeded"))
        with pytest.raises(StepFailedError):
            _dynamic(store, providers).run(hosting_id)
        stored = decrypt_value(store.load(hosting_id).db_password_encrypted)

        providers.database.heal("create_database")
        providers.compute.calls.clear()
        record = _dynamic(store, providers).run(hosting_id)

        assert record.status == HostingStatus.ACTIVE
        assert providers.database.passwords["example-com-db"] == stored
        assert "launch_instance" not in providers.compute.calls
        assert "allocate_elastic_ip" not in providers.compute.calls
