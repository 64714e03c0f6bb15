"""Step orchestrator for provisioning jobs.

A provisioner loads the hosting record, walks its fixed step list in order
and persists the record at every step boundary. Completed steps are skipped,
so a retried job resumes where the previous attempt stopped. Any step error
marks the step and the record ``failed`` and is re-raised as
:class:`StepFailedError` for the job queue to retry.
"""

import logging
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime

from app.core.config import Settings, settings as default_settings
from app.core.encryption import decrypt_value, encrypt_value
from app.hosting import lifecycle, naming, steps
from app.hosting.errors import StepFailedError
from app.hosting.lifecycle import append_log
from app.hosting.record import HostingRecord, HostingStatus, HostingType, LogLevel, StepStatus
from app.hosting.user_data import render_user_data
from app.hosting.waiter import wait_until
from app.services.hosting_store import HostingStore
from app.services.providers import ResourceProviders

logger = logging.getLogger(__name__)

CERTIFICATE_FAILED_STATES = frozenset({"FAILED", "VALIDATION_TIMED_OUT", "REVOKED", "EXPIRED"})
INSTANCE_FAILED_STATES = frozenset({"shutting-down", "terminated", "stopping", "stopped"})
DATABASE_FAILED_STATES = frozenset({"failed", "incompatible-parameters", "incompatible-network", "storage-full"})

ProgressCallback = Callable[[int, str | None], None]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Provisioner:
    hosting_type: HostingType
    step_intents: dict[str, str] = {}

    def __init__(
        self,
        store: HostingStore,
        providers: ResourceProviders,
        *,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        on_progress: ProgressCallback | None = None,
        log: logging.Logger | None = None,
    ):
        self.store = store
        self.providers = providers
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.on_progress = on_progress
        self.log = log or logger
        self._record: HostingRecord | None = None

    # -- Plumbing -----------------------------------------------------------

    def _checkpoint(self, record: HostingRecord) -> HostingRecord:
        """Persist an intermediate value from inside a step."""
        self.store.save(record)
        self._record = record
        return record

    def _note(self, record: HostingRecord, message: str, level: LogLevel = LogLevel.INFO) -> HostingRecord:
        getattr(self.log, "warning" if level == LogLevel.WARNING else level.value)(message)
        return append_log(record, level, message, self.clock())

    def _report(self, record: HostingRecord, step: str | None) -> None:
        if self.on_progress is not None:
            self.on_progress(record.progress, step)

    def _wait(self, check, is_ready, *, interval, timeout, description, is_failed=None):
        return wait_until(
            check,
            is_ready,
            interval=interval,
            timeout=timeout,
            description=description,
            is_failed=is_failed,
            sleep=self.sleep,
        )

    def _tags(self, record: HostingRecord) -> dict[str, str]:
        return naming.resource_tags(record.domain_name, record.id, self.config.RESOURCE_TAG)

    # -- Job entry point ----------------------------------------------------

    def actions(self) -> dict[str, Callable[[HostingRecord], HostingRecord]]:
        raise NotImplementedError

    def run(self, hosting_id: int) -> HostingRecord:
        record = self.store.load(hosting_id)

        if record.status == HostingStatus.FAILED:
            record = lifecycle.transition(record, HostingStatus.PROVISIONING, self.clock())
            record = self._note(record, "Retrying provisioning from the last completed step")
            self.store.save(record)
        elif record.status != HostingStatus.PROVISIONING:
            self.log.warning("Hosting %s is %s, nothing to provision", hosting_id, record.status.value)
            return record

        # A step left in-progress means the previous worker died mid-step
        for step in record.steps:
            if step.status == StepStatus.IN_PROGRESS:
                record = lifecycle.fail_step(record, step.name, "Interrupted before completion", self.clock())

        record = lifecycle.set_progress(record, 5)
        self.store.save(record)
        self._report(record, None)

        actions = self.actions()
        total = len(record.steps)
        for index, step in enumerate(record.steps):
            if step.status == StepStatus.COMPLETED:
                continue
            record = self._run_step(record, step.name, actions[step.name])
            record = lifecycle.set_progress(record, steps.progress_for(index, total))
            self.store.save(record)
            self._report(record, step.name)

        now = self.clock()
        record = lifecycle.transition(record, HostingStatus.ACTIVE, now)
        record = self._note(record, "Provisioning completed successfully")
        for message in self.success_messages(record):
            record = append_log(record, LogLevel.INFO, message, now)
        record = lifecycle.set_progress(record, 100)
        self.store.save(record)
        self._report(record, None)
        return record

    def success_messages(self, record: HostingRecord) -> list[str]:
        return []

    def _run_step(
        self,
        record: HostingRecord,
        name: str,
        action: Callable[[HostingRecord], HostingRecord],
    ) -> HostingRecord:
        record = lifecycle.start_step(record, name, self.clock())
        record = self._note(record, self.step_intents.get(name, f"Running {name}"))
        self._checkpoint(record)

        try:
            record = action(record)
        except Exception as exc:
            # Keep whatever the action checkpointed before it failed
            failed = self._record or record
            now = self.clock()
            failed = lifecycle.fail_step(failed, name, str(exc), now)
            failed = lifecycle.transition(failed, HostingStatus.FAILED, now)
            failed = self._note(failed, f"Step {name} failed: {exc}", LogLevel.ERROR)
            self.store.save(failed)
            raise StepFailedError(name, exc) from exc

        record = lifecycle.complete_step(record, name, self.clock())
        return self._checkpoint(record)


class StaticProvisioner(Provisioner):
    hosting_type = HostingType.STATIC
    step_intents = {
        steps.CREATE_S3_BUCKET: "Creating S3 bucket...",
        steps.CONFIGURE_STATIC_WEBSITE: "Configuring static website hosting...",
        steps.SET_BUCKET_POLICY: "Setting public read bucket policy...",
        steps.CONFIGURE_CORS: "Configuring CORS...",
        steps.REQUEST_SSL_CERTIFICATE: "Requesting SSL certificate...",
        steps.VALIDATE_SSL_CERTIFICATE: "Configuring SSL certificate validation...",
        steps.CREATE_CLOUDFRONT_DISTRIBUTION: "Creating CloudFront distribution...",
        steps.UPDATE_DNS_RECORDS: "Updating DNS records...",
    }

    def actions(self):
        return {
            steps.CREATE_S3_BUCKET: self.create_bucket,
            steps.CONFIGURE_STATIC_WEBSITE: self.configure_website,
            steps.SET_BUCKET_POLICY: self.set_bucket_policy,
            steps.CONFIGURE_CORS: self.configure_cors,
            steps.REQUEST_SSL_CERTIFICATE: self.request_certificate,
            steps.VALIDATE_SSL_CERTIFICATE: self.validate_certificate,
            steps.CREATE_CLOUDFRONT_DISTRIBUTION: self.create_distribution,
            steps.UPDATE_DNS_RECORDS: self.update_dns,
        }

    def create_bucket(self, record: HostingRecord) -> HostingRecord:
        bucket = record.static.bucket_name
        if not bucket:
            bucket = naming.bucket_name(record.domain_name, self.config.BUCKET_PREFIX)
            # Persist the name first so a retry reuses the same bucket
            record = self._checkpoint(lifecycle.update_static(record, bucket_name=bucket))
        info = self.providers.storage.create_bucket(bucket, record.static.bucket_region, self._tags(record))
        record = lifecycle.update_static(record, bucket_region=info.region, website_url=info.website_url)
        return self._note(record, f"S3 bucket created: {bucket}")

    def configure_website(self, record: HostingRecord) -> HostingRecord:
        url = self.providers.storage.configure_website(record.static.bucket_name)
        record = lifecycle.update_static(record, website_url=url)
        return self._note(record, f"Static website hosting enabled: {url}")

    def set_bucket_policy(self, record: HostingRecord) -> HostingRecord:
        self.providers.storage.set_public_read_policy(record.static.bucket_name)
        return self._note(record, "Public read policy applied")

    def configure_cors(self, record: HostingRecord) -> HostingRecord:
        self.providers.storage.configure_cors(record.static.bucket_name)
        return self._note(record, "CORS configured")

    def request_certificate(self, record: HostingRecord) -> HostingRecord:
        if record.static.certificate_arn:
            return self._note(record, f"Reusing SSL certificate {record.static.certificate_arn}")
        domain = record.domain_name
        arn = self.providers.certificates.request_certificate(
            domain,
            [domain, f"www.{domain}"],
            idempotency_token=f"saasify{record.id}",
        )
        record = lifecycle.update_static(record, certificate_arn=arn, certificate_status="PENDING_VALIDATION")
        return self._note(record, f"SSL certificate requested: {arn}")

    def validate_certificate(self, record: HostingRecord) -> HostingRecord:
        arn = record.static.certificate_arn
        def describe():
            return self.providers.certificates.describe_certificate(arn)

        def is_failed(cert):
            return cert.status in CERTIFICATE_FAILED_STATES

        # ACM fills in validation records a few seconds after the request
        cert = self._wait(
            describe,
            lambda c: bool(c.validation_records) or c.status == "ISSUED",
            interval=self.config.CERTIFICATE_POLL_INTERVAL,
            timeout=self.config.CERTIFICATE_WAIT_TIMEOUT,
            description=f"validation records for {arn}",
            is_failed=is_failed,
        )

        if not record.hosted_zone_id:
            for rec in cert.validation_records:
                record = self._note(record, f"Add DNS validation record: {rec.name} {rec.type} {rec.value}")
            record = lifecycle.update_static(record, certificate_status=cert.status)
            return self._note(record, "SSL validation pending until the records above are published")

        for rec in cert.validation_records:
            try:
                self.providers.dns.upsert_record(record.hosted_zone_id, rec.name, rec.type, rec.ttl, [rec.value])
                record = self._note(record, f"Added DNS validation record {rec.name}")
            except Exception as exc:
                record = self._note(record, f"Failed to add DNS validation record: {exc}", LogLevel.WARNING)
        record = self._checkpoint(record)

        cert = self._wait(
            describe,
            lambda c: c.status == "ISSUED",
            interval=self.config.CERTIFICATE_POLL_INTERVAL,
            timeout=self.config.CERTIFICATE_WAIT_TIMEOUT,
            description=f"certificate {arn} to be issued",
            is_failed=is_failed,
        )
        record = lifecycle.update_static(record, certificate_status=cert.status)
        return self._note(record, "SSL certificate issued")

    def create_distribution(self, record: HostingRecord) -> HostingRecord:
        static = record.static
        if static.cloudfront_id:
            dist = self.providers.cdn.get_distribution(static.cloudfront_id)
        else:
            cert_arn = static.certificate_arn if static.certificate_status == "ISSUED" else None
            if static.certificate_arn and cert_arn is None:
                record = self._note(
                    record,
                    "Certificate not issued yet; distribution created without the custom domain",
                    LogLevel.WARNING,
                )
            domain = record.domain_name
            origin = (static.website_url or "").removeprefix("http://").removeprefix("https://")
            dist = self.providers.cdn.create_distribution(
                reference=f"saasify-hosting-{record.id}",
                origin_domain=origin,
                aliases=[domain, f"www.{domain}"] if cert_arn else [],
                certificate_arn=cert_arn,
                comment=f"SaaSify static hosting for {domain}",
            )
        record = lifecycle.update_static(
            record,
            cloudfront_id=dist.id,
            cloudfront_url=dist.domain_name,
            cloudfront_status=dist.status,
        )
        return self._note(record, f"CloudFront distribution created: {dist.domain_name}")

    def update_dns(self, record: HostingRecord) -> HostingRecord:
        if not record.hosted_zone_id:
            return self._note(record, "Domain has no managed DNS zone, skipping DNS update", LogLevel.WARNING)
        self.providers.dns.upsert_record(
            record.hosted_zone_id, record.domain_name, "CNAME", 300, [record.static.cloudfront_url]
        )
        return self._note(record, "DNS CNAME record created")


class DynamicProvisioner(Provisioner):
    hosting_type = HostingType.DYNAMIC
    step_intents = {
        steps.CREATE_SECURITY_GROUP: "Creating security group...",
        steps.CREATE_KEY_PAIR: "Creating SSH key pair...",
        steps.LAUNCH_EC2_INSTANCE: "Launching EC2 instance...",
        steps.WAIT_FOR_INSTANCE_RUNNING: "Waiting for instance to be running...",
        steps.ALLOCATE_ELASTIC_IP: "Allocating Elastic IP...",
        steps.CREATE_RDS_DATABASE: "Creating RDS database...",
        steps.WAIT_FOR_DATABASE_AVAILABLE: "Waiting for database to be available (this may take 5-10 minutes)...",
        steps.UPDATE_DNS_RECORDS: "Updating DNS records...",
    }

    def actions(self):
        return {
            steps.CREATE_SECURITY_GROUP: self.create_security_group,
            steps.CREATE_KEY_PAIR: self.create_key_pair,
            steps.LAUNCH_EC2_INSTANCE: self.launch_instance,
            steps.WAIT_FOR_INSTANCE_RUNNING: self.wait_for_instance,
            steps.ALLOCATE_ELASTIC_IP: self.allocate_elastic_ip,
            steps.CREATE_RDS_DATABASE: self.create_database,
            steps.WAIT_FOR_DATABASE_AVAILABLE: self.wait_for_database,
            steps.UPDATE_DNS_RECORDS: self.update_dns,
        }

    def create_security_group(self, record: HostingRecord) -> HostingRecord:
        name = naming.security_group_name(record.domain_name)
        ports = sorted({record.dynamic.ssh_port, 80, 443, record.dynamic.app_port})
        group = self.providers.compute.ensure_security_group(
            name, f"Security group for {record.domain_name}", ports, self._tags(record)
        )
        record = lifecycle.update_dynamic(record, security_group_id=group.id)
        return self._note(record, f"Security group ready: {group.id}")

    def create_key_pair(self, record: HostingRecord) -> HostingRecord:
        name = naming.key_pair_name(record.domain_name)
        key_pair = self.providers.compute.create_key_pair(name, self._tags(record))
        record = lifecycle.update_dynamic(record, key_name=name)
        if key_pair.key_material:
            record = record.model_copy(update={"key_material_encrypted": encrypt_value(key_pair.key_material)})
            return self._note(
                record,
                f"SSH key pair created: {name}. Download the private key now; it can only be retrieved once.",
            )
        return self._note(record, f"SSH key pair {name} already exists; its private key was issued earlier")

    def launch_instance(self, record: HostingRecord) -> HostingRecord:
        dynamic = record.dynamic
        if dynamic.instance_id:
            instance = self.providers.compute.describe_instance(dynamic.instance_id)
        else:
            instance = self.providers.compute.launch_instance(
                client_token=f"saasify-hosting-{record.id}",
                instance_type=dynamic.instance_type,
                key_name=dynamic.key_name,
                security_group_id=dynamic.security_group_id,
                user_data=render_user_data(dynamic.runtime, dynamic.app_port),
                tags=self._tags(record),
            )
        record = lifecycle.update_dynamic(record, instance_id=instance.id, instance_state=instance.state)
        return self._note(record, f"EC2 instance launched: {instance.id}")

    def wait_for_instance(self, record: HostingRecord) -> HostingRecord:
        instance_id = record.dynamic.instance_id
        instance = self._wait(
            lambda: self.providers.compute.describe_instance(instance_id),
            lambda i: i.state == "running",
            interval=self.config.INSTANCE_POLL_INTERVAL,
            timeout=self.config.INSTANCE_WAIT_TIMEOUT,
            description=f"instance {instance_id} to be running",
            is_failed=lambda i: i.state in INSTANCE_FAILED_STATES,
        )
        record = lifecycle.update_dynamic(
            record,
            instance_state=instance.state,
            public_ip=instance.public_ip,
            private_ip=instance.private_ip,
        )
        return self._note(record, f"Instance is running: {instance.public_ip}")

    def allocate_elastic_ip(self, record: HostingRecord) -> HostingRecord:
        compute = self.providers.compute
        eip = record.dynamic.elastic_ip
        if not eip.allocation_id:
            allocation = compute.allocate_elastic_ip(self._tags(record))
            record = self._checkpoint(
                lifecycle.update_elastic_ip(
                    record, allocation_id=allocation.allocation_id, public_ip=allocation.public_ip
                )
            )
            eip = record.dynamic.elastic_ip
        if not eip.association_id:
            association_id = compute.associate_elastic_ip(eip.allocation_id, record.dynamic.instance_id)
            record = lifecycle.update_elastic_ip(record, association_id=association_id)
        record = lifecycle.update_dynamic(record, public_ip=eip.public_ip)
        return self._note(record, f"Elastic IP allocated: {eip.public_ip}")

    def create_database(self, record: HostingRecord) -> HostingRecord:
        db = record.dynamic.database
        identifier = db.instance_identifier or naming.database_identifier(record.domain_name)
        username = db.username or "admin"
        if record.db_password_encrypted:
            password = decrypt_value(record.db_password_encrypted)
        else:
            password = secrets.token_urlsafe(24)
            # Store the password before the instance exists so a retry reuses it
            record = self._checkpoint(
                record.model_copy(update={"db_password_encrypted": encrypt_value(password)})
            )
        instance = self.providers.database.create_database(
            identifier=identifier,
            engine=db.engine or "mysql",
            instance_class=db.instance_class or "db.t3.micro",
            db_name=db.name or naming.database_name(record.domain_name),
            username=username,
            password=password,
            security_group_id=record.dynamic.security_group_id,
            tags=self._tags(record),
        )
        record = lifecycle.update_database(
            record,
            instance_identifier=identifier,
            name=db.name or naming.database_name(record.domain_name),
            username=username,
            status=instance.status,
        )
        return self._note(record, f"RDS database creation started: {identifier}")

    def wait_for_database(self, record: HostingRecord) -> HostingRecord:
        identifier = record.dynamic.database.instance_identifier
        instance = self._wait(
            lambda: self.providers.database.describe_database(identifier),
            lambda d: d.status == "available",
            interval=self.config.DATABASE_POLL_INTERVAL,
            timeout=self.config.DATABASE_WAIT_TIMEOUT,
            description=f"database {identifier} to be available",
            is_failed=lambda d: d.status in DATABASE_FAILED_STATES,
        )
        record = lifecycle.update_database(
            record, status=instance.status, endpoint=instance.endpoint, port=instance.port
        )
        return self._note(record, f"Database is available: {instance.endpoint}")

    def update_dns(self, record: HostingRecord) -> HostingRecord:
        if not record.hosted_zone_id:
            return self._note(record, "Domain has no managed DNS zone, skipping DNS update", LogLevel.WARNING)
        self.providers.dns.upsert_record(
            record.hosted_zone_id, record.domain_name, "A", 300, [record.dynamic.elastic_ip.public_ip]
        )
        return self._note(record, "DNS A record created")

    def success_messages(self, record: HostingRecord) -> list[str]:
        dynamic = record.dynamic
        ip = dynamic.elastic_ip.public_ip or dynamic.public_ip
        return [
            f"SSH: ssh -i ~/.ssh/{dynamic.key_name}.pem ubuntu@{ip}",
            f"App will be available at: http://{record.domain_name}:{dynamic.app_port}",
        ]


PROVISIONERS: dict[HostingType, type[Provisioner]] = {
    HostingType.STATIC: StaticProvisioner,
    HostingType.DYNAMIC: DynamicProvisioner,
}
