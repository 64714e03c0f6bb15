"""Best-effort teardown of provisioned resources.

Each resource is removed by one :class:`TeardownAction`. Actions run in
order through :func:`log_and_continue`: a failure is logged as a warning and
the next action still runs. Only a failed ``critical`` action moves the
record to ``failed`` instead of ``terminated``.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.core.config import Settings, settings as default_settings
from app.hosting import lifecycle
from app.hosting.errors import InvalidStatusTransition, ResourceNotFoundError, TeardownFailedError
from app.hosting.lifecycle import append_log
from app.hosting.orchestrator import utcnow
from app.hosting.record import HostingRecord, HostingStatus, HostingType, LogLevel
from app.hosting.waiter import wait_until
from app.services.hosting_store import HostingStore
from app.services.providers import ResourceProviders

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeardownAction:
    name: str
    description: str
    run: Callable[[HostingRecord], None]
    # Returns the record with the removed resource's identifiers cleared
    forget: Callable[[HostingRecord], HostingRecord]
    applies: Callable[[HostingRecord], bool]
    critical: bool = False


@dataclass
class TeardownOutcome:
    record: HostingRecord
    failed: list[str]
    critical_failures: list[str]


def log_and_continue(
    record: HostingRecord,
    actions: list[TeardownAction],
    *,
    clock: Callable[[], datetime] = utcnow,
    save: Callable[[HostingRecord], None] | None = None,
    log: logging.Logger | None = None,
) -> TeardownOutcome:
    log = log or logger
    failed: list[str] = []
    critical: list[str] = []

    for action in actions:
        if not action.applies(record):
            continue
        try:
            action.run(record)
        except ResourceNotFoundError:
            # Already gone counts as removed
            record = action.forget(record)
            record = append_log(record, LogLevel.INFO, f"{action.description}: already removed", clock())
            log.info("%s: already removed", action.description)
        except Exception as exc:
            failed.append(action.name)
            if action.critical:
                critical.append(action.name)
            record = append_log(record, LogLevel.WARNING, f"{action.description} failed: {exc}", clock())
            log.warning("%s failed: %s", action.description, exc)
        else:
            record = action.forget(record)
            record = append_log(record, LogLevel.INFO, f"{action.description}: done", clock())
        if save is not None:
            save(record)

    return TeardownOutcome(record=record, failed=failed, critical_failures=critical)


class Terminator:
    hosting_type: HostingType

    def __init__(
        self,
        store: HostingStore,
        providers: ResourceProviders,
        *,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        log: logging.Logger | None = None,
    ):
        self.store = store
        self.providers = providers
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.log = log or logger

    def actions(self) -> list[TeardownAction]:
        raise NotImplementedError

    def run(self, hosting_id: int) -> HostingRecord:
        record = self.store.load(hosting_id)
        if record.status == HostingStatus.TERMINATED:
            self.log.info("Hosting %s already terminated", hosting_id)
            return record
        if record.status != HostingStatus.TERMINATING:
            raise InvalidStatusTransition(record.status.value, HostingStatus.TERMINATED.value)

        record = append_log(record, LogLevel.INFO, "Terminating hosting resources...", self.clock())
        self.store.save(record)

        outcome = log_and_continue(
            record,
            self.actions(),
            clock=self.clock,
            save=self.store.save,
            log=self.log,
        )
        record = outcome.record
        now = self.clock()

        if outcome.critical_failures:
            record = lifecycle.transition(record, HostingStatus.FAILED, now)
            record = append_log(
                record,
                LogLevel.ERROR,
                f"Termination failed: could not remove {', '.join(outcome.critical_failures)}",
                now,
            )
            self.store.save(record)
            raise TeardownFailedError(outcome.critical_failures)

        record = lifecycle.transition(record, HostingStatus.TERMINATED, now)
        message = "Hosting service terminated"
        if outcome.failed:
            message += f" with warnings ({', '.join(outcome.failed)})"
        record = append_log(record, LogLevel.INFO, message, now)
        self.store.save(record)
        return record


class StaticTerminator(Terminator):
    hosting_type = HostingType.STATIC

    def actions(self) -> list[TeardownAction]:
        return [
            TeardownAction(
                name="delete_cloudfront_distribution",
                description="Delete CloudFront distribution",
                run=self.delete_distribution,
                forget=lambda r: lifecycle.update_static(r, cloudfront_id=None, cloudfront_status="deleted"),
                applies=lambda r: bool(r.static and r.static.cloudfront_id),
                critical=True,
            ),
            TeardownAction(
                name="delete_s3_bucket",
                description="Delete S3 bucket",
                run=lambda r: self.providers.storage.delete_bucket(r.static.bucket_name),
                forget=lambda r: lifecycle.update_static(r, bucket_name=None),
                applies=lambda r: bool(r.static and r.static.bucket_name),
                critical=True,
            ),
            TeardownAction(
                name="delete_ssl_certificate",
                description="Delete SSL certificate",
                run=self.delete_certificate,
                forget=lambda r: lifecycle.update_static(r, certificate_arn=None, certificate_status="deleted"),
                applies=lambda r: bool(r.static and r.static.certificate_arn),
            ),
        ]

    def delete_distribution(self, record: HostingRecord) -> None:
        cdn = self.providers.cdn
        distribution_id = record.static.cloudfront_id
        cdn.disable_distribution(distribution_id)
        wait_until(
            lambda: cdn.get_distribution(distribution_id),
            lambda d: d.status == "Deployed" and not d.enabled,
            interval=self.config.DISTRIBUTION_POLL_INTERVAL,
            timeout=self.config.DISTRIBUTION_WAIT_TIMEOUT,
            description=f"distribution {distribution_id} to be disabled",
            sleep=self.sleep,
        )
        cdn.delete_distribution(distribution_id)

    def delete_certificate(self, record: HostingRecord) -> None:
        certificates = self.providers.certificates
        arn = record.static.certificate_arn
        if certificates.describe_certificate(arn).in_use:
            raise RuntimeError(f"certificate {arn} is still in use")
        certificates.delete_certificate(arn)


class DynamicTerminator(Terminator):
    hosting_type = HostingType.DYNAMIC

    def actions(self) -> list[TeardownAction]:
        compute = self.providers.compute
        return [
            TeardownAction(
                name="disassociate_elastic_ip",
                description="Disassociate Elastic IP",
                run=lambda r: compute.disassociate_elastic_ip(r.dynamic.elastic_ip.association_id),
                forget=lambda r: lifecycle.update_elastic_ip(r, association_id=None),
                applies=lambda r: bool(r.dynamic and r.dynamic.elastic_ip.association_id),
            ),
            TeardownAction(
                name="release_elastic_ip",
                description="Release Elastic IP",
                run=lambda r: compute.release_elastic_ip(r.dynamic.elastic_ip.allocation_id),
                forget=lambda r: lifecycle.update_elastic_ip(r, allocation_id=None),
                applies=lambda r: bool(r.dynamic and r.dynamic.elastic_ip.allocation_id),
            ),
            TeardownAction(
                name="terminate_ec2_instance",
                description="Terminate EC2 instance",
                run=lambda r: compute.terminate_instance(r.dynamic.instance_id),
                forget=lambda r: lifecycle.update_dynamic(r, instance_id=None, instance_state="terminated"),
                applies=lambda r: bool(r.dynamic and r.dynamic.instance_id),
                critical=True,
            ),
            TeardownAction(
                name="delete_rds_database",
                description="Delete RDS database",
                run=lambda r: self.providers.database.delete_database(
                    r.dynamic.database.instance_identifier, skip_final_snapshot=True
                ),
                forget=lambda r: lifecycle.update_database(r, instance_identifier=None, status="deleted").model_copy(
                    update={"db_password_encrypted": None}
                ),
                applies=lambda r: bool(r.dynamic and r.dynamic.database.instance_identifier),
            ),
            TeardownAction(
                name="delete_key_pair",
                description="Delete SSH key pair",
                run=lambda r: compute.delete_key_pair(r.dynamic.key_name),
                forget=lambda r: lifecycle.update_dynamic(r, key_name=None).model_copy(
                    update={"key_material_encrypted": None}
                ),
                applies=lambda r: bool(r.dynamic and r.dynamic.key_name),
            ),
        ]


TERMINATORS: dict[HostingType, type[Terminator]] = {
    HostingType.STATIC: StaticTerminator,
    HostingType.DYNAMIC: DynamicTerminator,
}
