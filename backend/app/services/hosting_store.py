"""Mapping between ``HostingService`` rows and ``HostingRecord`` values."""

from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from app.hosting.errors import HostingNotFoundError
from app.hosting.record import (
    DynamicConfig,
    HostingRecord,
    HostingStatus,
    HostingType,
    Plan,
    ProvisioningStep,
    StaticConfig,
    Usage,
)
from app.models.domain import Domain
from app.models.hosting_service import HostingService


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_record(row: HostingService, hosted_zone_id: str | None = None) -> HostingRecord:
    return HostingRecord(
        id=row.id,
        user_id=row.user_id,
        domain_id=row.domain_id,
        domain_name=row.domain_name,
        type=HostingType(row.type),
        status=HostingStatus(row.status),
        plan=Plan.model_validate(row.plan),
        static=StaticConfig.model_validate(row.static_config) if row.static_config is not None else None,
        dynamic=DynamicConfig.model_validate(row.dynamic_config) if row.dynamic_config is not None else None,
        hosted_zone_id=hosted_zone_id,
        started_at=_aware(row.provisioning_started_at),
        completed_at=_aware(row.provisioning_completed_at),
        steps=tuple(ProvisioningStep.model_validate(s) for s in row.steps or []),
        logs=tuple(row.logs or []),
        progress=row.progress or 0,
        key_material_encrypted=row.key_material_encrypted,
        db_password_encrypted=row.db_password_encrypted,
        next_billing_date=_aware(row.next_billing_date),
        last_billing_date=_aware(row.last_billing_date),
        auto_renew=row.auto_renew,
        suspended_at=_aware(row.suspended_at),
        suspension_reason=row.suspension_reason,
        auto_unsuspend_at=_aware(row.auto_unsuspend_at),
        usage=Usage.model_validate(row.usage or {}),
    )


def apply_record(row: HostingService, record: HostingRecord) -> None:
    """Copy every field the lifecycle may change onto ``row``.

    Identity, type and plan are fixed at creation and never written back.
    """
    row.status = record.status.value
    row.static_config = record.static.model_dump(mode="json") if record.static else None
    row.dynamic_config = record.dynamic.model_dump(mode="json") if record.dynamic else None
    row.provisioning_started_at = record.started_at
    row.provisioning_completed_at = record.completed_at
    row.steps = [step.model_dump(mode="json") for step in record.steps]
    row.logs = [log.model_dump(mode="json") for log in record.logs]
    row.progress = record.progress
    row.key_material_encrypted = record.key_material_encrypted
    row.db_password_encrypted = record.db_password_encrypted
    row.next_billing_date = record.next_billing_date
    row.last_billing_date = record.last_billing_date
    row.auto_renew = record.auto_renew
    row.suspended_at = record.suspended_at
    row.suspension_reason = record.suspension_reason
    row.auto_unsuspend_at = record.auto_unsuspend_at
    row.usage = record.usage.model_dump(mode="json")


def new_hosting_row(
    *,
    user_id: int,
    domain: Domain,
    hosting_type: HostingType,
    plan: Plan,
    steps: tuple[ProvisioningStep, ...],
    static: StaticConfig | None = None,
    dynamic: DynamicConfig | None = None,
    billing_period_days: int = 30,
    now: datetime | None = None,
) -> HostingService:
    now = now or datetime.now(UTC)
    usage = Usage()
    if plan.specs.storage:
        usage = usage.model_copy(update={"storage_limit": plan.specs.storage})
    if plan.specs.bandwidth:
        usage = usage.model_copy(update={"bandwidth_limit": plan.specs.bandwidth})
    return HostingService(
        user_id=user_id,
        domain_id=domain.id,
        domain_name=domain.domain_name,
        type=hosting_type.value,
        status=HostingStatus.PROVISIONING.value,
        plan=plan.model_dump(mode="json"),
        static_config=static.model_dump(mode="json") if static else None,
        dynamic_config=dynamic.model_dump(mode="json") if dynamic else None,
        provisioning_started_at=now,
        steps=[step.model_dump(mode="json") for step in steps],
        logs=[],
        progress=0,
        next_billing_date=now + timedelta(days=billing_period_days),
        auto_renew=True,
        usage=usage.model_dump(mode="json"),
    )


class HostingStore:
    """Sync persistence for worker code. One ``save`` per state change."""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, hosting_id: int) -> HostingService:
        row = self.db.get(HostingService, hosting_id)
        if row is None:
            raise HostingNotFoundError(f"Hosting service {hosting_id} not found")
        return row

    def load(self, hosting_id: int) -> HostingRecord:
        row = self._row(hosting_id)
        domain = self.db.get(Domain, row.domain_id)
        return to_record(row, hosted_zone_id=domain.hosted_zone_id if domain else None)

    def save(self, record: HostingRecord) -> None:
        row = self._row(record.id)
        apply_record(row, record)
        self.db.commit()
