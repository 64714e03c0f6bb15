"""Pure state transitions over :class:`HostingRecord`.

Every function takes a record and returns a new one; nothing here touches
the database. Callers persist the result with ``HostingStore.save``.
"""

from datetime import datetime

from app.hosting.errors import InvalidStatusTransition, StepTransitionError
from app.hosting.record import (
    DynamicConfig,
    HostingRecord,
    HostingStatus,
    LogLevel,
    ProvisioningLog,
    ProvisioningStep,
    StaticConfig,
    StepStatus,
    Usage,
)

ALLOWED_TRANSITIONS: dict[HostingStatus, frozenset[HostingStatus]] = {
    HostingStatus.PROVISIONING: frozenset({HostingStatus.ACTIVE, HostingStatus.FAILED}),
    HostingStatus.ACTIVE: frozenset({HostingStatus.SUSPENDED, HostingStatus.TERMINATING}),
    HostingStatus.SUSPENDED: frozenset({HostingStatus.ACTIVE, HostingStatus.TERMINATING}),
    # failed -> provisioning only when the job queue retries the provision job
    HostingStatus.FAILED: frozenset({HostingStatus.TERMINATING, HostingStatus.PROVISIONING}),
    HostingStatus.TERMINATING: frozenset({HostingStatus.TERMINATED, HostingStatus.FAILED}),
    HostingStatus.TERMINATED: frozenset(),
}

TERMINABLE_STATUSES = frozenset(
    {HostingStatus.ACTIVE, HostingStatus.SUSPENDED, HostingStatus.FAILED}
)

_STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.IN_PROGRESS: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.FAILED: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.COMPLETED: frozenset(),
}


def can_transition(current: HostingStatus, new: HostingStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def transition(record: HostingRecord, new: HostingStatus, now: datetime) -> HostingRecord:
    if not can_transition(record.status, new):
        raise InvalidStatusTransition(record.status.value, new.value)

    changes: dict = {"status": new}
    if new == HostingStatus.ACTIVE and record.status == HostingStatus.PROVISIONING:
        changes["completed_at"] = now
    elif new == HostingStatus.ACTIVE and record.status == HostingStatus.SUSPENDED:
        changes.update(suspended_at=None, suspension_reason=None, auto_unsuspend_at=None)
    elif new == HostingStatus.PROVISIONING:
        changes["completed_at"] = None
    return record.model_copy(update=changes)


def can_terminate(record: HostingRecord) -> bool:
    return record.status in TERMINABLE_STATUSES


def suspend(
    record: HostingRecord,
    reason: str,
    now: datetime,
    auto_unsuspend_at: datetime | None = None,
) -> HostingRecord:
    record = transition(record, HostingStatus.SUSPENDED, now)
    record = record.model_copy(
        update={
            "suspended_at": now,
            "suspension_reason": reason,
            "auto_unsuspend_at": auto_unsuspend_at,
        }
    )
    return append_log(record, LogLevel.WARNING, f"Hosting suspended: {reason}", now)


def unsuspend(record: HostingRecord, now: datetime) -> HostingRecord:
    record = transition(record, HostingStatus.ACTIVE, now)
    return append_log(record, LogLevel.INFO, "Hosting unsuspended", now)


def append_log(
    record: HostingRecord,
    level: LogLevel,
    message: str,
    now: datetime,
) -> HostingRecord:
    # Clamp so the log stays ordered even if the clock steps backwards
    if record.logs and now < record.logs[-1].timestamp:
        now = record.logs[-1].timestamp
    entry = ProvisioningLog(timestamp=now, level=level, message=message)
    return record.model_copy(update={"logs": record.logs + (entry,)})


def _replace_step(
    record: HostingRecord,
    name: str,
    new_status: StepStatus,
    **fields,
) -> HostingRecord:
    steps = list(record.steps)
    for index, step in enumerate(steps):
        if step.name != name:
            continue
        if new_status not in _STEP_TRANSITIONS[step.status]:
            raise StepTransitionError(name, step.status.value, new_status.value)
        steps[index] = step.model_copy(update={"status": new_status, **fields})
        return record.model_copy(update={"steps": tuple(steps)})
    raise KeyError(f"Unknown provisioning step: {name}")


def start_step(record: HostingRecord, name: str, now: datetime) -> HostingRecord:
    return _replace_step(
        record,
        name,
        StepStatus.IN_PROGRESS,
        started_at=now,
        completed_at=None,
        error=None,
    )


def complete_step(record: HostingRecord, name: str, now: datetime) -> HostingRecord:
    return _replace_step(record, name, StepStatus.COMPLETED, completed_at=now)


def fail_step(record: HostingRecord, name: str, error: str, now: datetime) -> HostingRecord:
    return _replace_step(record, name, StepStatus.FAILED, completed_at=now, error=error)


def set_progress(record: HostingRecord, progress: int) -> HostingRecord:
    """Raise the mirrored job progress; it never goes down."""
    progress = max(0, min(100, int(progress)))
    if progress <= record.progress:
        return record
    return record.model_copy(update={"progress": progress})


def update_static(record: HostingRecord, **fields) -> HostingRecord:
    static = record.static or StaticConfig()
    return record.model_copy(update={"static": static.model_copy(update=fields)})


def update_dynamic(record: HostingRecord, **fields) -> HostingRecord:
    dynamic = record.dynamic or DynamicConfig()
    return record.model_copy(update={"dynamic": dynamic.model_copy(update=fields)})


def update_elastic_ip(record: HostingRecord, **fields) -> HostingRecord:
    dynamic = record.dynamic or DynamicConfig()
    return update_dynamic(record, elastic_ip=dynamic.elastic_ip.model_copy(update=fields))


def update_database(record: HostingRecord, **fields) -> HostingRecord:
    dynamic = record.dynamic or DynamicConfig()
    return update_dynamic(record, database=dynamic.database.model_copy(update=fields))


def update_usage(record: HostingRecord, now: datetime, **fields) -> HostingRecord:
    usage: Usage = record.usage.model_copy(update={**fields, "last_updated": now})
    return record.model_copy(update={"usage": usage})


def steps_remaining(record: HostingRecord) -> list[ProvisioningStep]:
    return [step for step in record.steps if step.status != StepStatus.COMPLETED]
