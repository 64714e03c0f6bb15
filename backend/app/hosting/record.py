"""Immutable value types for a hosting service record.

The worker loads a :class:`HostingRecord` from the database, derives new
values with the pure functions in :mod:`app.hosting.lifecycle`, and hands
each one back to the store to persist.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class HostingType(StrEnum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class HostingStatus(StrEnum):
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    TERMINATING = "terminating"
    TERMINATED = "terminated"
    FAILED = "failed"


class StepStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class _Value(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)


class ProvisioningStep(_Value):
    name: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class ProvisioningLog(_Value):
    timestamp: datetime
    level: LogLevel = LogLevel.INFO
    message: str


class PlanSpecs(_Value):
    storage: int | None = None  # MB
    bandwidth: int | None = None  # GB
    vcpu: int | None = None
    memory: int | None = None  # MB


class Plan(_Value):
    name: str
    price: float
    billing_cycle: str = "monthly"
    specs: PlanSpecs = Field(default_factory=PlanSpecs)


class StaticConfig(_Value):
    enable_ssl: bool = True
    bucket_name: str | None = None
    bucket_region: str = "us-east-1"
    website_url: str | None = None
    cloudfront_id: str | None = None
    cloudfront_url: str | None = None
    cloudfront_status: str | None = None
    certificate_arn: str | None = None
    certificate_status: str = "none"


class ElasticIp(_Value):
    allocation_id: str | None = None
    public_ip: str | None = None
    association_id: str | None = None


class DatabaseConfig(_Value):
    enabled: bool = False
    engine: str | None = None
    instance_class: str | None = None
    instance_identifier: str | None = None
    endpoint: str | None = None
    port: int | None = None
    name: str | None = None
    username: str | None = None
    status: str | None = None


class DynamicConfig(_Value):
    instance_id: str | None = None
    instance_type: str = "t3.micro"
    instance_state: str | None = None
    private_ip: str | None = None
    public_ip: str | None = None
    elastic_ip: ElasticIp = Field(default_factory=ElasticIp)
    security_group_id: str | None = None
    key_name: str | None = None
    runtime: str = "docker"
    app_port: int = 3000
    ssh_port: int = 22
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


class Usage(_Value):
    storage_used: float = 0  # MB
    storage_limit: float = 10000
    bandwidth_used: float = 0  # GB
    bandwidth_limit: float = 100
    bandwidth_reset_at: datetime | None = None
    last_updated: datetime | None = None


class HostingRecord(_Value):
    id: int
    user_id: int
    domain_id: int
    domain_name: str
    type: HostingType
    status: HostingStatus
    plan: Plan
    static: StaticConfig | None = None
    dynamic: DynamicConfig | None = None

    # Loaded from the domain; never written back
    hosted_zone_id: str | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None
    steps: tuple[ProvisioningStep, ...] = ()
    logs: tuple[ProvisioningLog, ...] = ()
    progress: int = 0

    key_material_encrypted: str | None = None
    db_password_encrypted: str | None = None

    next_billing_date: datetime | None = None
    last_billing_date: datetime | None = None
    auto_renew: bool = True

    suspended_at: datetime | None = None
    suspension_reason: str | None = None
    auto_unsuspend_at: datetime | None = None

    usage: Usage = Field(default_factory=Usage)

    def step(self, name: str) -> ProvisioningStep | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    @property
    def public_url(self) -> str:
        if self.static is not None:
            if self.static.cloudfront_url:
                return f"https://{self.static.cloudfront_url}"
            if self.static.website_url:
                return self.static.website_url
        return f"https://{self.domain_name}"

    @property
    def storage_usage_percent(self) -> int:
        limit = self.usage.storage_limit
        return round(self.usage.storage_used / limit * 100) if limit > 0 else 0

    @property
    def bandwidth_usage_percent(self) -> int:
        limit = self.usage.bandwidth_limit
        return round(self.usage.bandwidth_used / limit * 100) if limit > 0 else 0
