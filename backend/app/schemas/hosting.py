from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.hosting.record import (
    DynamicConfig,
    HostingRecord,
    Plan,
    ProvisioningLog,
    ProvisioningStep,
    StaticConfig,
    Usage,
)

DOMAIN_PATTERN = r"^([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"


class PlanSpecsIn(BaseModel):
    storage: int | None = Field(default=None, ge=0)  # MB
    bandwidth: int | None = Field(default=None, ge=0)  # GB
    vcpu: int | None = Field(default=None, ge=1)
    memory: int | None = Field(default=None, ge=128)  # MB


class PlanIn(BaseModel):
    name: str = Field(max_length=100)
    price: float = Field(ge=0)
    billing_cycle: str = Field(default="monthly", pattern="^(monthly|quarterly|semi-annual|annual)$")
    specs: PlanSpecsIn = Field(default_factory=PlanSpecsIn)


class DomainRef(BaseModel):
    """Either an existing domain id or a domain name to register for the user."""

    domain_id: int | None = None
    domain_name: str | None = Field(default=None, max_length=253, pattern=DOMAIN_PATTERN)

    @field_validator("domain_name", mode="before")
    @classmethod
    def _normalise_domain(cls, value):
        if isinstance(value, str):
            return value.strip().lower().rstrip(".")
        return value

    @model_validator(mode="after")
    def _one_domain(self):
        if self.domain_id is None and not self.domain_name:
            raise ValueError("domain_id or domain_name is required")
        return self


class StaticHostingCreate(DomainRef):
    plan: PlanIn | None = None
    enable_ssl: bool = True
    bucket_region: str = Field(default="us-east-1", max_length=30)


class DatabaseRequest(BaseModel):
    enabled: bool = False
    engine: str = Field(default="mysql", pattern="^(mysql|mariadb|postgres)$")
    instance_class: str = Field(default="db.t3.micro", max_length=30)


class DynamicHostingCreate(DomainRef):
    plan: PlanIn | None = None
    instance_type: str = Field(default="t3.micro", max_length=30)
    runtime: str = Field(default="docker", pattern="^docker$")
    app_port: int = Field(default=3000, ge=1024, le=65535)
    database: DatabaseRequest = Field(default_factory=DatabaseRequest)


class HostingRead(BaseModel):
    id: int
    user_id: int
    domain_id: int
    domain_name: str
    type: str
    status: str
    plan: Plan
    static: StaticConfig | None
    dynamic: DynamicConfig | None
    progress: int
    steps: list[ProvisioningStep]
    provisioning_started_at: datetime | None
    provisioning_completed_at: datetime | None
    next_billing_date: datetime | None
    auto_renew: bool
    suspended_at: datetime | None
    suspension_reason: str | None
    auto_unsuspend_at: datetime | None
    usage: Usage
    storage_usage_percent: int
    bandwidth_usage_percent: int
    public_url: str
    # True until the one-time credentials have been retrieved
    credentials_available: bool

    @classmethod
    def from_record(cls, record: HostingRecord) -> "HostingRead":
        return cls(
            id=record.id,
            user_id=record.user_id,
            domain_id=record.domain_id,
            domain_name=record.domain_name,
            type=record.type.value,
            status=record.status.value,
            plan=record.plan,
            static=record.static,
            dynamic=record.dynamic,
            progress=record.progress,
            steps=list(record.steps),
            provisioning_started_at=record.started_at,
            provisioning_completed_at=record.completed_at,
            next_billing_date=record.next_billing_date,
            auto_renew=record.auto_renew,
            suspended_at=record.suspended_at,
            suspension_reason=record.suspension_reason,
            auto_unsuspend_at=record.auto_unsuspend_at,
            usage=record.usage,
            storage_usage_percent=record.storage_usage_percent,
            bandwidth_usage_percent=record.bandwidth_usage_percent,
            public_url=record.public_url,
            credentials_available=bool(record.key_material_encrypted or record.db_password_encrypted),
        )


class HostingJobAccepted(BaseModel):
    hosting: HostingRead
    job_id: str  # poll /jobs/{job_id} or /hosting/{id}/progress
    message: str


class HostingProgress(BaseModel):
    id: int
    status: str
    progress: int
    steps: list[ProvisioningStep]
    logs: list[ProvisioningLog]
    provisioning_completed_at: datetime | None


class SuspendRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    auto_unsuspend_at: datetime | None = None


class CredentialsRead(BaseModel):
    key_name: str | None = None
    private_key: str | None = None
    database_username: str | None = None
    database_password: str | None = None
    message: str


class FileRead(BaseModel):
    key: str
    size: int
    last_modified: datetime | None = None


class FileList(BaseModel):
    files: list[FileRead]
    total_files: int
    total_size: int  # bytes
    storage_used: float  # MB
    storage_usage_percent: int


class UploadUrlRequest(BaseModel):
    key: str = Field(min_length=1, max_length=1024)
    content_type: str = Field(default="application/octet-stream", max_length=255)
    expires_in: int = Field(default=3600, ge=60, le=604800)


class UploadUrlRead(BaseModel):
    upload_url: str
    key: str
    expires_in: int


class DeleteFilesRequest(BaseModel):
    keys: list[str] = Field(min_length=1)


class DeleteFilesResult(BaseModel):
    deleted: int


class InvalidateRequest(BaseModel):
    paths: list[str] = Field(default_factory=lambda: ["/*"], min_length=1)


class InvalidationRead(BaseModel):
    invalidation_id: str
    paths: list[str]


class SshInfo(BaseModel):
    host: str | None
    port: int
    username: str = "ubuntu"
    key_name: str | None
    command: str | None


class DatabaseInfo(BaseModel):
    enabled: bool
    engine: str | None = None
    instance_class: str | None = None
    instance_identifier: str | None = None
    endpoint: str | None = None
    port: int | None = None
    name: str | None = None
    username: str | None = None
    status: str | None = None


class InstanceStatus(BaseModel):
    instance_id: str | None
    state: str | None
    public_ip: str | None
    private_ip: str | None
    # False when the provider could not be reached and cached values are shown
    live: bool
