"""Resource provider capabilities consumed by the hosting orchestrator.

The orchestrator only sees these protocols; ``default_providers`` wires the
boto3-backed implementations, tests pass in-memory fakes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class BucketInfo:
    name: str
    region: str
    website_url: str


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    last_modified: datetime | None = None


@dataclass(frozen=True)
class Distribution:
    id: str
    domain_name: str
    status: str  # InProgress | Deployed
    enabled: bool = True


@dataclass(frozen=True)
class DnsRecord:
    name: str
    type: str
    value: str
    ttl: int = 300


@dataclass(frozen=True)
class Certificate:
    arn: str
    status: str  # PENDING_VALIDATION | ISSUED | FAILED | ...
    validation_records: list[DnsRecord] = field(default_factory=list)
    in_use: bool = False


@dataclass(frozen=True)
class SecurityGroup:
    id: str
    name: str


@dataclass(frozen=True)
class KeyPair:
    name: str
    # Only returned when the key pair is created; None if it already existed
    key_material: str | None = None


@dataclass(frozen=True)
class Instance:
    id: str
    state: str
    public_ip: str | None = None
    private_ip: str | None = None


@dataclass(frozen=True)
class ElasticIpAllocation:
    allocation_id: str
    public_ip: str


@dataclass(frozen=True)
class DatabaseInstance:
    identifier: str
    status: str
    endpoint: str | None = None
    port: int | None = None


class StorageProvider(Protocol):
    def create_bucket(self, name: str, region: str, tags: dict[str, str]) -> BucketInfo: ...

    def bucket_exists(self, name: str) -> bool: ...

    def configure_website(self, name: str) -> str: ...

    def set_public_read_policy(self, name: str) -> None: ...

    def configure_cors(self, name: str) -> None: ...

    def list_objects(self, name: str, prefix: str = "") -> list[StoredObject]: ...

    def delete_objects(self, name: str, keys: list[str]) -> int: ...

    def empty_bucket(self, name: str) -> int: ...

    def delete_bucket(self, name: str) -> None: ...

    def presigned_upload_url(
        self, name: str, key: str, content_type: str, expires_in: int
    ) -> str: ...


class CdnProvider(Protocol):
    def create_distribution(
        self,
        reference: str,
        origin_domain: str,
        aliases: list[str],
        certificate_arn: str | None,
        comment: str,
    ) -> Distribution: ...

    def get_distribution(self, distribution_id: str) -> Distribution: ...

    def invalidate(
        self, distribution_id: str, paths: list[str], reference: str | None = None
    ) -> str: ...

    def disable_distribution(self, distribution_id: str) -> Distribution: ...

    def delete_distribution(self, distribution_id: str) -> None: ...


class CertificateProvider(Protocol):
    def request_certificate(
        self, domain: str, alternative_names: list[str], idempotency_token: str
    ) -> str: ...

    def describe_certificate(self, arn: str) -> Certificate: ...

    def delete_certificate(self, arn: str) -> None: ...


class ComputeProvider(Protocol):
    def ensure_security_group(
        self, name: str, description: str, ports: list[int], tags: dict[str, str]
    ) -> SecurityGroup: ...

    def describe_security_group(self, name: str) -> SecurityGroup | None: ...

    def create_key_pair(self, name: str, tags: dict[str, str]) -> KeyPair: ...

    def delete_key_pair(self, name: str) -> None: ...

    def launch_instance(
        self,
        client_token: str,
        instance_type: str,
        key_name: str,
        security_group_id: str,
        user_data: str,
        tags: dict[str, str],
    ) -> Instance: ...

    def describe_instance(self, instance_id: str) -> Instance: ...

    def terminate_instance(self, instance_id: str) -> None: ...

    def allocate_elastic_ip(self, tags: dict[str, str]) -> ElasticIpAllocation: ...

    def associate_elastic_ip(self, allocation_id: str, instance_id: str) -> str: ...

    def disassociate_elastic_ip(self, association_id: str) -> None: ...

    def release_elastic_ip(self, allocation_id: str) -> None: ...


class DatabaseProvider(Protocol):
    def create_database(
        self,
        identifier: str,
        engine: str,
        instance_class: str,
        db_name: str,
        username: str,
        password: str,
        security_group_id: str | None,
        tags: dict[str, str],
    ) -> DatabaseInstance: ...

    def describe_database(self, identifier: str) -> DatabaseInstance: ...

    def delete_database(self, identifier: str, skip_final_snapshot: bool = True) -> None: ...


class DnsProvider(Protocol):
    def upsert_record(
        self, zone_id: str, name: str, record_type: str, ttl: int, values: list[str]
    ) -> None: ...


@dataclass
class ResourceProviders:
    storage: StorageProvider
    cdn: CdnProvider
    certificates: CertificateProvider
    compute: ComputeProvider
    database: DatabaseProvider
    dns: DnsProvider


def default_providers() -> ResourceProviders:
    from app.services.aws_cdn import CloudFrontCdn
    from app.services.aws_certificates import AcmCertificates
    from app.services.aws_compute import Ec2Compute
    from app.services.aws_database import RdsDatabase
    from app.services.aws_dns import Route53Dns
    from app.services.aws_storage import S3Storage

    return ResourceProviders(
        storage=S3Storage(),
        cdn=CloudFrontCdn(),
        certificates=AcmCertificates(),
        compute=Ec2Compute(),
        database=RdsDatabase(),
        dns=Route53Dns(),
    )
