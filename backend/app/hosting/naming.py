"""Resource names and default plans derived from a domain name."""

import re
import time

from app.hosting.record import Plan, PlanSpecs

DEFAULT_STATIC_PLAN = Plan(
    name="Basic Static",
    price=5.00,
    billing_cycle="monthly",
    specs=PlanSpecs(storage=10240, bandwidth=100),
)

DEFAULT_DYNAMIC_PLAN = Plan(
    name="Basic Dynamic",
    price=15.00,
    billing_cycle="monthly",
    specs=PlanSpecs(vcpu=1, memory=1024, storage=20480),
)

BILLING_CYCLES = ("monthly", "quarterly", "semi-annual", "annual")


def _dashed(domain_name: str) -> str:
    return domain_name.replace(".", "-")


def bucket_name(domain_name: str, prefix: str = "saasify", timestamp_ms: int | None = None) -> str:
    """Globally unique, DNS-compliant bucket name, e.g. ``saasify-example-com-1700000000000``."""
    clean = re.sub(r"[^a-z0-9-]", "-", domain_name.lower())
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    # S3 limits bucket names to 63 characters
    name = f"{prefix}-{clean}-{timestamp_ms}"
    if len(name) > 63:
        name = f"{prefix}-{clean[: 63 - len(prefix) - len(str(timestamp_ms)) - 2]}-{timestamp_ms}"
    return name


def security_group_name(domain_name: str) -> str:
    return f"{_dashed(domain_name)}-sg"


def key_pair_name(domain_name: str) -> str:
    return f"{_dashed(domain_name)}-key"


def database_identifier(domain_name: str) -> str:
    return f"{_dashed(domain_name)}-db"


def database_name(domain_name: str) -> str:
    return re.sub(r"[.-]", "_", domain_name)


def resource_tags(domain_name: str, hosting_id: int, managed_by: str = "SaaSify") -> dict[str, str]:
    return {
        "Name": f"{domain_name}-hosting",
        "Domain": domain_name,
        "HostingServiceId": str(hosting_id),
        "ManagedBy": managed_by,
    }
