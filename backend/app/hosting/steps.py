from app.hosting.record import ProvisioningStep

# Static hosting
CREATE_S3_BUCKET = "create_s3_bucket"
CONFIGURE_STATIC_WEBSITE = "configure_static_website"
SET_BUCKET_POLICY = "set_bucket_policy"
CONFIGURE_CORS = "configure_cors"
REQUEST_SSL_CERTIFICATE = "request_ssl_certificate"
VALIDATE_SSL_CERTIFICATE = "validate_ssl_certificate"
CREATE_CLOUDFRONT_DISTRIBUTION = "create_cloudfront_distribution"

# Dynamic hosting
CREATE_SECURITY_GROUP = "create_security_group"
CREATE_KEY_PAIR = "create_key_pair"
LAUNCH_EC2_INSTANCE = "launch_ec2_instance"
WAIT_FOR_INSTANCE_RUNNING = "wait_for_instance_running"
ALLOCATE_ELASTIC_IP = "allocate_elastic_ip"
CREATE_RDS_DATABASE = "create_rds_database"
WAIT_FOR_DATABASE_AVAILABLE = "wait_for_database_available"

UPDATE_DNS_RECORDS = "update_dns_records"


def static_step_names(enable_ssl: bool, has_dns_zone: bool) -> list[str]:
    names = [
        CREATE_S3_BUCKET,
        CONFIGURE_STATIC_WEBSITE,
        SET_BUCKET_POLICY,
        CONFIGURE_CORS,
    ]
    if enable_ssl:
        names += [REQUEST_SSL_CERTIFICATE, VALIDATE_SSL_CERTIFICATE]
    names.append(CREATE_CLOUDFRONT_DISTRIBUTION)
    if has_dns_zone:
        names.append(UPDATE_DNS_RECORDS)
    return names


def dynamic_step_names(database_enabled: bool, has_dns_zone: bool) -> list[str]:
    names = [
        CREATE_SECURITY_GROUP,
        CREATE_KEY_PAIR,
        LAUNCH_EC2_INSTANCE,
        WAIT_FOR_INSTANCE_RUNNING,
        ALLOCATE_ELASTIC_IP,
    ]
    if database_enabled:
        names += [CREATE_RDS_DATABASE, WAIT_FOR_DATABASE_AVAILABLE]
    if has_dns_zone:
        names.append(UPDATE_DNS_RECORDS)
    return names


def build_steps(names: list[str]) -> tuple[ProvisioningStep, ...]:
    """Fresh, all-pending step list, fixed for the lifetime of the record."""
    return tuple(ProvisioningStep(name=name) for name in names)


def progress_for(index: int, total: int) -> int:
    """Progress reported once step ``index`` (0-based) of ``total`` completes.

    The first 5% is reserved for picking up the job; the last step lands on
    95 and the orchestrator reports 100 after the final status write.
    """
    if total <= 0:
        return 100
    return 5 + (90 * (index + 1)) // total
