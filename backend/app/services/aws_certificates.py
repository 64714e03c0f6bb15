import logging

from botocore.exceptions import ClientError

from app.hosting.errors import ResourceNotFoundError
from app.services.aws_client import get_client, is_not_found
from app.services.providers import Certificate, DnsRecord

logger = logging.getLogger(__name__)


class AcmCertificates:
    """ACM certificates with DNS validation.

    CloudFront only accepts certificates from us-east-1, so the client is
    pinned there regardless of ``AWS_REGION``.
    """

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client("acm", region="us-east-1")
        return self._client

    def request_certificate(
        self, domain: str, alternative_names: list[str], idempotency_token: str
    ) -> str:
        response = self.client.request_certificate(
            DomainName=domain,
            SubjectAlternativeNames=alternative_names,
            ValidationMethod="DNS",
            # Same token within an hour returns the same certificate
            IdempotencyToken=idempotency_token,
        )
        arn = response["CertificateArn"]
        logger.info("Requested certificate for %s: %s", domain, arn)
        return arn

    def describe_certificate(self, arn: str) -> Certificate:
        try:
            detail = self.client.describe_certificate(CertificateArn=arn)["Certificate"]
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Certificate {arn} not found") from e
            raise

        records = []
        seen = set()
        for option in detail.get("DomainValidationOptions", []):
            record = option.get("ResourceRecord")
            # www and apex often share one validation record
            if not record or record["Name"] in seen:
                continue
            seen.add(record["Name"])
            records.append(DnsRecord(name=record["Name"], type=record["Type"], value=record["Value"]))

        return Certificate(
            arn=arn,
            status=detail["Status"],
            validation_records=records,
            in_use=bool(detail.get("InUseBy")),
        )

    def delete_certificate(self, arn: str) -> None:
        try:
            self.client.delete_certificate(CertificateArn=arn)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Certificate {arn} not found") from e
            raise
        logger.info("Deleted certificate %s", arn)
