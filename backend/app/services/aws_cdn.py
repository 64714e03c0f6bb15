"""CloudFront distributions in front of S3 website endpoints."""

import logging
import time

from botocore.exceptions import ClientError

from app.hosting.errors import ResourceNotFoundError
from app.services.aws_client import error_code, get_client, is_not_found
from app.services.providers import Distribution

logger = logging.getLogger(__name__)

# AWS managed "CachingOptimized" policy
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"


def _distribution_config(
    reference: str,
    origin_domain: str,
    aliases: list[str],
    certificate_arn: str | None,
    comment: str,
) -> dict:
    origin_id = f"S3-{origin_domain.split('.')[0]}"
    config = {
        "CallerReference": reference,
        "Comment": comment,
        "Enabled": True,
        "DefaultRootObject": "index.html",
        "Origins": {
            "Quantity": 1,
            "Items": [
                {
                    "Id": origin_id,
                    "DomainName": origin_domain,
                    "CustomOriginConfig": {
                        "HTTPPort": 80,
                        "HTTPSPort": 443,
                        # S3 website endpoints only speak HTTP
                        "OriginProtocolPolicy": "http-only",
                        "OriginSslProtocols": {"Quantity": 1, "Items": ["TLSv1.2"]},
                    },
                }
            ],
        },
        "DefaultCacheBehavior": {
            "TargetOriginId": origin_id,
            "ViewerProtocolPolicy": "redirect-to-https" if certificate_arn else "allow-all",
            "AllowedMethods": {
                "Quantity": 2,
                "Items": ["GET", "HEAD"],
                "CachedMethods": {"Quantity": 2, "Items": ["GET", "HEAD"]},
            },
            "Compress": True,
            "CachePolicyId": CACHING_OPTIMIZED_POLICY_ID,
        },
        "CustomErrorResponses": {
            "Quantity": 2,
            "Items": [
                {
                    "ErrorCode": 404,
                    "ResponsePagePath": "/error.html",
                    "ResponseCode": "404",
                    "ErrorCachingMinTTL": 300,
                },
                {
                    "ErrorCode": 403,
                    "ResponsePagePath": "/index.html",
                    "ResponseCode": "200",
                    "ErrorCachingMinTTL": 300,
                },
            ],
        },
        "PriceClass": "PriceClass_100",
    }
    if certificate_arn:
        config["Aliases"] = {"Quantity": len(aliases), "Items": aliases}
        config["ViewerCertificate"] = {
            "ACMCertificateArn": certificate_arn,
            "SSLSupportMethod": "sni-only",
            "MinimumProtocolVersion": "TLSv1.2_2021",
        }
    else:
        config["ViewerCertificate"] = {"CloudFrontDefaultCertificate": True}
    return config


def _to_distribution(data: dict) -> Distribution:
    enabled = data.get("DistributionConfig", {}).get("Enabled", True)
    return Distribution(
        id=data["Id"],
        domain_name=data["DomainName"],
        status=data["Status"],
        enabled=enabled,
    )


class CloudFrontCdn:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client("cloudfront")
        return self._client

    def create_distribution(
        self,
        reference: str,
        origin_domain: str,
        aliases: list[str],
        certificate_arn: str | None,
        comment: str,
    ) -> Distribution:
        """Create a distribution; repeating ``reference`` returns the same one."""
        config = _distribution_config(reference, origin_domain, aliases, certificate_arn, comment)
        try:
            response = self.client.create_distribution(DistributionConfig=config)
        except ClientError as e:
            if error_code(e) == "DistributionAlreadyExists":
                existing = self._find_by_reference(reference)
                if existing is not None:
                    logger.info("Distribution for %s already exists: %s", reference, existing.id)
                    return existing
            raise
        distribution = _to_distribution(response["Distribution"])
        logger.info("Created distribution %s for %s", distribution.id, origin_domain)
        return distribution

    def _find_by_reference(self, reference: str) -> Distribution | None:
        paginator = self.client.get_paginator("list_distributions")
        for page in paginator.paginate():
            for summary in page.get("DistributionList", {}).get("Items", []):
                config = self.client.get_distribution_config(Id=summary["Id"])
                if config["DistributionConfig"]["CallerReference"] == reference:
                    return self.get_distribution(summary["Id"])
        return None

    def get_distribution(self, distribution_id: str) -> Distribution:
        try:
            response = self.client.get_distribution(Id=distribution_id)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Distribution {distribution_id} not found") from e
            raise
        return _to_distribution(response["Distribution"])

    def invalidate(self, distribution_id: str, paths: list[str], reference: str | None = None) -> str:
        response = self.client.create_invalidation(
            DistributionId=distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": len(paths), "Items": paths},
                "CallerReference": reference or f"invalidation-{int(time.time() * 1000)}",
            },
        )
        return response["Invalidation"]["Id"]

    def disable_distribution(self, distribution_id: str) -> Distribution:
        try:
            response = self.client.get_distribution_config(Id=distribution_id)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Distribution {distribution_id} not found") from e
            raise
        config = response["DistributionConfig"]
        if not config["Enabled"]:
            return self.get_distribution(distribution_id)
        config["Enabled"] = False
        updated = self.client.update_distribution(
            Id=distribution_id,
            IfMatch=response["ETag"],
            DistributionConfig=config,
        )
        logger.info("Disabled distribution %s", distribution_id)
        return _to_distribution(updated["Distribution"])

    def delete_distribution(self, distribution_id: str) -> None:
        try:
            etag = self.client.get_distribution_config(Id=distribution_id)["ETag"]
            self.client.delete_distribution(Id=distribution_id, IfMatch=etag)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Distribution {distribution_id} not found") from e
            raise
        logger.info("Deleted distribution %s", distribution_id)
