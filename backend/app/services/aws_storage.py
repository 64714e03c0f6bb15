"""S3 storage for static site buckets."""

import json
import logging

from botocore.exceptions import ClientError

from app.hosting.errors import ResourceNotFoundError
from app.services.aws_client import as_tag_list, error_code, get_client, is_not_found
from app.services.providers import BucketInfo, StoredObject

logger = logging.getLogger(__name__)

CORS_RULES = [
    {
        "AllowedHeaders": ["*"],
        "AllowedMethods": ["GET", "PUT", "POST", "DELETE", "HEAD"],
        "AllowedOrigins": ["*"],
        "ExposeHeaders": ["ETag"],
        "MaxAgeSeconds": 3000,
    }
]


def website_url(bucket: str, region: str) -> str:
    return f"http://{bucket}.s3-website-{region}.amazonaws.com"


class S3Storage:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client("s3")
        return self._client

    def bucket_exists(self, name: str) -> bool:
        try:
            self.client.head_bucket(Bucket=name)
            return True
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

    def create_bucket(self, name: str, region: str, tags: dict[str, str]) -> BucketInfo:
        """Create the bucket unless it already exists (and is ours)."""
        if self.bucket_exists(name):
            logger.info("Bucket %s already exists, reusing", name)
        else:
            kwargs = {"Bucket": name}
            if region != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
            try:
                self.client.create_bucket(**kwargs)
            except ClientError as e:
                if error_code(e) != "BucketAlreadyOwnedByYou":
                    raise
            logger.info("Created bucket %s in %s", name, region)
        if tags:
            self.client.put_bucket_tagging(Bucket=name, Tagging={"TagSet": as_tag_list(tags)})
        return BucketInfo(name=name, region=region, website_url=website_url(name, region))

    def configure_website(self, name: str) -> str:
        self.client.put_bucket_website(
            Bucket=name,
            WebsiteConfiguration={
                "IndexDocument": {"Suffix": "index.html"},
                "ErrorDocument": {"Key": "error.html"},
            },
        )
        location = self.client.get_bucket_location(Bucket=name).get("LocationConstraint")
        return website_url(name, location or "us-east-1")

    def set_public_read_policy(self, name: str) -> None:
        # New buckets block public policies by default
        self.client.put_public_access_block(
            Bucket=name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": False,
                "IgnorePublicAcls": False,
                "BlockPublicPolicy": False,
                "RestrictPublicBuckets": False,
            },
        )
        policy = {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "PublicReadGetObject",
                    "Effect": "Allow",
                    "Principal": "*",
                    "Action": "s3:GetObject",
                    "Resource": f"arn:aws:s3:::{name}/*",
                }
            ],
        }
        self.client.put_bucket_policy(Bucket=name, Policy=json.dumps(policy))

    def configure_cors(self, name: str) -> None:
        self.client.put_bucket_cors(Bucket=name, CORSConfiguration={"CORSRules": CORS_RULES})

    def list_objects(self, name: str, prefix: str = "") -> list[StoredObject]:
        objects = []
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=name, Prefix=prefix):
                for item in page.get("Contents", []):
                    objects.append(
                        StoredObject(
                            key=item["Key"],
                            size=item.get("Size", 0),
                            last_modified=item.get("LastModified"),
                        )
                    )
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Bucket {name} not found") from e
            raise
        return objects

    def delete_objects(self, name: str, keys: list[str]) -> int:
        deleted = 0
        # DeleteObjects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            chunk = keys[start:start + 1000]
            response = self.client.delete_objects(
                Bucket=name,
                Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": True},
            )
            # Quiet mode only reports the keys that failed
            deleted += len(chunk) - len(response.get("Errors", []))
        return deleted

    def empty_bucket(self, name: str) -> int:
        keys = [obj.key for obj in self.list_objects(name)]
        return self.delete_objects(name, keys)

    def delete_bucket(self, name: str) -> None:
        removed = self.empty_bucket(name)
        try:
            self.client.delete_bucket(Bucket=name)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Bucket {name} not found") from e
            raise
        logger.info("Deleted bucket %s (%d objects removed)", name, removed)

    def presigned_upload_url(
        self, name: str, key: str, content_type: str, expires_in: int
    ) -> str:
        return self.client.generate_presigned_url(
            "put_object",
            Params={"Bucket": name, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in,
        )
