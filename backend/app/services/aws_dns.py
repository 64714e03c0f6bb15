import logging

from app.services.aws_client import get_client

logger = logging.getLogger(__name__)


class Route53Dns:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client("route53")
        return self._client

    def upsert_record(
        self, zone_id: str, name: str, record_type: str, ttl: int, values: list[str]
    ) -> None:
        self.client.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch={
                "Comment": f"SaaSify upsert {record_type} {name}",
                "Changes": [
                    {
                        "Action": "UPSERT",
                        "ResourceRecordSet": {
                            "Name": name,
                            "Type": record_type,
                            "TTL": ttl,
                            "ResourceRecords": [{"Value": value} for value in values],
                        },
                    }
                ],
            },
        )
        logger.info("Upserted %s %s -> %s in zone %s", record_type, name, values, zone_id)
