import logging

from botocore.exceptions import ClientError

from app.hosting.errors import ResourceNotFoundError
from app.services.aws_client import as_tag_list, get_client, is_not_found
from app.services.providers import DatabaseInstance

logger = logging.getLogger(__name__)

ENGINE_PORTS = {"mysql": 3306, "mariadb": 3306, "postgres": 5432}


def _to_database(data: dict) -> DatabaseInstance:
    endpoint = data.get("Endpoint") or {}
    return DatabaseInstance(
        identifier=data["DBInstanceIdentifier"],
        status=data["DBInstanceStatus"],
        endpoint=endpoint.get("Address"),
        port=endpoint.get("Port"),
    )


class RdsDatabase:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client("rds")
        return self._client

    def describe_database(self, identifier: str) -> DatabaseInstance:
        try:
            response = self.client.describe_db_instances(DBInstanceIdentifier=identifier)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Database {identifier} not found") from e
            raise
        return _to_database(response["DBInstances"][0])

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
    ) -> DatabaseInstance:
        """Create the instance unless one with ``identifier`` already exists."""
        try:
            existing = self.describe_database(identifier)
        except ResourceNotFoundError:
            existing = None
        if existing is not None:
            logger.info("Database %s already exists (%s)", identifier, existing.status)
            return existing

        kwargs = {
            "DBInstanceIdentifier": identifier,
            "DBInstanceClass": instance_class,
            "Engine": engine,
            "MasterUsername": username,
            "MasterUserPassword": password,
            "AllocatedStorage": 20,
            "StorageType": "gp3",
            "StorageEncrypted": True,
            "PubliclyAccessible": False,
            "DBName": db_name,
            "BackupRetentionPeriod": 7,
            "PreferredBackupWindow": "03:00-04:00",
            "PreferredMaintenanceWindow": "sun:04:00-sun:05:00",
            "Tags": as_tag_list(tags),
        }
        if security_group_id:
            kwargs["VpcSecurityGroupIds"] = [security_group_id]
        response = self.client.create_db_instance(**kwargs)
        logger.info("Creating database %s (%s, %s)", identifier, engine, instance_class)
        return _to_database(response["DBInstance"])

    def delete_database(self, identifier: str, skip_final_snapshot: bool = True) -> None:
        kwargs = {"DBInstanceIdentifier": identifier, "SkipFinalSnapshot": skip_final_snapshot}
        if not skip_final_snapshot:
            kwargs["FinalDBSnapshotIdentifier"] = f"{identifier}-final"
        try:
            self.client.delete_db_instance(**kwargs)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Database {identifier} not found") from e
            raise
        logger.info("Deleting database %s", identifier)
