"""EC2 compute: security groups, key pairs, instances and Elastic IPs."""

import logging

from botocore.exceptions import ClientError

from app.hosting.errors import ResourceNotFoundError
from app.services.aws_client import as_tag_list, error_code, get_client, is_not_found
from app.services.providers import ElasticIpAllocation, Instance, KeyPair, SecurityGroup

logger = logging.getLogger(__name__)

UBUNTU_OWNER_ID = "099720109477"  # Canonical
UBUNTU_IMAGE_PATTERN = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"


def _to_instance(data: dict) -> Instance:
    return Instance(
        id=data["InstanceId"],
        state=data["State"]["Name"],
        public_ip=data.get("PublicIpAddress"),
        private_ip=data.get("PrivateIpAddress"),
    )


class Ec2Compute:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client("ec2")
        return self._client

    # -- Security groups ----------------------------------------------------

    def describe_security_group(self, name: str) -> SecurityGroup | None:
        response = self.client.describe_security_groups(
            Filters=[{"Name": "group-name", "Values": [name]}]
        )
        groups = response.get("SecurityGroups", [])
        if not groups:
            return None
        return SecurityGroup(id=groups[0]["GroupId"], name=name)

    def ensure_security_group(
        self, name: str, description: str, ports: list[int], tags: dict[str, str]
    ) -> SecurityGroup:
        existing = self.describe_security_group(name)
        if existing is not None:
            logger.info("Security group %s already exists: %s", name, existing.id)
            return existing

        response = self.client.create_security_group(
            GroupName=name,
            Description=description,
            TagSpecifications=[{"ResourceType": "security-group", "Tags": as_tag_list(tags)}],
        )
        group_id = response["GroupId"]
        self.client.authorize_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[
                {
                    "IpProtocol": "tcp",
                    "FromPort": port,
                    "ToPort": port,
                    "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                }
                for port in ports
            ],
        )
        logger.info("Created security group %s (%s) open on %s", name, group_id, ports)
        return SecurityGroup(id=group_id, name=name)

    # -- Key pairs ----------------------------------------------------------

    def create_key_pair(self, name: str, tags: dict[str, str]) -> KeyPair:
        try:
            response = self.client.create_key_pair(
                KeyName=name,
                KeyType="rsa",
                TagSpecifications=[{"ResourceType": "key-pair", "Tags": as_tag_list(tags)}],
            )
        except ClientError as e:
            if error_code(e) == "InvalidKeyPair.Duplicate":
                logger.info("Key pair %s already exists", name)
                return KeyPair(name=name)
            raise
        logger.info("Created key pair %s", name)
        return KeyPair(name=name, key_material=response["KeyMaterial"])

    def delete_key_pair(self, name: str) -> None:
        try:
            self.client.delete_key_pair(KeyName=name)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Key pair {name} not found") from e
            raise

    # -- Instances ----------------------------------------------------------

    def _ubuntu_image_id(self) -> str:
        response = self.client.describe_images(
            Owners=[UBUNTU_OWNER_ID],
            Filters=[
                {"Name": "name", "Values": [UBUNTU_IMAGE_PATTERN]},
                {"Name": "state", "Values": ["available"]},
                {"Name": "architecture", "Values": ["x86_64"]},
            ],
        )
        images = sorted(response.get("Images", []), key=lambda i: i["CreationDate"], reverse=True)
        if not images:
            raise ResourceNotFoundError("No Ubuntu AMI found in region")
        return images[0]["ImageId"]

    def launch_instance(
        self,
        client_token: str,
        instance_type: str,
        key_name: str,
        security_group_id: str,
        user_data: str,
        tags: dict[str, str],
    ) -> Instance:
        """Launch one instance; a repeated ``client_token`` returns the original."""
        response = self.client.run_instances(
            ImageId=self._ubuntu_image_id(),
            InstanceType=instance_type,
            MinCount=1,
            MaxCount=1,
            KeyName=key_name,
            SecurityGroupIds=[security_group_id],
            UserData=user_data,
            ClientToken=client_token,
            BlockDeviceMappings=[
                {
                    "DeviceName": "/dev/sda1",
                    "Ebs": {"VolumeSize": 20, "VolumeType": "gp3", "DeleteOnTermination": True},
                }
            ],
            TagSpecifications=[{"ResourceType": "instance", "Tags": as_tag_list(tags)}],
        )
        instance = _to_instance(response["Instances"][0])
        logger.info("Launched instance %s (%s)", instance.id, instance_type)
        return instance

    def describe_instance(self, instance_id: str) -> Instance:
        try:
            response = self.client.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Instance {instance_id} not found") from e
            raise
        reservations = response.get("Reservations", [])
        if not reservations or not reservations[0].get("Instances"):
            raise ResourceNotFoundError(f"Instance {instance_id} not found")
        return _to_instance(reservations[0]["Instances"][0])

    def terminate_instance(self, instance_id: str) -> None:
        try:
            self.client.terminate_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Instance {instance_id} not found") from e
            raise
        logger.info("Terminating instance %s", instance_id)

    # -- Elastic IPs --------------------------------------------------------

    def allocate_elastic_ip(self, tags: dict[str, str]) -> ElasticIpAllocation:
        response = self.client.allocate_address(
            Domain="vpc",
            TagSpecifications=[{"ResourceType": "elastic-ip", "Tags": as_tag_list(tags)}],
        )
        logger.info("Allocated Elastic IP %s", response["PublicIp"])
        return ElasticIpAllocation(allocation_id=response["AllocationId"], public_ip=response["PublicIp"])

    def associate_elastic_ip(self, allocation_id: str, instance_id: str) -> str:
        response = self.client.associate_address(
            AllocationId=allocation_id,
            InstanceId=instance_id,
            AllowReassociation=True,
        )
        return response["AssociationId"]

    def disassociate_elastic_ip(self, association_id: str) -> None:
        try:
            self.client.disassociate_address(AssociationId=association_id)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Association {association_id} not found") from e
            raise

    def release_elastic_ip(self, allocation_id: str) -> None:
        try:
            self.client.release_address(AllocationId=allocation_id)
        except ClientError as e:
            if is_not_found(e):
                raise ResourceNotFoundError(f"Allocation {allocation_id} not found") from e
            raise
