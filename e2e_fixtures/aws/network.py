"""VPC, subnet, security group and proxy operations.

Creation builds a VPC with one public and one private subnet per zone. Deletion
removes everything inside a VPC in dependency order before the VPC itself.
"""

from __future__ import annotations

import ipaddress
import logging
import os
from pathlib import Path
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from e2e_fixtures.aws.client import AWSClient, is_not_found
from e2e_fixtures.models.vpc import VPC, ProxyDetail, Subnet

logger = logging.getLogger(__name__)

PROXY_PORT = 8080
PROXY_KEY_TAG = "e2e-fixtures-proxy-key"
PROXY_SG_TAG = "e2e-fixtures-proxy-sg"
PROXY_AMI_PARAMETER = "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-x86_64"
PROXY_USER_DATA = f"""#!/bin/bash
dnf install -y squid
sed -i 's/^http_port .*/http_port {PROXY_PORT}/' /etc/squid/squid.conf
sed -i 's/^http_access deny all/http_access allow all/' /etc/squid/squid.conf
systemctl enable --now squid
"""


def _tags(name: str, extra: Optional[dict[str, str]] = None) -> list[dict[str, str]]:
    tags = {"Name": name}
    tags.update(extra or {})
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def _tag_spec(resource_type: str, name: str, extra: Optional[dict[str, str]] = None) -> list[dict[str, Any]]:
    return [{"ResourceType": resource_type, "Tags": _tags(name, extra)}]


def create_vpc(client: AWSClient, name: str, cidr: str) -> VPC:
    """Create a VPC with DNS support and hostnames enabled."""
    ec2 = client.ec2
    response = ec2.create_vpc(CidrBlock=cidr, TagSpecifications=_tag_spec("vpc", name))
    vpc_id = response["Vpc"]["VpcId"]
    client.wait("vpc_available", VpcIds=[vpc_id])
    ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsSupport={"Value": True})
    ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={"Value": True})
    logger.info(f"Created VPC {vpc_id} ({cidr})")
    return VPC(vpc_id=vpc_id, name=name, cidr=cidr, region=client.region)


def find_vpc_by_name(client: AWSClient, name: str) -> Optional[VPC]:
    """Look up an existing VPC by its Name tag, including its subnets."""
    vpcs = client.ec2.describe_vpcs(Filters=[{"Name": "tag:Name", "Values": [name]}])["Vpcs"]
    if not vpcs:
        return None
    raw = vpcs[0]
    vpc = VPC(vpc_id=raw["VpcId"], name=name, cidr=raw.get("CidrBlock", ""), region=client.region)
    vpc.subnets = describe_subnets(client, vpc.vpc_id)
    return vpc


def describe_subnets(client: AWSClient, vpc_id: str) -> list[Subnet]:
    """Describe subnets of a VPC. Subnets routed to an internet gateway are public."""
    ec2 = client.ec2
    route_tables = ec2.describe_route_tables(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])["RouteTables"]
    public_subnet_ids = set()
    for table in route_tables:
        routes_to_igw = any(r.get("GatewayId", "").startswith("igw-") for r in table.get("Routes", []))
        if routes_to_igw:
            public_subnet_ids.update(a["SubnetId"] for a in table.get("Associations", []) if a.get("SubnetId"))

    subnets = []
    for raw in ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])["Subnets"]:
        subnets.append(
            Subnet(
                subnet_id=raw["SubnetId"],
                zone=raw["AvailabilityZone"],
                cidr=raw["CidrBlock"],
                public=raw["SubnetId"] in public_subnet_ids,
            )
        )
    return subnets


def plan_subnet_cidrs(vpc_cidr: str, count: int) -> list[str]:
    """Split the VPC CIDR into `count` equal subnets.

    Raises:
        ValueError: If the VPC CIDR is too small
    """
    network = ipaddress.ip_network(vpc_cidr)
    extra_bits = max(1, (count - 1).bit_length())
    new_prefix = network.prefixlen + extra_bits
    if new_prefix > 28:
        raise ValueError(f"CIDR {vpc_cidr} is too small for {count} subnets")
    return [str(subnet) for subnet in list(network.subnets(new_prefix=new_prefix))[:count]]


def create_subnets(client: AWSClient, vpc: VPC, zones: list[str], multi_zone: bool = False) -> VPC:
    """Create a public and a private subnet per zone with routing.

    Public subnets route through an internet gateway; private subnets route
    through a NAT gateway placed in the first public subnet.

    Args:
        client: AWS client owning the VPC
        vpc: VPC handle (updated in place)
        zones: Availability zones
        multi_zone: Use every zone when True, only the first one otherwise

    Returns:
        The updated VPC handle
    """
    if not zones:
        raise ValueError("At least one availability zone is required")
    ec2 = client.ec2
    selected = zones if multi_zone else zones[:1]
    cidrs = plan_subnet_cidrs(vpc.cidr, len(selected) * 2)

    if vpc.internet_gateway_id is None:
        igw_id = ec2.create_internet_gateway(
            TagSpecifications=_tag_spec("internet-gateway", f"{vpc.name}-igw")
        )["InternetGateway"]["InternetGatewayId"]
        ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc.vpc_id)
        vpc.internet_gateway_id = igw_id

    public_rt = ec2.create_route_table(
        VpcId=vpc.vpc_id, TagSpecifications=_tag_spec("route-table", f"{vpc.name}-public")
    )["RouteTable"]["RouteTableId"]
    ec2.create_route(RouteTableId=public_rt, DestinationCidrBlock="0.0.0.0/0", GatewayId=vpc.internet_gateway_id)

    new_public: list[Subnet] = []
    new_private: list[Subnet] = []
    for index, zone in enumerate(selected):
        for public, cidr in ((True, cidrs[index * 2]), (False, cidrs[index * 2 + 1])):
            kind = "public" if public else "private"
            subnet_id = ec2.create_subnet(
                VpcId=vpc.vpc_id,
                CidrBlock=cidr,
                AvailabilityZone=zone,
                TagSpecifications=_tag_spec("subnet", f"{vpc.name}-{kind}-{zone}"),
            )["Subnet"]["SubnetId"]
            subnet = Subnet(subnet_id=subnet_id, zone=zone, cidr=cidr, public=public)
            (new_public if public else new_private).append(subnet)

    for subnet in new_public:
        ec2.associate_route_table(RouteTableId=public_rt, SubnetId=subnet.subnet_id)
        ec2.modify_subnet_attribute(SubnetId=subnet.subnet_id, MapPublicIpOnLaunch={"Value": True})

    allocation_id = ec2.allocate_address(
        Domain="vpc", TagSpecifications=_tag_spec("elastic-ip", f"{vpc.name}-nat", {"vpc-id": vpc.vpc_id})
    )["AllocationId"]
    nat_id = ec2.create_nat_gateway(
        SubnetId=new_public[0].subnet_id,
        AllocationId=allocation_id,
        TagSpecifications=_tag_spec("natgateway", f"{vpc.name}-nat"),
    )["NatGateway"]["NatGatewayId"]
    client.wait("nat_gateway_available", NatGatewayIds=[nat_id])
    vpc.nat_gateway_ids.append(nat_id)

    private_rt = ec2.create_route_table(
        VpcId=vpc.vpc_id, TagSpecifications=_tag_spec("route-table", f"{vpc.name}-private")
    )["RouteTable"]["RouteTableId"]
    ec2.create_route(RouteTableId=private_rt, DestinationCidrBlock="0.0.0.0/0", NatGatewayId=nat_id)
    for subnet in new_private:
        ec2.associate_route_table(RouteTableId=private_rt, SubnetId=subnet.subnet_id)

    vpc.subnets.extend(new_public + new_private)
    logger.info(f"Created {len(new_public)} public and {len(new_private)} private subnets in {vpc.vpc_id}")
    return vpc


def create_security_groups(client: AWSClient, vpc_id: str, count: int, name_prefix: str) -> list[str]:
    """Create `count` empty security groups in the VPC."""
    group_ids = []
    for index in range(count):
        name = f"{name_prefix}-{index}"
        group_id = client.ec2.create_security_group(
            GroupName=name,
            Description=f"Additional security group {name}",
            VpcId=vpc_id,
            TagSpecifications=_tag_spec("security-group", name),
        )["GroupId"]
        group_ids.append(group_id)
    return group_ids


def launch_proxy(
    client: AWSClient,
    vpc: VPC,
    zone: str,
    key_name: str,
    pem_file: Path,
    ca_file: str = "",
    instance_type: str = "t3.micro",
) -> ProxyDetail:
    """Launch a squid proxy instance in the public subnet of `zone`.

    The key pair private material is written to `pem_file`. The key pair and
    security group names are tagged on the instance so cleanup can find them.
    """
    ec2 = client.ec2
    subnet = vpc.public_subnet_in_zone(zone)
    if subnet is None:
        raise ValueError(f"VPC {vpc.vpc_id} has no public subnet in zone {zone}")

    key = ec2.create_key_pair(KeyName=key_name, KeyType="rsa")
    group_id = ""
    instance_id = ""
    try:
        pem_file.parent.mkdir(parents=True, exist_ok=True)
        pem_file.write_text(key["KeyMaterial"])
        os.chmod(pem_file, 0o600)

        group_id = ec2.create_security_group(
            GroupName=f"{key_name}-sg", Description="Proxy access", VpcId=vpc.vpc_id
        )["GroupId"]
        ec2.authorize_security_group_ingress(
            GroupId=group_id,
            IpPermissions=[
                {"IpProtocol": "tcp", "FromPort": 22, "ToPort": 22, "IpRanges": [{"CidrIp": "0.0.0.0/0"}]},
                {
                    "IpProtocol": "tcp",
                    "FromPort": PROXY_PORT,
                    "ToPort": PROXY_PORT,
                    "IpRanges": [{"CidrIp": vpc.cidr or "0.0.0.0/0"}],
                },
            ],
        )

        image_id = client.client("ssm").get_parameter(Name=PROXY_AMI_PARAMETER)["Parameter"]["Value"]
        instance_id = ec2.run_instances(
            ImageId=image_id,
            InstanceType=instance_type,
            KeyName=key_name,
            MinCount=1,
            MaxCount=1,
            UserData=PROXY_USER_DATA,
            NetworkInterfaces=[
                {
                    "DeviceIndex": 0,
                    "SubnetId": subnet.subnet_id,
                    "Groups": [group_id],
                    "AssociatePublicIpAddress": True,
                }
            ],
            TagSpecifications=_tag_spec(
                "instance", f"{vpc.name}-proxy", {PROXY_KEY_TAG: key_name, PROXY_SG_TAG: group_id}
            ),
        )["Instances"][0]["InstanceId"]
        client.wait("instance_running", InstanceIds=[instance_id])
    except Exception:
        _rollback_proxy(client, key_name, pem_file, group_id, instance_id)
        raise

    described = ec2.describe_instances(InstanceIds=[instance_id])["Reservations"][0]["Instances"][0]
    private_ip = described.get("PrivateIpAddress", "")
    proxy_url = f"http://{private_ip}:{PROXY_PORT}"
    logger.info(f"Launched proxy instance {instance_id} at {proxy_url}")
    return ProxyDetail(
        instance_id=instance_id,
        http_proxy=proxy_url,
        https_proxy=proxy_url,
        ca_bundle_path=ca_file,
        private_ip=private_ip,
        public_ip=described.get("PublicIpAddress", ""),
    )


def _rollback_proxy(client: AWSClient, key_name: str, pem_file: Path, group_id: str, instance_id: str) -> None:
    """Best-effort removal of whatever a failed proxy launch already created."""
    ec2 = client.ec2
    steps = []
    if instance_id:
        steps.append((f"instance {instance_id}", lambda: _terminate(client, instance_id)))
    if group_id:
        steps.append(
            (f"security group {group_id}", lambda: _ignore_not_found(ec2.delete_security_group, GroupId=group_id))
        )
    steps.append((f"key pair {key_name}", lambda: ec2.delete_key_pair(KeyName=key_name)))
    steps.append((f"key file {pem_file}", lambda: pem_file.unlink(missing_ok=True)))
    for what, step in steps:
        try:
            step()
        except (ClientError, BotoCoreError, TimeoutError, OSError) as e:
            logger.warning(f"Failed to roll back proxy {what}: {e}")


def _terminate(client: AWSClient, instance_id: str) -> None:
    client.ec2.terminate_instances(InstanceIds=[instance_id])
    client.wait("instance_terminated", InstanceIds=[instance_id])


def cleanup_proxy(client: AWSClient, instance_id: str) -> None:
    """Terminate a proxy instance and delete its key pair and security group."""
    ec2 = client.ec2
    try:
        instance = ec2.describe_instances(InstanceIds=[instance_id])["Reservations"][0]["Instances"][0]
    except ClientError as e:
        if is_not_found(e):
            logger.info(f"Proxy instance {instance_id} already deleted")
            return
        raise
    except IndexError:
        logger.info(f"Proxy instance {instance_id} already deleted")
        return

    tags = {t["Key"]: t["Value"] for t in instance.get("Tags", [])}
    if instance["State"]["Name"] != "terminated":
        ec2.terminate_instances(InstanceIds=[instance_id])
        client.wait("instance_terminated", InstanceIds=[instance_id])

    key_name = tags.get(PROXY_KEY_TAG)
    if key_name:
        ec2.delete_key_pair(KeyName=key_name)
    group_id = tags.get(PROXY_SG_TAG)
    if group_id:
        _ignore_not_found(ec2.delete_security_group, GroupId=group_id)


def _ignore_not_found(call, **kwargs: Any) -> None:
    try:
        call(**kwargs)
    except ClientError as e:
        if not is_not_found(e):
            raise


def delete_vpc_chain(client: AWSClient, vpc_id: str) -> None:
    """Delete a VPC and everything inside it.

    Order: instances, NAT gateways and their addresses, internet gateways,
    subnets, custom route tables, custom security groups, the VPC.
    """
    ec2 = client.ec2
    vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]
    try:
        ec2.describe_vpcs(VpcIds=[vpc_id])
    except ClientError as e:
        if is_not_found(e):
            logger.info(f"VPC {vpc_id} already deleted")
            return
        raise

    instance_ids = [
        instance["InstanceId"]
        for reservation in ec2.describe_instances(Filters=vpc_filter)["Reservations"]
        for instance in reservation["Instances"]
        if instance["State"]["Name"] not in ("terminated", "shutting-down")
    ]
    if instance_ids:
        logger.info(f"Terminating {len(instance_ids)} instances in {vpc_id}")
        ec2.terminate_instances(InstanceIds=instance_ids)
        client.wait("instance_terminated", InstanceIds=instance_ids)

    nat_gateways = [
        nat
        for nat in ec2.describe_nat_gateways(Filters=vpc_filter)["NatGateways"]
        if nat["State"] not in ("deleted", "deleting")
    ]
    for nat in nat_gateways:
        ec2.delete_nat_gateway(NatGatewayId=nat["NatGatewayId"])
    if nat_gateways:
        nat_ids = [nat["NatGatewayId"] for nat in nat_gateways]

        def _nat_gone() -> bool:
            states = ec2.describe_nat_gateways(NatGatewayIds=nat_ids)["NatGateways"]
            return all(nat["State"] == "deleted" for nat in states)

        if not client.poll(_nat_gone):
            raise TimeoutError(f"NAT gateways {nat_ids} in {vpc_id} were not deleted in time")
        for nat in nat_gateways:
            for address in nat.get("NatGatewayAddresses", []):
                if address.get("AllocationId"):
                    _ignore_not_found(ec2.release_address, AllocationId=address["AllocationId"])

    for igw in ec2.describe_internet_gateways(Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}])[
        "InternetGateways"
    ]:
        ec2.detach_internet_gateway(InternetGatewayId=igw["InternetGatewayId"], VpcId=vpc_id)
        ec2.delete_internet_gateway(InternetGatewayId=igw["InternetGatewayId"])

    for subnet in ec2.describe_subnets(Filters=vpc_filter)["Subnets"]:
        ec2.delete_subnet(SubnetId=subnet["SubnetId"])

    for table in ec2.describe_route_tables(Filters=vpc_filter)["RouteTables"]:
        if any(a.get("Main") for a in table.get("Associations", [])):
            continue
        ec2.delete_route_table(RouteTableId=table["RouteTableId"])

    for group in ec2.describe_security_groups(Filters=vpc_filter)["SecurityGroups"]:
        if group["GroupName"] == "default":
            continue
        _ignore_not_found(ec2.delete_security_group, GroupId=group["GroupId"])

    ec2.delete_vpc(VpcId=vpc_id)
    logger.info(f"Deleted VPC chain {vpc_id}")
