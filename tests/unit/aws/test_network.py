"""Tests for VPC chain, subnet and proxy operations."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock, call

import pytest
from botocore.exceptions import ClientError

from e2e_fixtures.aws import network
from e2e_fixtures.models.vpc import VPC, Subnet


def _client(ec2: Mock) -> Mock:
    client = Mock()
    client.ec2 = ec2
    client.region = "us-east-2"
    client.poll.return_value = True
    return client


def _populated_ec2() -> Mock:
    ec2 = Mock()
    ec2.describe_vpcs.return_value = {"Vpcs": [{"VpcId": "vpc-1"}]}
    ec2.describe_instances.return_value = {
        "Reservations": [
            {
                "Instances": [
                    {"InstanceId": "i-running", "State": {"Name": "running"}},
                    {"InstanceId": "i-done", "State": {"Name": "terminated"}},
                ]
            }
        ]
    }
    ec2.describe_nat_gateways.return_value = {
        "NatGateways": [
            {
                "NatGatewayId": "nat-1",
                "State": "available",
                "NatGatewayAddresses": [{"AllocationId": "eipalloc-1"}],
            }
        ]
    }
    ec2.describe_internet_gateways.return_value = {"InternetGateways": [{"InternetGatewayId": "igw-1"}]}
    ec2.describe_subnets.return_value = {"Subnets": [{"SubnetId": "subnet-1"}, {"SubnetId": "subnet-2"}]}
    ec2.describe_route_tables.return_value = {
        "RouteTables": [
            {"RouteTableId": "rtb-main", "Associations": [{"Main": True}]},
            {"RouteTableId": "rtb-public", "Associations": [{"Main": False, "SubnetId": "subnet-1"}]},
        ]
    }
    ec2.describe_security_groups.return_value = {
        "SecurityGroups": [
            {"GroupId": "sg-default", "GroupName": "default"},
            {"GroupId": "sg-proxy", "GroupName": "proxy"},
        ]
    }
    return ec2


class TestDeleteVpcChain:
    """Test suite for delete_vpc_chain."""

    def test_deletes_dependents_before_vpc(self) -> None:
        ec2 = _populated_ec2()
        client = _client(ec2)

        network.delete_vpc_chain(client, "vpc-1")

        ec2.terminate_instances.assert_called_once_with(InstanceIds=["i-running"])
        ec2.delete_nat_gateway.assert_called_once_with(NatGatewayId="nat-1")
        ec2.release_address.assert_called_once_with(AllocationId="eipalloc-1")
        ec2.detach_internet_gateway.assert_called_once_with(InternetGatewayId="igw-1", VpcId="vpc-1")
        ec2.delete_route_table.assert_called_once_with(RouteTableId="rtb-public")
        ec2.delete_security_group.assert_called_once_with(GroupId="sg-proxy")
        ec2.delete_vpc.assert_called_once_with(VpcId="vpc-1")

        names = [c[0] for c in ec2.method_calls]
        assert names.index("terminate_instances") < names.index("delete_nat_gateway")
        assert names.index("delete_nat_gateway") < names.index("delete_internet_gateway")
        assert names.index("delete_subnet") < names.index("delete_route_table")
        assert names.index("delete_security_group") < names.index("delete_vpc")
        assert names[-1] == "delete_vpc"

    def test_missing_vpc_is_already_deleted(self) -> None:
        ec2 = Mock()
        ec2.describe_vpcs.side_effect = ClientError(
            {"Error": {"Code": "InvalidVpcID.NotFound", "Message": "gone"}}, "DescribeVpcs"
        )

        network.delete_vpc_chain(_client(ec2), "vpc-1")

        ec2.delete_vpc.assert_not_called()

    def test_nat_gateway_timeout_raises(self) -> None:
        ec2 = _populated_ec2()
        client = _client(ec2)
        client.poll.return_value = False

        with pytest.raises(TimeoutError, match="nat-1"):
            network.delete_vpc_chain(client, "vpc-1")

        ec2.delete_vpc.assert_not_called()


class TestCleanupProxy:
    """Test suite for cleanup_proxy."""

    def test_terminates_instance_and_tagged_resources(self) -> None:
        ec2 = Mock()
        ec2.describe_instances.return_value = {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-proxy",
                            "State": {"Name": "running"},
                            "Tags": [
                                {"Key": network.PROXY_KEY_TAG, "Value": "e2e-key"},
                                {"Key": network.PROXY_SG_TAG, "Value": "sg-proxy"},
                            ],
                        }
                    ]
                }
            ]
        }
        client = _client(ec2)

        network.cleanup_proxy(client, "i-proxy")

        ec2.terminate_instances.assert_called_once_with(InstanceIds=["i-proxy"])
        client.wait.assert_called_once_with("instance_terminated", InstanceIds=["i-proxy"])
        ec2.delete_key_pair.assert_called_once_with(KeyName="e2e-key")
        ec2.delete_security_group.assert_called_once_with(GroupId="sg-proxy")

    def test_missing_instance_is_already_deleted(self) -> None:
        ec2 = Mock()
        ec2.describe_instances.side_effect = ClientError(
            {"Error": {"Code": "InvalidInstanceID.NotFound", "Message": "gone"}}, "DescribeInstances"
        )

        network.cleanup_proxy(_client(ec2), "i-proxy")

        ec2.terminate_instances.assert_not_called()


class TestCreation:
    """Test suite for VPC and subnet creation."""

    def test_plan_subnet_cidrs(self) -> None:
        assert network.plan_subnet_cidrs("10.0.0.0/16", 2) == ["10.0.0.0/17", "10.0.128.0/17"]
        assert len(network.plan_subnet_cidrs("10.0.0.0/16", 6)) == 6

    def test_plan_subnet_cidrs_too_small(self) -> None:
        with pytest.raises(ValueError, match="too small"):
            network.plan_subnet_cidrs("10.0.0.0/28", 2)

    def test_create_vpc(self) -> None:
        ec2 = Mock()
        ec2.create_vpc.return_value = {"Vpc": {"VpcId": "vpc-new"}}
        client = _client(ec2)

        vpc = network.create_vpc(client, "e2e-vpc", "10.0.0.0/16")

        assert vpc == VPC(vpc_id="vpc-new", name="e2e-vpc", cidr="10.0.0.0/16", region="us-east-2")
        client.wait.assert_called_once_with("vpc_available", VpcIds=["vpc-new"])
        ec2.modify_vpc_attribute.assert_has_calls(
            [
                call(VpcId="vpc-new", EnableDnsSupport={"Value": True}),
                call(VpcId="vpc-new", EnableDnsHostnames={"Value": True}),
            ]
        )

    def test_create_subnets_single_zone(self) -> None:
        ec2 = Mock()
        ec2.create_internet_gateway.return_value = {"InternetGateway": {"InternetGatewayId": "igw-1"}}
        ec2.create_route_table.side_effect = [
            {"RouteTable": {"RouteTableId": "rtb-public"}},
            {"RouteTable": {"RouteTableId": "rtb-private"}},
        ]
        ec2.create_subnet.side_effect = [
            {"Subnet": {"SubnetId": "subnet-pub"}},
            {"Subnet": {"SubnetId": "subnet-priv"}},
        ]
        ec2.allocate_address.return_value = {"AllocationId": "eipalloc-1"}
        ec2.create_nat_gateway.return_value = {"NatGateway": {"NatGatewayId": "nat-1"}}
        vpc = VPC(vpc_id="vpc-1", name="e2e", cidr="10.0.0.0/16")

        network.create_subnets(_client(ec2), vpc, ["us-east-2a", "us-east-2b"], multi_zone=False)

        assert vpc.subnets_by_kind() == {"public": ["subnet-pub"], "private": ["subnet-priv"]}
        assert vpc.internet_gateway_id == "igw-1"
        assert vpc.nat_gateway_ids == ["nat-1"]
        ec2.create_nat_gateway.assert_called_once()
        assert ec2.create_nat_gateway.call_args.kwargs["SubnetId"] == "subnet-pub"

    def test_create_subnets_requires_zone(self) -> None:
        with pytest.raises(ValueError, match="zone"):
            network.create_subnets(_client(Mock()), VPC(vpc_id="vpc-1", cidr="10.0.0.0/16"), [])

    def test_find_vpc_by_name_missing(self) -> None:
        ec2 = Mock()
        ec2.describe_vpcs.return_value = {"Vpcs": []}

        assert network.find_vpc_by_name(_client(ec2), "e2e") is None

    def test_find_vpc_by_name_classifies_subnets(self) -> None:
        ec2 = Mock()
        ec2.describe_vpcs.return_value = {"Vpcs": [{"VpcId": "vpc-1", "CidrBlock": "10.0.0.0/16"}]}
        ec2.describe_route_tables.return_value = {
            "RouteTables": [
                {"Routes": [{"GatewayId": "igw-1"}], "Associations": [{"SubnetId": "subnet-pub"}]},
                {"Routes": [{"NatGatewayId": "nat-1"}], "Associations": [{"SubnetId": "subnet-priv"}]},
            ]
        }
        ec2.describe_subnets.return_value = {
            "Subnets": [
                {"SubnetId": "subnet-pub", "AvailabilityZone": "us-east-2a", "CidrBlock": "10.0.0.0/17"},
                {"SubnetId": "subnet-priv", "AvailabilityZone": "us-east-2a", "CidrBlock": "10.0.128.0/17"},
            ]
        }

        vpc = network.find_vpc_by_name(_client(ec2), "e2e")

        assert vpc.vpc_id == "vpc-1"
        assert vpc.all_public_subnet_ids() == ["subnet-pub"]
        assert vpc.all_private_subnet_ids() == ["subnet-priv"]

    def test_launch_proxy_requires_public_subnet(self, tmp_path: Path) -> None:
        vpc = VPC(vpc_id="vpc-1", subnets=[Subnet("subnet-priv", "us-east-2a", "10.0.0.0/24")])

        with pytest.raises(ValueError, match="no public subnet"):
            network.launch_proxy(_client(Mock()), vpc, "us-east-2a", "key", tmp_path / "key.pem")


class TestLaunchProxy:
    """Test suite for proxy launch and its rollback."""

    @pytest.fixture
    def vpc(self) -> VPC:
        return VPC(
            vpc_id="vpc-1",
            name="e2e",
            cidr="10.0.0.0/16",
            subnets=[Subnet("subnet-pub", "us-east-2a", "10.0.0.0/24", public=True)],
        )

    @pytest.fixture
    def client(self) -> Mock:
        ec2 = Mock()
        ec2.create_key_pair.return_value = {"KeyMaterial": "PRIVATE"}
        ec2.create_security_group.return_value = {"GroupId": "sg-proxy"}
        ec2.run_instances.return_value = {"Instances": [{"InstanceId": "i-proxy"}]}
        ec2.describe_instances.return_value = {
            "Reservations": [{"Instances": [{"PrivateIpAddress": "10.0.0.5", "PublicIpAddress": "3.3.3.3"}]}]
        }
        client = _client(ec2)
        client.client.return_value.get_parameter.return_value = {"Parameter": {"Value": "ami-1"}}
        return client

    def test_launch_proxy(self, client: Mock, vpc: VPC, tmp_path: Path) -> None:
        pem_file = tmp_path / "keys" / "key.pem"

        proxy = network.launch_proxy(client, vpc, "us-east-2a", "key", pem_file)

        assert proxy.instance_id == "i-proxy"
        assert proxy.http_proxy == "http://10.0.0.5:8080"
        assert pem_file.read_text() == "PRIVATE"

    def test_run_instances_failure_removes_key_and_security_group(
        self, client: Mock, vpc: VPC, tmp_path: Path
    ) -> None:
        pem_file = tmp_path / "key.pem"
        client.ec2.run_instances.side_effect = ClientError(
            {"Error": {"Code": "InsufficientInstanceCapacity", "Message": "x"}}, "RunInstances"
        )

        with pytest.raises(ClientError):
            network.launch_proxy(client, vpc, "us-east-2a", "key", pem_file)

        client.ec2.terminate_instances.assert_not_called()
        client.ec2.delete_security_group.assert_called_once_with(GroupId="sg-proxy")
        client.ec2.delete_key_pair.assert_called_once_with(KeyName="key")
        assert not pem_file.exists()

    def test_wait_failure_terminates_instance(self, client: Mock, vpc: VPC, tmp_path: Path) -> None:
        client.wait.side_effect = [TimeoutError("still pending"), None]

        with pytest.raises(TimeoutError):
            network.launch_proxy(client, vpc, "us-east-2a", "key", tmp_path / "key.pem")

        client.ec2.terminate_instances.assert_called_once_with(InstanceIds=["i-proxy"])
        client.ec2.delete_security_group.assert_called_once_with(GroupId="sg-proxy")
        client.ec2.delete_key_pair.assert_called_once_with(KeyName="key")

    def test_rollback_failure_keeps_original_error(self, client: Mock, vpc: VPC, tmp_path: Path) -> None:
        client.ec2.run_instances.side_effect = ClientError({"Error": {"Code": "Boom", "Message": "x"}}, "RunInstances")
        client.ec2.delete_security_group.side_effect = ClientError(
            {"Error": {"Code": "DependencyViolation", "Message": "x"}}, "DeleteSecurityGroup"
        )

        with pytest.raises(ClientError, match="Boom"):
            network.launch_proxy(client, vpc, "us-east-2a", "key", tmp_path / "key.pem")

        client.ec2.delete_key_pair.assert_called_once_with(KeyName="key")
