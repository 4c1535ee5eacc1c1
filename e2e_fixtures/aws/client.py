"""AWS client factory and fixture-level AWS operations.

AWSClientFactory hands out AWSClient instances bound to either the primary
test account or the shared account. AWSClient wraps the boto3 calls used to
create and delete fixtures.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Optional

import boto3
import botocore.session
from botocore.exceptions import ClientError

from e2e_fixtures.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Error codes meaning the fixture is already gone
NOT_FOUND_CODES = {
    "NoSuchEntity",
    "NotFoundException",
    "NoSuchHostedZone",
    "ResourceNotFoundException",
    "UnknownResourceException",
    "InvalidVpcID.NotFound",
    "InvalidInstanceID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidGroup.NotFound",
    "InvalidKeyPair.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidRouteTableID.NotFound",
    "InvalidAllocationID.NotFound",
    "NatGatewayNotFound",
}

KMS_PENDING_WINDOW_DAYS = 7


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


def is_not_found(error: ClientError) -> bool:
    """Whether a ClientError reports a resource that no longer exists."""
    return error_code(error) in NOT_FOUND_CODES


def create_session(
    region_name: Optional[str] = None,
    profile_name: Optional[str] = None,
    credentials_file: Optional[str] = None,
) -> boto3.Session:
    """Create a boto3 session, optionally bound to a specific credentials file.

    Args:
        region_name: AWS region (optional)
        profile_name: AWS profile name (optional)
        credentials_file: Shared credentials file path (optional)

    Returns:
        boto3 Session
    """
    core_session = botocore.session.Session(profile=profile_name)
    if credentials_file:
        core_session.set_config_variable("credentials_file", credentials_file)
    return boto3.Session(botocore_session=core_session, region_name=region_name or None)


class AWSClient:
    """Fixture operations against one AWS account.

    Attributes:
        session: boto3 session bound to the account credentials
        region: AWS region
        shared_account: True when bound to the shared account
    """

    def __init__(self, session: boto3.Session, region: str = "", shared_account: bool = False) -> None:
        self.session = session
        self.region = region or session.region_name or ""
        self.shared_account = shared_account
        self._clients: dict[str, Any] = {}
        self._account_id: Optional[str] = None

    def client(self, service_name: str) -> Any:
        """Return a cached boto3 client for the service."""
        if service_name not in self._clients:
            self._clients[service_name] = self.session.client(service_name)
        return self._clients[service_name]

    @property
    def ec2(self) -> Any:
        return self.client("ec2")

    @property
    def account_id(self) -> str:
        if self._account_id is None:
            self._account_id = self.client("sts").get_caller_identity()["Account"]
        return self._account_id

    # KMS

    def create_kms_key(
        self,
        description: str,
        multi_region: bool = False,
        tags: Optional[dict[str, str]] = None,
        policy: Optional[dict] = None,
    ) -> str:
        """Create a symmetric KMS key and return its ARN."""
        params: dict[str, Any] = {
            "Description": description,
            "KeyUsage": "ENCRYPT_DECRYPT",
            "MultiRegion": multi_region,
            "Tags": [{"TagKey": k, "TagValue": v} for k, v in (tags or {}).items()],
        }
        if policy is not None:
            params["Policy"] = json.dumps(policy)
        response = self.client("kms").create_key(**params)
        return response["KeyMetadata"]["Arn"]

    def schedule_kms_key_deletion(self, key_id: str, pending_window_days: int = KMS_PENDING_WINDOW_DAYS) -> None:
        """Schedule a KMS key for deletion. Keys already pending deletion are left alone."""
        kms = self.client("kms")
        try:
            metadata = kms.describe_key(KeyId=key_id)["KeyMetadata"]
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"KMS key {key_id} already deleted")
                return
            raise
        if metadata.get("KeyState") in ("PendingDeletion", "PendingReplicaDeletion"):
            logger.info(f"KMS key {key_id} already scheduled for deletion")
            return
        kms.schedule_key_deletion(KeyId=key_id, PendingWindowInDays=pending_window_days)

    # IAM

    def create_role(
        self,
        role_name: str,
        assume_role_policy: dict,
        path: str = "/",
        permissions_boundary: Optional[str] = None,
        tags: Optional[dict[str, str]] = None,
    ) -> str:
        """Create an IAM role and return its ARN."""
        params: dict[str, Any] = {
            "RoleName": role_name,
            "Path": path,
            "AssumeRolePolicyDocument": json.dumps(assume_role_policy),
            "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
        }
        if permissions_boundary:
            params["PermissionsBoundary"] = permissions_boundary
        response = self.client("iam").create_role(**params)
        return response["Role"]["Arn"]

    def create_policy(self, policy_name: str, document: dict, path: str = "/") -> str:
        response = self.client("iam").create_policy(
            PolicyName=policy_name,
            Path=path,
            PolicyDocument=json.dumps(document),
        )
        return response["Policy"]["Arn"]

    def attach_role_policy(self, role_name: str, policy_arn: str) -> None:
        self.client("iam").attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)

    def delete_role(self, role_name: str, managed_policy: bool = True) -> None:
        """Delete an IAM role with its policy attachments.

        Args:
            role_name: Role name or role ARN
            managed_policy: True when attached policies are AWS managed and must
                only be detached; False deletes the detached customer policies too
        """
        iam = self.client("iam")
        role_name = role_name.split("/")[-1]
        try:
            attached = iam.list_attached_role_policies(RoleName=role_name)["AttachedPolicies"]
            for policy in attached:
                iam.detach_role_policy(RoleName=role_name, PolicyArn=policy["PolicyArn"])
                if not managed_policy:
                    self.delete_policy(policy["PolicyArn"])

            for policy_name in iam.list_role_policies(RoleName=role_name)["PolicyNames"]:
                iam.delete_role_policy(RoleName=role_name, PolicyName=policy_name)

            profiles = iam.list_instance_profiles_for_role(RoleName=role_name)["InstanceProfiles"]
            for profile in profiles:
                iam.remove_role_from_instance_profile(
                    InstanceProfileName=profile["InstanceProfileName"], RoleName=role_name
                )

            iam.delete_role(RoleName=role_name)
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"IAM role {role_name} already deleted")
                return
            raise

    def delete_policy(self, policy_arn: str) -> None:
        iam = self.client("iam")
        if policy_arn.startswith("arn:aws:iam::aws:policy/"):
            return
        versions = iam.list_policy_versions(PolicyArn=policy_arn)["Versions"]
        for version in versions:
            if not version["IsDefaultVersion"]:
                iam.delete_policy_version(PolicyArn=policy_arn, VersionId=version["VersionId"])
        iam.delete_policy(PolicyArn=policy_arn)

    def oidc_provider_arn(self, issuer_url: str) -> str:
        issuer = issuer_url.replace("https://", "").rstrip("/")
        return f"arn:aws:iam::{self.account_id}:oidc-provider/{issuer}"

    # Route53

    def create_hosted_zone(self, name: str, vpc_id: Optional[str] = None, private: bool = False) -> str:
        """Create a hosted zone and return its bare id (without /hostedzone/)."""
        params: dict[str, Any] = {
            "Name": name,
            "CallerReference": f"{name}-{uuid.uuid4()}",
            "HostedZoneConfig": {"Comment": "e2e fixture", "PrivateZone": private},
        }
        if private:
            if not vpc_id:
                raise ValueError("Private hosted zones require a VPC id")
            params["VPC"] = {"VPCRegion": self.region, "VPCId": vpc_id}
        response = self.client("route53").create_hosted_zone(**params)
        return response["HostedZone"]["Id"].split("/")[-1]

    def delete_hosted_zone(self, zone_id: str) -> None:
        """Delete every non-apex record set, then the zone itself."""
        route53 = self.client("route53")
        try:
            zone = route53.get_hosted_zone(Id=zone_id)["HostedZone"]
            changes = []
            paginator = route53.get_paginator("list_resource_record_sets")
            for page in paginator.paginate(HostedZoneId=zone_id):
                for record_set in page["ResourceRecordSets"]:
                    if record_set["Type"] in ("SOA", "NS") and record_set["Name"] == zone["Name"]:
                        continue
                    changes.append({"Action": "DELETE", "ResourceRecordSet": record_set})
            if changes:
                route53.change_resource_record_sets(HostedZoneId=zone_id, ChangeBatch={"Changes": changes})
            route53.delete_hosted_zone(Id=zone_id)
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"Hosted zone {zone_id} already deleted")
                return
            raise

    # RAM

    def create_resource_share(self, name: str, resource_arns: list[str], principals: list[str]) -> str:
        response = self.client("ram").create_resource_share(
            name=name,
            resourceArns=resource_arns,
            principals=principals,
            allowExternalPrincipals=True,
        )
        return response["resourceShare"]["resourceShareArn"]

    def delete_resource_share(self, resource_share_arn: str) -> None:
        try:
            self.client("ram").delete_resource_share(resourceShareArn=resource_share_arn)
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"Resource share {resource_share_arn} already deleted")
                return
            raise

    # EC2 waiting helper shared with network operations

    def wait(self, waiter_name: str, delay: int = 15, max_attempts: int = 40, **kwargs: Any) -> None:
        waiter = self.ec2.get_waiter(waiter_name)
        waiter.wait(WaiterConfig={"Delay": delay, "MaxAttempts": max_attempts}, **kwargs)

    def poll(self, check, timeout: int = 600, interval: int = 15) -> bool:
        """Poll `check()` until it returns True or the timeout expires."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if check():
                return True
            time.sleep(interval)
        return False


class AWSClientFactory:
    """Hands out AWS clients for the primary or the shared account.

    Attributes:
        credentials_file: Credentials file for the primary account (optional,
            falls back to the default credential chain)
        shared_account_credentials_file: Credentials file for the shared account (optional)
        profile_name: AWS profile name (optional)
    """

    def __init__(
        self,
        credentials_file: Optional[str] = None,
        shared_account_credentials_file: Optional[str] = None,
        profile_name: Optional[str] = None,
    ) -> None:
        self.credentials_file = credentials_file
        self.shared_account_credentials_file = shared_account_credentials_file
        self.profile_name = profile_name

    @classmethod
    def from_config(cls, config) -> "AWSClientFactory":
        return cls(
            credentials_file=config.aws_credentials_file,
            shared_account_credentials_file=config.aws_shared_account_credentials_file,
        )

    def get_client(self, region: str, use_shared_account: bool = False) -> AWSClient:
        """Create a client for the requested account.

        Raises:
            ConfigurationError: If the shared account is requested but no
                shared account credentials file was configured
        """
        if use_shared_account:
            if not self.shared_account_credentials_file:
                raise ConfigurationError(
                    "The shared AWS account credentials file is empty. "
                    "Set it with SHARED_VPC_AWS_SHARED_CREDENTIALS_FILE"
                )
            session = create_session(region, credentials_file=self.shared_account_credentials_file)
            return AWSClient(session, region=region, shared_account=True)

        session = create_session(region, self.profile_name, self.credentials_file)
        return AWSClient(session, region=region)
