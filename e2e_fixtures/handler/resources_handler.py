"""Resource lifecycle handler.

Creates fixtures, records them in a resource record persisted after every
change, and tears them all down again in dependency order. A later process can
load the record and finish a cleanup an earlier process started.
"""

from __future__ import annotations

import logging
import subprocess
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError

from e2e_fixtures.aws import network
from e2e_fixtures.aws.client import AWSClient, AWSClientFactory
from e2e_fixtures.config import Config
from e2e_fixtures.controlplane.cli import ControlPlaneClient
from e2e_fixtures.errors import CommandError, CreationError, DeletionError, PersistenceError
from e2e_fixtures.handler.audit import AuditStorage
from e2e_fixtures.handler.teardown import build_teardown_plan
from e2e_fixtures.models.resources import Resources
from e2e_fixtures.models.teardown import DestroyPass, TeardownRecord, TeardownStatus
from e2e_fixtures.models.vpc import VPC, ProxyDetail
from e2e_fixtures.storage.resources_storage import ResourcesStorage

logger = logging.getLogger(__name__)

# Failures of external calls that are reported as creation/deletion errors
OPERATION_ERRORS = (
    ClientError,
    BotoCoreError,
    CommandError,
    subprocess.SubprocessError,
    TimeoutError,
    ValueError,
    OSError,
)

ADDITIONAL_PRINCIPALS_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/ROSAControlPlaneOperatorPolicy"
AUDIT_LOG_SERVICE_ACCOUNT = "system:serviceaccount:openshift-config-managed:cloudwatch-audit-exporter"


class _RecordField:
    """Read-only accessor for one resource record field."""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, handler: Optional["ResourcesHandler"], owner: Optional[type] = None):
        if handler is None:
            return self
        return getattr(handler._resources, self.name)

    def __set__(self, handler: "ResourcesHandler", value: str) -> None:
        raise AttributeError(f"{self.name} is read-only, use register_{self.name}()")


@contextmanager
def _creating(fixture: str) -> Iterator[None]:
    try:
        yield
    except OPERATION_ERRORS as e:
        logger.error(f"Error happened when create {fixture}: {e}")
        raise CreationError(fixture, str(e)) from e


@contextmanager
def _deleting(fixture: str, identifier: str) -> Iterator[None]:
    try:
        yield
    except OPERATION_ERRORS as e:
        raise DeletionError(fixture, identifier, str(e)) from e


def _trust_policy(principal_arns: list[str]) -> dict:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"AWS": principal_arns},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def _allow_policy(actions: list[str], resource: str = "*") -> dict:
    return {
        "Version": "2012-10-17",
        "Statement": [{"Effect": "Allow", "Action": actions, "Resource": resource}],
    }


def _remove_partial_roles(client: AWSClient, role_names: list[str], policy_arns: list[str]) -> None:
    """Remove roles and unattached policies left by a failed multi-role creation.

    Failures are logged so the creation error stays the one raised.
    """
    for role_name in reversed(role_names):
        logger.warning(f"Removing {role_name} after failed hostedcp shared role creation")
        try:
            client.delete_role(role_name, managed_policy=False)
        except OPERATION_ERRORS as e:
            logger.error(f"Failed to remove {role_name}: {e}")
    for policy_arn in policy_arns:
        try:
            client.delete_policy(policy_arn)
        except OPERATION_ERRORS as e:
            logger.error(f"Failed to remove policy {policy_arn}: {e}")


class ResourcesHandler:
    """Resource lifecycle orchestrator.

    Owns the resource record exclusively: every change goes through a
    register_* method, which persists the record before returning. The cached
    VPC handle lives beside the record and is never persisted itself.

    Attributes:
        storage: Record persistence
        client_factory: AWS client factory for primary and shared accounts
        control_plane: Control-plane CLI client
        persist: Whether changes are written to storage
        audit_storage: Destroy pass audit log (optional)
        last_destroy_pass: Report of the most recent destroy pass (optional)
    """

    account_roles_prefix = _RecordField()
    operator_roles_prefix = _RecordField()
    oidc_config_id = _RecordField()
    kms_key = _RecordField()
    etcd_kms_key = _RecordField()
    audit_log_arn = _RecordField()
    dns_domain = _RecordField()
    ingress_hosted_zone_id = _RecordField()
    hosted_cp_internal_hosted_zone_id = _RecordField()
    vpc_id = _RecordField()
    proxy_instance_id = _RecordField()
    resource_share_arn = _RecordField()
    shared_vpc_role = _RecordField()
    hcp_route53_share_role = _RecordField()
    hcp_vpc_endpoint_share_role = _RecordField()
    additional_principals = _RecordField()
    region = _RecordField()

    def __init__(
        self,
        resources: Resources,
        storage: ResourcesStorage,
        client_factory: AWSClientFactory,
        control_plane: ControlPlaneClient,
        persist: bool = True,
        audit_storage: Optional[AuditStorage] = None,
    ) -> None:
        self._resources = resources
        self._vpc: Optional[VPC] = None
        self.storage = storage
        self.client_factory = client_factory
        self.control_plane = control_plane
        self.persist = persist
        self.audit_storage = audit_storage
        self.last_destroy_pass: Optional[DestroyPass] = None

    @classmethod
    def persisted(
        cls,
        region: Optional[str] = None,
        control_plane: Optional[ControlPlaneClient] = None,
        config: Optional[Config] = None,
    ) -> "ResourcesHandler":
        """Handler for a fresh record written through to the filesystem.

        The region defaults to the configured one.
        """
        config = config or Config.load()
        resources = Resources(region=region or config.region)
        return cls._build(resources, persist=True, control_plane=control_plane, config=config)

    @classmethod
    def ephemeral(
        cls,
        region: Optional[str] = None,
        control_plane: Optional[ControlPlaneClient] = None,
        config: Optional[Config] = None,
    ) -> "ResourcesHandler":
        """Handler for a fresh record that is never written to the filesystem.

        For test cases managing their own cleanup; several of them can run in
        parallel without clobbering the shared record file. Do not forget to
        destroy the resources afterwards.
        """
        config = config or Config.load()
        resources = Resources(region=region or config.region)
        return cls._build(resources, persist=False, control_plane=control_plane, config=config)

    @classmethod
    def from_filesystem(
        cls,
        control_plane: Optional[ControlPlaneClient] = None,
        config: Optional[Config] = None,
    ) -> "ResourcesHandler":
        """Handler resuming from the record saved on the filesystem.

        The region comes from the stored record.

        Raises:
            LoadError: If the stored record cannot be parsed
            PersistenceError: If the stored record cannot be read
        """
        config = config or Config.load()
        storage = ResourcesStorage.from_config(config)
        try:
            resources = storage.load()
        except PersistenceError as e:
            logger.error(f"Error happened when parse resource file data to resources record: {e}")
            raise
        return cls._build(resources, persist=True, control_plane=control_plane, config=config, storage=storage)

    @classmethod
    def _build(
        cls,
        resources: Resources,
        persist: bool,
        control_plane: Optional[ControlPlaneClient],
        config: Optional[Config],
        storage: Optional[ResourcesStorage] = None,
    ) -> "ResourcesHandler":
        config = config or Config.load()
        return cls(
            resources=resources,
            storage=storage or ResourcesStorage.from_config(config),
            client_factory=AWSClientFactory.from_config(config),
            control_plane=control_plane or ControlPlaneClient(binary=config.control_plane_cli),
            persist=persist,
            audit_storage=AuditStorage(str(config.audit_dir)) if persist else None,
        )

    # Accessors

    @property
    def resources(self) -> Resources:
        """Copy of the current record."""
        return self._resources.copy()

    @property
    def vpc(self) -> Optional[VPC]:
        return self._vpc

    def is_vpc_from_shared_account(self) -> bool:
        return self._resources.vpc_in_shared_account()

    def get_aws_client(self, use_shared_account: bool = False) -> AWSClient:
        """AWS client for the primary or the shared account.

        Raises:
            ConfigurationError: If the shared account has no credentials configured
        """
        return self.client_factory.get_client(self._resources.region, use_shared_account)

    # Persistence

    def _save(self) -> None:
        if not self.persist:
            logger.debug("Ignoring save to file as per configuration")
            return
        self.storage.save(self._resources, self._vpc)

    # Register operations

    def register_account_roles_prefix(self, account_roles_prefix: str) -> None:
        self._resources.account_roles_prefix = account_roles_prefix
        self._save()

    def register_operator_roles_prefix(self, operator_roles_prefix: str) -> None:
        self._resources.operator_roles_prefix = operator_roles_prefix
        self._save()

    def register_oidc_config_id(self, oidc_config_id: str) -> None:
        self._resources.oidc_config_id = oidc_config_id
        self._save()

    def register_kms_key(self, kms_key: str) -> None:
        self._resources.kms_key = kms_key
        self._save()

    def register_etcd_kms_key(self, etcd_kms_key: str) -> None:
        self._resources.etcd_kms_key = etcd_kms_key
        self._save()

    def register_audit_log_arn(self, audit_log_arn: str) -> None:
        self._resources.audit_log_arn = audit_log_arn
        self._save()

    def register_dns_domain(self, dns_domain: str) -> None:
        self._resources.dns_domain = dns_domain
        self._save()

    def register_ingress_hosted_zone_id(self, hosted_zone_id: str) -> None:
        self._resources.ingress_hosted_zone_id = hosted_zone_id
        self._save()

    def register_hosted_cp_internal_hosted_zone_id(self, hosted_zone_id: str) -> None:
        self._resources.hosted_cp_internal_hosted_zone_id = hosted_zone_id
        self._save()

    def register_proxy_instance_id(self, proxy_instance_id: str) -> None:
        self._resources.proxy_instance_id = proxy_instance_id
        self._save()

    def register_resource_share_arn(self, resource_share_arn: str) -> None:
        self._resources.resource_share_arn = resource_share_arn
        self._save()

    def register_shared_vpc_role(self, shared_vpc_role: str) -> None:
        self._resources.shared_vpc_role = shared_vpc_role
        self._save()

    def register_hcp_route53_share_role(self, role: str) -> None:
        self._resources.hcp_route53_share_role = role
        self._save()

    def register_hcp_vpc_endpoint_share_role(self, role: str) -> None:
        self._resources.hcp_vpc_endpoint_share_role = role
        self._save()

    def register_additional_principals(self, additional_principals: str, from_shared_account: bool = True) -> None:
        """Register the additional principals role. Clearing it also clears its provenance flag."""
        self._resources.additional_principals = additional_principals
        self._resources.shared_account_flags().additional_principals = bool(
            additional_principals and from_shared_account
        )
        self._save()

    def register_vpc_id(self, vpc_id: str, from_shared_account: bool) -> None:
        """Register the VPC id. Clearing it also drops the cached VPC handle and provenance flag."""
        self._resources.vpc_id = vpc_id
        self._resources.shared_account_flags().vpc = bool(vpc_id and from_shared_account)
        if not vpc_id:
            self._vpc = None
        self._save()

    def register_vpc(self, vpc: Optional[VPC]) -> None:
        """Cache the full VPC handle and refresh the auxiliary VPC files."""
        self._vpc = vpc
        self._save()

    # Prepare operations

    def prepare_prefix(self, profile_prefix: str, name_length: int) -> str:
        """Trim a name prefix to `name_length` characters without a trailing dash."""
        if len(profile_prefix) > name_length:
            profile_prefix = profile_prefix[:name_length]
        return profile_prefix.rstrip("-")

    def prepare_account_roles(
        self,
        name_prefix: str,
        hosted_cp: bool = False,
        openshift_version: str = "",
        channel_group: str = "",
        path: str = "",
        permissions_boundary: str = "",
        route53_role_arn: str = "",
        vpc_endpoint_role_arn: str = "",
    ) -> str:
        with _creating("account roles"):
            self.control_plane.create_account_roles(
                name_prefix,
                hosted_cp=hosted_cp,
                version=openshift_version,
                channel_group=channel_group,
                path=path,
                permissions_boundary=permissions_boundary,
                route53_role_arn=route53_role_arn,
                vpc_endpoint_role_arn=vpc_endpoint_role_arn,
            )
        self.register_account_roles_prefix(name_prefix)
        return name_prefix

    def prepare_operator_roles_by_oidc_config(
        self,
        name_prefix: str,
        oidc_config_id: str,
        role_arn: str,
        shared_route53_role_arn: str = "",
        shared_vpc_endpoint_role_arn: str = "",
        hosted_cp: bool = False,
        channel_group: str = "",
    ) -> None:
        with _creating("operator roles"):
            self.control_plane.create_operator_roles(
                name_prefix,
                oidc_config_id,
                role_arn,
                shared_route53_role_arn=shared_route53_role_arn,
                shared_vpc_endpoint_role_arn=shared_vpc_endpoint_role_arn,
                hosted_cp=hosted_cp,
                channel_group=channel_group,
            )
        self.register_operator_roles_prefix(name_prefix)

    def prepare_operator_roles_by_cluster(self, cluster_id: str) -> None:
        """Create operator roles for a cluster. They are removed with the cluster, not registered."""
        with _creating("operator roles"):
            self.control_plane.create_operator_roles_by_cluster(cluster_id)

    def prepare_oidc_config(self, oidc_config_type: str, role_arn: str = "", prefix: str = "") -> str:
        """Create a "managed" or "unmanaged" OIDC configuration and register its id."""
        if oidc_config_type not in ("managed", "unmanaged"):
            raise CreationError("oidc config", f"unknown OIDC config type '{oidc_config_type}'")
        with _creating("oidc config"):
            oidc_config_id = self.control_plane.create_oidc_config(
                managed=oidc_config_type == "managed", installer_role_arn=role_arn, prefix=prefix
            )
        self.register_oidc_config_id(oidc_config_id)
        return oidc_config_id

    def prepare_oidc_provider(self, oidc_config_id: str) -> None:
        with _creating("oidc provider"):
            self.control_plane.create_oidc_provider(oidc_config_id)

    def prepare_oidc_provider_by_cluster(self, cluster_id: str) -> None:
        with _creating("oidc provider"):
            self.control_plane.create_oidc_provider_by_cluster(cluster_id)

    def prepare_kms_key(self, multi_region: bool, test_client: str, hosted_cp: bool, etcd_kms: bool) -> str:
        """Create a KMS key and register it as the control-plane or the etcd key."""
        kind = "etcd" if etcd_kms else "control-plane"
        tags = {"e2e-test-client": test_client, "e2e-key-kind": kind}
        if hosted_cp:
            tags["e2e-hosted-cp"] = "true"
        with _creating(f"{kind} kms key"):
            key_arn = self.get_aws_client().create_kms_key(
                description=f"e2e {kind} key for {test_client}",
                multi_region=multi_region,
                tags=tags,
            )
        if etcd_kms:
            self.register_etcd_kms_key(key_arn)
        else:
            self.register_kms_key(key_arn)
        return key_arn

    def prepare_audit_log_role_arn_by_oidc_config(self, audit_log_role_name: str, oidc_config_id: str) -> str:
        with _creating("audit log role"):
            issuer_url = self.control_plane.describe_oidc_issuer(oidc_config_id)
        return self.prepare_audit_log_role_arn_by_issuer(audit_log_role_name, issuer_url)

    def prepare_audit_log_role_arn_by_issuer(self, audit_log_role_name: str, oidc_issuer_url: str) -> str:
        """Create the audit log forwarding role trusted by the cluster OIDC issuer."""
        issuer = oidc_issuer_url.replace("https://", "").rstrip("/")
        with _creating("audit log role"):
            client = self.get_aws_client()
            trust = {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Effect": "Allow",
                        "Principal": {"Federated": client.oidc_provider_arn(oidc_issuer_url)},
                        "Action": "sts:AssumeRoleWithWebIdentity",
                        "Condition": {"StringEquals": {f"{issuer}:sub": AUDIT_LOG_SERVICE_ACCOUNT}},
                    }
                ],
            }
            role_arn = client.create_role(audit_log_role_name, trust)
            policy_arn = client.create_policy(
                f"{audit_log_role_name}-policy",
                _allow_policy(
                    [
                        "logs:PutLogEvents",
                        "logs:CreateLogGroup",
                        "logs:PutRetentionPolicy",
                        "logs:CreateLogStream",
                        "logs:DescribeLogGroups",
                        "logs:DescribeLogStreams",
                    ]
                ),
            )
            client.attach_role_policy(audit_log_role_name, policy_arn)
        self.register_audit_log_arn(role_arn)
        return role_arn

    def prepare_hosted_zone(
        self,
        hosted_zone_name: str,
        vpc_id: str = "",
        private: bool = False,
        hosted_cp_internal: bool = False,
    ) -> str:
        """Create a hosted zone in the account owning the VPC.

        Registered as the hosted control plane internal zone when
        `hosted_cp_internal` is set, as the ingress zone otherwise.
        """
        with _creating("hosted zone"):
            client = self.get_aws_client(self.is_vpc_from_shared_account())
            zone_id = client.create_hosted_zone(hosted_zone_name, vpc_id=vpc_id or None, private=private)
        if hosted_cp_internal:
            self.register_hosted_cp_internal_hosted_zone_id(zone_id)
        else:
            self.register_ingress_hosted_zone_id(zone_id)
        return zone_id

    def prepare_dns_domain(self, hosted_cp: bool = False) -> str:
        with _creating("dns domain"):
            dns_domain = self.control_plane.create_dns_domain(hosted_cp=hosted_cp)
        self.register_dns_domain(dns_domain)
        return dns_domain

    def prepare_shared_vpc_role(
        self, shared_vpc_role_prefix: str, installer_role_arn: str, ingress_operator_role_arn: str
    ) -> tuple[str, str]:
        """Create the classic shared VPC role in the shared account.

        Returns:
            Tuple of (role_name, role_arn)
        """
        role_name = f"{shared_vpc_role_prefix}-shared-vpc-role"
        with _creating("shared vpc role"):
            client = self.get_aws_client(use_shared_account=True)
            role_arn = client.create_role(role_name, _trust_policy([installer_role_arn, ingress_operator_role_arn]))
            policy_arn = client.create_policy(
                f"{shared_vpc_role_prefix}-shared-vpc-policy",
                _allow_policy(
                    [
                        "route53:GetChange",
                        "route53:GetHostedZone",
                        "route53:ChangeResourceRecordSets",
                        "route53:ListHostedZones",
                        "route53:ListHostedZonesByName",
                        "route53:ListResourceRecordSets",
                        "route53:ChangeTagsForResource",
                        "route53:GetAccountLimit",
                        "route53:ListTagsForResource",
                        "elasticloadbalancing:DescribeLoadBalancers",
                        "tag:GetResources",
                    ]
                ),
            )
            client.attach_role_policy(role_name, policy_arn)
        self.register_shared_vpc_role(role_name)
        return role_name, role_arn

    def prepare_hosted_cp_shared_vpc_roles(
        self,
        shared_vpc_role_prefix: str,
        installer_role_arn: str,
        ingress_operator_role_arn: str,
        control_plane_operator_role_arn: str,
    ) -> tuple[str, str]:
        """Create the hosted control plane Route53 and VPC endpoint share roles.

        Both are created before anything is registered. If any call fails,
        the roles and unattached policies created so far are removed again.

        Returns:
            Tuple of (route53_role_arn, vpc_endpoint_role_arn)
        """
        route53_role = f"{shared_vpc_role_prefix}-route53-role"
        endpoint_role = f"{shared_vpc_role_prefix}-vpc-endpoint-role"
        with _creating("hostedcp shared vpc roles"):
            client = self.get_aws_client(use_shared_account=True)
            created_roles: list[str] = []
            detached_policies: list[str] = []
            try:
                route53_arn = client.create_role(
                    route53_role,
                    _trust_policy([installer_role_arn, ingress_operator_role_arn, control_plane_operator_role_arn]),
                )
                created_roles.append(route53_role)
                route53_policy = client.create_policy(
                    f"{route53_role}-policy",
                    _allow_policy(["route53:ChangeResourceRecordSets", "route53:ListResourceRecordSets",
                                   "route53:GetHostedZone", "route53:ListHostedZones", "route53:GetChange",
                                   "route53:ChangeTagsForResource", "route53:ListTagsForResource"]),
                )
                detached_policies.append(route53_policy)
                client.attach_role_policy(route53_role, route53_policy)
                detached_policies.remove(route53_policy)

                endpoint_arn = client.create_role(
                    endpoint_role, _trust_policy([installer_role_arn, control_plane_operator_role_arn])
                )
                created_roles.append(endpoint_role)
                endpoint_policy = client.create_policy(
                    f"{endpoint_role}-policy",
                    _allow_policy(["ec2:CreateVpcEndpoint", "ec2:DescribeVpcEndpoints", "ec2:ModifyVpcEndpoint",
                                   "ec2:DeleteVpcEndpoints", "ec2:CreateTags", "ec2:CreateSecurityGroup",
                                   "ec2:AuthorizeSecurityGroupIngress", "ec2:DeleteSecurityGroup",
                                   "ec2:DescribeSecurityGroups", "ec2:DescribeVpcs", "route53:ListHostedZones"]),
                )
                detached_policies.append(endpoint_policy)
                client.attach_role_policy(endpoint_role, endpoint_policy)
                detached_policies.remove(endpoint_policy)
            except OPERATION_ERRORS:
                _remove_partial_roles(client, created_roles, detached_policies)
                raise
        self.register_hcp_route53_share_role(route53_arn)
        self.register_hcp_vpc_endpoint_share_role(endpoint_arn)
        return route53_arn, endpoint_arn

    def prepare_additional_principals_role(self, role_name: str, installer_role_arn: str) -> str:
        """Create the additional allowed principals role in the shared account."""
        with _creating("additional principals role"):
            client = self.get_aws_client(use_shared_account=True)
            role_arn = client.create_role(role_name, _trust_policy([installer_role_arn]))
            client.attach_role_policy(role_name, ADDITIONAL_PRINCIPALS_POLICY_ARN)
        self.register_additional_principals(role_arn, from_shared_account=True)
        return role_arn

    def prepare_subnet_arns(self, subnet_ids: str) -> list[str]:
        """Build subnet ARNs from a comma separated id list, in the account owning the VPC."""
        ids = [s.strip() for s in subnet_ids.split(",") if s.strip()]
        with _creating("subnet arns"):
            client = self.get_aws_client(self.is_vpc_from_shared_account())
            account_id = client.account_id
        return [f"arn:aws:ec2:{self._resources.region}:{account_id}:subnet/{subnet_id}" for subnet_id in ids]

    def prepare_resource_share(self, resource_share_name: str, resource_arns: list[str]) -> str:
        """Share resources from the shared account with the primary account."""
        with _creating("resource share"):
            principal = self.get_aws_client().account_id
            share_arn = self.get_aws_client(use_shared_account=True).create_resource_share(
                resource_share_name, resource_arns, [principal]
            )
        self.register_resource_share_arn(share_arn)
        return share_arn

    def prepare_vpc(self, vpc_name: str, cidr_value: str, use_existing: bool = False,
                    with_shared_account: bool = False) -> VPC:
        """Create a VPC, or reuse one with the same Name tag.

        A reused VPC is cached but not registered for deletion.
        """
        with _creating("vpc"):
            client = self.get_aws_client(with_shared_account)
            if use_existing:
                existing = network.find_vpc_by_name(client, vpc_name)
                if existing is not None:
                    logger.info(f"Reusing existing VPC {existing.vpc_id} named {vpc_name}")
                    self.register_vpc(existing)
                    return existing
            vpc = network.create_vpc(client, vpc_name, cidr_value)
        self.register_vpc_id(vpc.vpc_id, with_shared_account)
        self.register_vpc(vpc)
        return vpc

    def prepare_subnets(self, zones: list[str], multi_zone: bool = False) -> dict[str, list[str]]:
        """Create public and private subnets in the cached VPC."""
        vpc = self._require_vpc("subnets")
        with _creating("subnets"):
            network.create_subnets(self.get_aws_client(self.is_vpc_from_shared_account()), vpc, zones, multi_zone)
        self.register_vpc(vpc)
        return vpc.subnets_by_kind()

    def prepare_proxy(
        self, zone: str, ssh_pem_file_name: str, ssh_pem_file_record_dir: str, ca_file: str = ""
    ) -> ProxyDetail:
        """Launch a proxy instance in the cached VPC and register it."""
        vpc = self._require_vpc("proxy")
        pem_file = Path(ssh_pem_file_record_dir) / f"{ssh_pem_file_name}.pem"
        with _creating("proxy"):
            proxy = network.launch_proxy(
                self.get_aws_client(self.is_vpc_from_shared_account()),
                vpc,
                zone,
                key_name=ssh_pem_file_name,
                pem_file=pem_file,
                ca_file=ca_file,
            )
        self.register_proxy_instance_id(proxy.instance_id)
        return proxy

    def prepare_additional_security_groups(self, security_group_count: int, name_prefix: str) -> list[str]:
        """Create security groups in the cached VPC. They are removed with the VPC chain."""
        vpc = self._require_vpc("security groups")
        with _creating("security groups"):
            return network.create_security_groups(
                self.get_aws_client(self.is_vpc_from_shared_account()), vpc.vpc_id, security_group_count, name_prefix
            )

    def _require_vpc(self, fixture: str) -> VPC:
        if self._vpc is None:
            raise CreationError(fixture, "no VPC prepared, call prepare_vpc first")
        return self._vpc

    # Delete operations

    def delete_kms_key(self, etcd_kms: bool = False) -> None:
        key = self._resources.etcd_kms_key if etcd_kms else self._resources.kms_key
        if not key:
            return
        label = "etcd kms key" if etcd_kms else "kms key"
        with _deleting(label, key):
            self.get_aws_client().schedule_kms_key_deletion(key)

    def delete_audit_log_role_arn(self) -> None:
        arn = self._resources.audit_log_arn
        with _deleting("audit log arn", arn):
            self.get_aws_client().delete_role(arn, managed_policy=False)

    def delete_hosted_zone(self, hosted_zone_id: str) -> None:
        with _deleting("hosted zone", hosted_zone_id):
            self.get_aws_client(self.is_vpc_from_shared_account()).delete_hosted_zone(hosted_zone_id)

    def delete_dns_domain(self) -> None:
        domain = self._resources.dns_domain
        with _deleting("dns domain", domain):
            self.control_plane.delete_dns_domain(domain)

    def cleanup_proxy_resources(self, proxy_instance_id: str, from_shared_account: bool = False) -> None:
        with _deleting("proxy resources", proxy_instance_id):
            network.cleanup_proxy(self.get_aws_client(from_shared_account), proxy_instance_id)

    def delete_resource_share(self) -> None:
        arn = self._resources.resource_share_arn
        with _deleting("resource share", arn):
            self.get_aws_client(use_shared_account=True).delete_resource_share(arn)

    def delete_vpc_chain(self, from_shared_account: bool = False) -> None:
        vpc_id = self._resources.vpc_id
        with _deleting("vpc chain", vpc_id):
            network.delete_vpc_chain(self.get_aws_client(from_shared_account), vpc_id)

    def delete_shared_vpc_role(self, managed_policy: bool = False) -> None:
        role = self._resources.shared_vpc_role
        with _deleting("classic shared vpc role", role):
            self.get_aws_client(use_shared_account=True).delete_role(role, managed_policy=managed_policy)

    def delete_hosted_cp_shared_vpc_roles(self, managed_policy: bool = False) -> None:
        """Delete both hosted control plane share roles, attempting each even if one fails."""
        roles = [
            role
            for role in (self._resources.hcp_route53_share_role, self._resources.hcp_vpc_endpoint_share_role)
            if role
        ]
        client = self.get_aws_client(use_shared_account=True)
        failures = []
        for role in roles:
            try:
                client.delete_role(role, managed_policy=managed_policy)
            except OPERATION_ERRORS as e:
                failures.append(f"{role}: {e}")
        if failures:
            raise DeletionError("hostedcp shared vpc roles", ", ".join(roles), "; ".join(failures))

    def delete_additional_principals_role(self, managed_policy: bool = True) -> None:
        arn = self._resources.additional_principals
        with _deleting("additional principal role", arn):
            client = self.get_aws_client(self._resources.additional_principals_in_shared_account())
            client.delete_role(arn, managed_policy=managed_policy)

    def delete_operator_roles(self) -> None:
        prefix = self._resources.operator_roles_prefix
        with _deleting("operator roles", prefix):
            self.control_plane.delete_operator_roles(prefix)

    def delete_oidc_config(self) -> None:
        oidc_config_id = self._resources.oidc_config_id
        with _deleting("oidc config", oidc_config_id):
            self.control_plane.delete_oidc_config(oidc_config_id)

    def delete_account_roles(self) -> None:
        prefix = self._resources.account_roles_prefix
        with _deleting("account roles", prefix):
            self.control_plane.delete_account_roles(prefix)

    # Destroy pass

    def destroy_resources(self) -> list[Exception]:
        """Delete every registered fixture in dependency order.

        A failed step is recorded and the pass moves on; its fields stay
        registered so the next pass retries exactly that step. Fields are only
        cleared after their delete call succeeded, and the record is persisted
        after each clear. When every step succeeds the record is reset to empty.

        Returns:
            All errors encountered, empty on full success
        """
        errors: list[Exception] = []
        destroy_pass = DestroyPass(
            pass_id=f"destroy_{uuid.uuid4()}",
            region=self._resources.region,
            started_at=datetime.utcnow(),
        )

        try:
            for step in build_teardown_plan(self):
                if not step.is_present(self._resources):
                    continue

                identifiers = step.identifiers(self._resources)
                account = "shared" if step.shared_account(self._resources) else "primary"
                logger.info(f"Find prepared {step.label}: {', '.join(identifiers)}. Going to delete it")

                try:
                    step.delete()
                except Exception as e:
                    logger.error(f"Error happened when delete {step.label}: {e}")
                    errors.append(e)
                    destroy_pass.records.append(
                        TeardownRecord(
                            step=step.label,
                            identifiers=identifiers,
                            status=TeardownStatus.FAILED,
                            timestamp=datetime.utcnow(),
                            account=account,
                            error_message=str(e) or type(e).__name__,
                        )
                    )
                    continue

                logger.info(f"Delete {step.label} successfully")
                destroy_pass.records.append(
                    TeardownRecord(
                        step=step.label,
                        identifiers=identifiers,
                        status=TeardownStatus.SUCCEEDED,
                        timestamp=datetime.utcnow(),
                        account=account,
                    )
                )
                try:
                    step.clear()
                except PersistenceError as e:
                    logger.warning(f"Could not persist removal of {step.label}: {e}")

            if not errors:
                self._resources = Resources()
                self._vpc = None
        finally:
            logger.info("Rewrite user data file")
            try:
                self._save()
            except PersistenceError as e:
                logger.error(f"Failed to rewrite user data file: {e}")

            destroy_pass.finish(datetime.utcnow())
            self.last_destroy_pass = destroy_pass
            self._log_pass(destroy_pass)

        return errors

    def _log_pass(self, destroy_pass: DestroyPass) -> None:
        if self.audit_storage is None or not destroy_pass.records:
            return
        try:
            path = self.audit_storage.log_pass(destroy_pass)
            logger.debug(f"Wrote destroy pass log {path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to write destroy pass log: {e}")
