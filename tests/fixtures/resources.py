"""Test fixtures for building resource records and handlers with mocked backends."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import Mock

from e2e_fixtures.aws.client import AWSClientFactory
from e2e_fixtures.controlplane.cli import ControlPlaneClient
from e2e_fixtures.handler.resources_handler import ResourcesHandler
from e2e_fixtures.models.resources import FromSharedAWSAccount, Resources
from e2e_fixtures.storage.resources_storage import ResourcesStorage


def create_full_record(region: str = "us-east-2", vpc_shared: bool = False) -> Resources:
    """Create a record with every fixture field populated.

    Args:
        region: AWS region
        vpc_shared: Whether the VPC is flagged as living in the shared account

    Returns:
        Resources with one identifier per fixture
    """
    return Resources(
        region=region,
        account_roles_prefix="e2e-acc",
        operator_roles_prefix="e2e-op",
        oidc_config_id="oidc123",
        kms_key="arn:aws:kms:us-east-2:111111111111:key/kms-123",
        etcd_kms_key="arn:aws:kms:us-east-2:111111111111:key/kms-456",
        audit_log_arn="arn:aws:iam::111111111111:role/e2e-audit",
        dns_domain="abcd.e2e.example.com",
        ingress_hosted_zone_id="Z1INGRESS",
        hosted_cp_internal_hosted_zone_id="Z2INTERNAL",
        vpc_id="vpc-0abc",
        proxy_instance_id="i-0proxy",
        resource_share_arn="arn:aws:ram:us-east-2:222222222222:resource-share/share-1",
        shared_vpc_role="e2e-shared-vpc-role",
        hcp_route53_share_role="arn:aws:iam::222222222222:role/e2e-route53-role",
        hcp_vpc_endpoint_share_role="arn:aws:iam::222222222222:role/e2e-vpc-endpoint-role",
        additional_principals="arn:aws:iam::222222222222:role/e2e-additional",
        from_shared_aws_account=FromSharedAWSAccount(vpc=vpc_shared, additional_principals=True),
    )


def create_record_data(**overrides: Any) -> Dict[str, Any]:
    """Create a serialized record document as found on disk."""
    data: Dict[str, Any] = {"region": "us-east-2", "kmsKey": "kms-123", "etcdKMSKey": "kms-456"}
    data.update(overrides)
    return data


def create_handler(
    resources: Optional[Resources] = None,
    storage: Optional[Any] = None,
    persist: bool = True,
    primary_client: Optional[Mock] = None,
    shared_client: Optional[Mock] = None,
    control_plane: Optional[Mock] = None,
) -> ResourcesHandler:
    """Create a handler whose AWS clients, control plane and storage are mocks.

    The factory returns `primary_client` or `shared_client` depending on the
    requested account, so tests can assert which account a call went to.
    """
    primary_client = primary_client or Mock(name="primary_client")
    shared_client = shared_client or Mock(name="shared_client")

    factory = Mock(spec=AWSClientFactory)
    factory.get_client.side_effect = lambda region, use_shared_account=False: (
        shared_client if use_shared_account else primary_client
    )

    return ResourcesHandler(
        resources=resources if resources is not None else Resources(region="us-east-2"),
        storage=storage if storage is not None else Mock(spec=ResourcesStorage),
        client_factory=factory,
        control_plane=control_plane or Mock(spec=ControlPlaneClient),
        persist=persist,
    )


def create_file_handler(tmp_path: Path, resources: Optional[Resources] = None, **kwargs: Any) -> ResourcesHandler:
    """Create a handler persisting to a real record file under tmp_path."""
    storage = ResourcesStorage(tmp_path / "resources.yaml")
    return create_handler(resources=resources, storage=storage, **kwargs)


# Expected teardown order: VPC-hosted fixtures before the VPC, roles last.
TEARDOWN_LABELS = [
    "kms key",
    "etcd kms key",
    "audit log arn",
    "ingress hosted zone",
    "hostedcp internal hosted zone",
    "dns domain",
    "proxy resources",
    "resource share",
    "vpc chain",
    "classic shared vpc role",
    "hostedcp shared vpc roles",
    "additional principal role",
    "operator roles",
    "oidc config",
    "account roles",
]
