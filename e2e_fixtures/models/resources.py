"""Resource record model.

Snapshot of every fixture identifier known to exist, plus provenance flags
marking fixtures that live in the shared AWS account.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

# Persisted key for each fixture field, in declaration order.
FIELD_KEYS: Dict[str, str] = {
    "region": "region",
    "account_roles_prefix": "accountRolesPrefix",
    "operator_roles_prefix": "operatorRolesPrefix",
    "oidc_config_id": "oidcConfigID",
    "kms_key": "kmsKey",
    "etcd_kms_key": "etcdKMSKey",
    "audit_log_arn": "auditLogArn",
    "dns_domain": "dnsDomain",
    "ingress_hosted_zone_id": "ingressHostedZoneID",
    "hosted_cp_internal_hosted_zone_id": "hostedCPInternalHostedZoneID",
    "vpc_id": "vpcID",
    "proxy_instance_id": "proxyInstanceID",
    "resource_share_arn": "resourceShareArn",
    "shared_vpc_role": "sharedVPCRole",
    "hcp_route53_share_role": "hcpRoute53ShareRole",
    "hcp_vpc_endpoint_share_role": "hcpVPCEndpointShareRole",
    "additional_principals": "additionalPrincipals",
}

SHARED_ACCOUNT_KEY = "fromSharedAWSAccount"


@dataclass
class FromSharedAWSAccount:
    """Fixtures created in the shared account rather than the primary one."""

    vpc: bool = False
    additional_principals: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"VPC": self.vpc, "additionalPrincipals": self.additional_principals}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FromSharedAWSAccount":
        """Create flags from dictionary.

        Raises:
            ValueError: If a flag is present but is not a boolean
        """
        values: Dict[str, bool] = {}
        for name, key in (("vpc", "VPC"), ("additional_principals", "additionalPrincipals")):
            value = data.get(key, False)
            if value is None:
                value = False
            if not isinstance(value, bool):
                raise ValueError(f"{SHARED_ACCOUNT_KEY}.{key} must be a boolean, got {value!r}")
            values[name] = value
        return cls(**values)


@dataclass
class Resources:
    """Resource record entity.

    A non-empty field means the fixture exists and must eventually be
    destroyed. There is no separate existence flag. `region` is set once when
    the record is created and never changes afterwards.

    Attributes:
        region: AWS region the fixtures live in
        account_roles_prefix: Prefix of the account role family
        operator_roles_prefix: Prefix of the operator role family
        oidc_config_id: OIDC configuration identifier
        kms_key: Control-plane KMS key ARN
        etcd_kms_key: Etcd encryption KMS key ARN
        audit_log_arn: Audit log forwarding role ARN
        dns_domain: Reserved DNS domain
        ingress_hosted_zone_id: Ingress hosted zone ID
        hosted_cp_internal_hosted_zone_id: Hosted control plane internal hosted zone ID
        vpc_id: VPC ID
        proxy_instance_id: Proxy EC2 instance ID
        resource_share_arn: RAM resource share ARN
        shared_vpc_role: Classic shared VPC role name
        hcp_route53_share_role: Hosted control plane Route53 share role name
        hcp_vpc_endpoint_share_role: Hosted control plane VPC endpoint share role name
        additional_principals: Additional allowed principals role ARN
        from_shared_aws_account: Provenance flags (optional)
    """

    region: str = ""
    account_roles_prefix: str = ""
    operator_roles_prefix: str = ""
    oidc_config_id: str = ""
    kms_key: str = ""
    etcd_kms_key: str = ""
    audit_log_arn: str = ""
    dns_domain: str = ""
    ingress_hosted_zone_id: str = ""
    hosted_cp_internal_hosted_zone_id: str = ""
    vpc_id: str = ""
    proxy_instance_id: str = ""
    resource_share_arn: str = ""
    shared_vpc_role: str = ""
    hcp_route53_share_role: str = ""
    hcp_vpc_endpoint_share_role: str = ""
    additional_principals: str = ""
    from_shared_aws_account: Optional[FromSharedAWSAccount] = field(default=None)

    def vpc_in_shared_account(self) -> bool:
        """Whether the registered VPC lives in the shared account.

        A flag left behind after the VPC was cleared is ignored.
        """
        if not self.vpc_id or self.from_shared_aws_account is None:
            return False
        return self.from_shared_aws_account.vpc

    def additional_principals_in_shared_account(self) -> bool:
        """Whether the registered additional principals role lives in the shared account."""
        if not self.additional_principals or self.from_shared_aws_account is None:
            return False
        return self.from_shared_aws_account.additional_principals

    def shared_account_flags(self) -> FromSharedAWSAccount:
        """Return provenance flags, creating them on first use."""
        if self.from_shared_aws_account is None:
            self.from_shared_aws_account = FromSharedAWSAccount()
        return self.from_shared_aws_account

    def present_fixtures(self) -> List[str]:
        """Names of fixture fields currently holding an identifier."""
        return [name for name in FIELD_KEYS if name != "region" and getattr(self, name)]

    def is_empty(self) -> bool:
        """True when no fixture is registered. Region and flags are ignored."""
        return not self.present_fixtures()

    def copy(self) -> "Resources":
        flags = self.from_shared_aws_account
        return replace(self, from_shared_aws_account=replace(flags) if flags is not None else None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for serialization.

        Empty fields are omitted so the file only lists live fixtures.
        """
        data: Dict[str, Any] = {}
        for name, key in FIELD_KEYS.items():
            value = getattr(self, name)
            if value:
                data[key] = value
        if self.from_shared_aws_account is not None:
            data[SHARED_ACCOUNT_KEY] = self.from_shared_aws_account.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resources":
        """Create record from dictionary.

        Missing keys default to empty and unknown keys are ignored, so files
        written by newer versions with extra fields still load.

        Raises:
            ValueError: If a known key holds a value of the wrong type
        """
        values: Dict[str, Any] = {}
        for name, key in FIELD_KEYS.items():
            value = data.get(key)
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise ValueError(f"{key} must be a string, got {type(value).__name__}")
            values[name] = value

        flags = data.get(SHARED_ACCOUNT_KEY)
        if flags is not None:
            if not isinstance(flags, dict):
                raise ValueError(f"{SHARED_ACCOUNT_KEY} must be a mapping, got {type(flags).__name__}")
            values["from_shared_aws_account"] = FromSharedAWSAccount.from_dict(flags)

        return cls(**values)

