"""In-memory VPC and proxy handles.

These are never persisted as part of the resource record. The VPC handle only
feeds the auxiliary VPC id and public subnet files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Subnet:
    """Subnet created inside a prepared VPC."""

    subnet_id: str
    zone: str
    cidr: str
    public: bool = False


@dataclass
class VPC:
    """Prepared VPC with its subnets.

    Attributes:
        vpc_id: VPC identifier
        name: Value of the Name tag
        cidr: Primary CIDR block
        region: AWS region
        subnets: Subnets created so far
        internet_gateway_id: Attached internet gateway (optional)
        nat_gateway_ids: NAT gateways serving private subnets
    """

    vpc_id: str
    name: str = ""
    cidr: str = ""
    region: str = ""
    subnets: List[Subnet] = field(default_factory=list)
    internet_gateway_id: Optional[str] = None
    nat_gateway_ids: List[str] = field(default_factory=list)

    def all_public_subnet_ids(self) -> List[str]:
        return [s.subnet_id for s in self.subnets if s.public]

    def all_private_subnet_ids(self) -> List[str]:
        return [s.subnet_id for s in self.subnets if not s.public]

    def subnets_by_kind(self) -> Dict[str, List[str]]:
        """Subnet ids grouped as {"public": [...], "private": [...]}."""
        return {
            "public": self.all_public_subnet_ids(),
            "private": self.all_private_subnet_ids(),
        }

    def public_subnet_in_zone(self, zone: str) -> Optional[Subnet]:
        for subnet in self.subnets:
            if subnet.public and subnet.zone == zone:
                return subnet
        return None


@dataclass
class ProxyDetail:
    """Cluster-wide proxy endpoint backed by an EC2 instance."""

    instance_id: str
    http_proxy: str
    https_proxy: str
    no_proxy: str = ""
    ca_bundle_path: str = ""
    private_ip: str = ""
    public_ip: str = ""
