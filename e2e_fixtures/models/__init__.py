"""Data models for fixture records and destroy pass reports."""

from __future__ import annotations

from .resources import FromSharedAWSAccount, Resources
from .teardown import DestroyPass, PassStatus, TeardownRecord, TeardownStatus
from .vpc import VPC, ProxyDetail, Subnet

__all__ = [
    "DestroyPass",
    "FromSharedAWSAccount",
    "PassStatus",
    "ProxyDetail",
    "Resources",
    "Subnet",
    "TeardownRecord",
    "TeardownStatus",
    "VPC",
]
