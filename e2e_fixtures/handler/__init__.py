"""Fixture lifecycle handling.

Classes:
    ResourcesHandler: Creates, records and destroys fixtures
    TeardownStep: One entry of the ordered teardown plan
    AuditStorage: Destroy pass log storage and retrieval
"""

from __future__ import annotations

from .audit import AuditStorage
from .resources_handler import ResourcesHandler
from .teardown import TeardownStep, build_teardown_plan

__all__ = [
    "AuditStorage",
    "ResourcesHandler",
    "TeardownStep",
    "build_teardown_plan",
]
