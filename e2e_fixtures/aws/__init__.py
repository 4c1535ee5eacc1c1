"""AWS access for fixture provisioning and cleanup."""

from __future__ import annotations

from .client import AWSClient, AWSClientFactory, create_session

__all__ = ["AWSClient", "AWSClientFactory", "create_session"]
