"""Cloud fixture provisioning and teardown for end-to-end tests."""

from __future__ import annotations

__version__ = "0.1.0"

from .errors import (
    CommandError,
    ConfigurationError,
    CreationError,
    DeletionError,
    DeserializationError,
    FixtureError,
    LoadError,
    PersistenceError,
)
from .handler import ResourcesHandler
from .models import Resources

__all__ = [
    "CommandError",
    "ConfigurationError",
    "CreationError",
    "DeletionError",
    "DeserializationError",
    "FixtureError",
    "LoadError",
    "PersistenceError",
    "Resources",
    "ResourcesHandler",
    "__version__",
]
