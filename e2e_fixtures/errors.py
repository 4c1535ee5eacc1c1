"""Exception hierarchy for fixture provisioning and teardown."""

from __future__ import annotations

from typing import Optional


class FixtureError(Exception):
    """Base class for all fixture lifecycle errors."""


class CreationError(FixtureError):
    """Provisioning a fixture failed. Nothing was registered."""

    def __init__(self, fixture: str, message: str) -> None:
        self.fixture = fixture
        super().__init__(f"Failed to create {fixture}: {message}")


class DeletionError(FixtureError):
    """Removing a fixture failed. The identifier stays registered for retry.

    Attributes:
        fixture: Human-readable fixture label (e.g. "etcd kms key")
        identifier: Identifier that could not be deleted
    """

    def __init__(self, fixture: str, identifier: str, message: str) -> None:
        self.fixture = fixture
        self.identifier = identifier
        super().__init__(f"Failed to delete {fixture} {identifier}: {message}")


class PersistenceError(FixtureError):
    """Reading or writing the resource record file failed."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class DeserializationError(PersistenceError):
    """The resource record file exists but cannot be parsed."""


LoadError = DeserializationError


class ConfigurationError(FixtureError):
    """Required configuration (e.g. shared account credentials) is missing."""


class CommandError(FixtureError):
    """The control-plane CLI exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, output: str) -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command '{' '.join(command)}' failed with exit code {returncode}: {output.strip()}")
