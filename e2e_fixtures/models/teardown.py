"""Destroy pass report models.

A destroy pass walks every registered fixture once. Each step produces a
TeardownRecord; the pass itself is summarised by a DestroyPass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TeardownStatus(Enum):
    """Outcome of a single teardown step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PassStatus(Enum):
    """Overall destroy pass status."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class TeardownRecord:
    """Teardown record entity.

    Validation rules:
        - status=failed: requires error_message
        - status=succeeded: no error_message
        - identifiers must not be empty

    Attributes:
        step: Teardown step label (e.g. "etcd kms key")
        identifiers: Identifiers the step operated on
        status: Step outcome
        timestamp: When the step finished
        account: "primary" or "shared"
        error_message: Failure reason (optional)
    """

    step: str
    identifiers: List[str]
    status: TeardownStatus
    timestamp: datetime
    account: str = "primary"
    error_message: Optional[str] = None

    def validate(self) -> bool:
        """Validate record invariants.

        Returns:
            True if validation passes

        Raises:
            ValueError: If any validation rule fails
        """
        if self.status == TeardownStatus.FAILED and not self.error_message:
            raise ValueError("Failed status requires error_message")
        if self.status == TeardownStatus.SUCCEEDED and self.error_message:
            raise ValueError("Succeeded status cannot have an error message")
        if not any(self.identifiers):
            raise ValueError("Teardown steps require at least one identifier")
        return True


@dataclass
class DestroyPass:
    """Destroy pass entity.

    State transitions:
        all attempted steps succeeded -> completed
        some steps failed             -> partial
        every attempted step failed   -> failed

    Attributes:
        pass_id: Unique identifier for the pass
        region: Region of the record being destroyed
        started_at: When the pass started
        completed_at: When the pass finished (optional)
        records: One record per attempted step
        status: Overall status
    """

    pass_id: str
    region: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    records: List[TeardownRecord] = field(default_factory=list)
    status: PassStatus = PassStatus.COMPLETED

    @property
    def succeeded_count(self) -> int:
        return sum(1 for r in self.records if r.status == TeardownStatus.SUCCEEDED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if r.status == TeardownStatus.FAILED)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def finish(self, completed_at: datetime) -> None:
        """Close the pass and derive its final status."""
        self.completed_at = completed_at
        if self.failed_count == 0:
            self.status = PassStatus.COMPLETED
        elif self.succeeded_count > 0:
            self.status = PassStatus.PARTIAL
        else:
            self.status = PassStatus.FAILED

    def validate(self) -> bool:
        """Validate pass invariants.

        Raises:
            ValueError: If any validation rule fails
        """
        if self.completed_at and self.completed_at < self.started_at:
            raise ValueError("Completion time before start time")
        if self.status == PassStatus.COMPLETED and self.failed_count:
            raise ValueError("Completed pass cannot contain failed steps")
        for record in self.records:
            record.validate()
        return True
