"""Audit storage for destroy passes.

Stores and retrieves destroy pass logs in YAML format for troubleshooting
cleanup runs that left fixtures behind.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from e2e_fixtures.models.teardown import DestroyPass


class AuditStorage:
    """Destroy pass log storage and retrieval.

    Storage structure:
        <storage_dir>/
            2025/
                11/
                    destroy-destroy_123.yaml

    Attributes:
        storage_dir: Base directory for audit logs
    """

    def __init__(self, storage_dir: str) -> None:
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def log_pass(self, destroy_pass: DestroyPass) -> Path:
        """Write a destroy pass log.

        Overwrites an existing log with the same pass id.

        Args:
            destroy_pass: Finished destroy pass

        Returns:
            Path of the written log

        Raises:
            ValueError: If the pass report is inconsistent
        """
        destroy_pass.validate()
        started = destroy_pass.started_at
        month_dir = self.storage_dir / str(started.year) / f"{started.month:02d}"
        month_dir.mkdir(parents=True, exist_ok=True)

        audit_data = {
            "metadata": {
                "version": "1.0",
                "log_type": "fixture_destroy_pass",
                "created_at": datetime.utcnow().isoformat() + "Z",
            },
            "pass": {
                "pass_id": destroy_pass.pass_id,
                "region": destroy_pass.region,
                "status": destroy_pass.status.value,
                "started_at": started.isoformat() + "Z",
                "completed_at": destroy_pass.completed_at.isoformat() + "Z" if destroy_pass.completed_at else None,
                "duration_seconds": destroy_pass.duration_seconds,
                "succeeded_count": destroy_pass.succeeded_count,
                "failed_count": destroy_pass.failed_count,
            },
            "records": [
                {
                    "step": record.step,
                    "identifiers": record.identifiers,
                    "status": record.status.value,
                    "account": record.account,
                    "timestamp": record.timestamp.isoformat() + "Z",
                    "error_message": record.error_message,
                }
                for record in destroy_pass.records
            ],
        }

        audit_file = month_dir / f"destroy-{destroy_pass.pass_id}.yaml"
        with open(audit_file, "w") as f:
            yaml.safe_dump(audit_data, f, default_flow_style=False, sort_keys=False)
        return audit_file

    def get_pass(self, pass_id: str) -> Optional[dict]:
        """Retrieve a destroy pass log by id, None if not found."""
        for audit_file in self.storage_dir.glob(f"*/*/destroy-{pass_id}.yaml"):
            with open(audit_file, "r") as f:
                return yaml.safe_load(f)
        return None

    def query_passes(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> list[dict]:
        """Return destroy pass logs started within [since, until], oldest first."""
        results = []
        for audit_file in sorted(self.storage_dir.glob("*/*/destroy-*.yaml")):
            with open(audit_file, "r") as f:
                audit_data = yaml.safe_load(f)

            started_at = datetime.fromisoformat(audit_data["pass"]["started_at"].rstrip("Z"))
            if since and started_at < since:
                continue
            if until and started_at > until:
                continue
            results.append(audit_data)

        results.sort(key=lambda data: data["pass"]["started_at"])
        return results
