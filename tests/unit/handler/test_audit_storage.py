"""Tests for AuditStorage.

Test coverage for destroy pass log storage and retrieval with YAML format.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
import yaml

from e2e_fixtures.handler.audit import AuditStorage
from e2e_fixtures.models.teardown import DestroyPass, TeardownRecord, TeardownStatus


def _destroy_pass(pass_id: str, started_at: datetime) -> DestroyPass:
    destroy_pass = DestroyPass(pass_id=pass_id, region="us-east-2", started_at=started_at)
    destroy_pass.records = [
        TeardownRecord(
            step="kms key",
            identifiers=["kms-123"],
            status=TeardownStatus.SUCCEEDED,
            timestamp=started_at,
        ),
        TeardownRecord(
            step="etcd kms key",
            identifiers=["kms-456"],
            status=TeardownStatus.FAILED,
            timestamp=started_at,
            error_message="AccessDeniedException",
        ),
    ]
    destroy_pass.finish(started_at)
    return destroy_pass


class TestAuditStorage:
    """Test suite for AuditStorage class."""

    @pytest.fixture
    def audit_storage(self, tmp_path: Path) -> AuditStorage:
        return AuditStorage(storage_dir=str(tmp_path / "audit-logs"))

    def test_init_creates_storage_directory(self, tmp_path: Path) -> None:
        storage_dir = tmp_path / "output" / "audit-logs"

        AuditStorage(storage_dir=str(storage_dir))

        assert storage_dir.is_dir()

    def test_log_pass_writes_month_partitioned_yaml(self, audit_storage: AuditStorage) -> None:
        path = audit_storage.log_pass(_destroy_pass("destroy_1", datetime(2025, 11, 3, 10, 0, 0)))

        assert path == audit_storage.storage_dir / "2025" / "11" / "destroy-destroy_1.yaml"
        with open(path) as f:
            data = yaml.safe_load(f)
        assert data["metadata"]["log_type"] == "fixture_destroy_pass"
        assert data["pass"]["status"] == "partial"
        assert data["pass"]["failed_count"] == 1
        assert data["records"][1]["error_message"] == "AccessDeniedException"

    def test_log_pass_rejects_inconsistent_pass(self, audit_storage: AuditStorage) -> None:
        destroy_pass = _destroy_pass("destroy_1", datetime(2025, 11, 3, 10, 0, 0))
        destroy_pass.records[1].error_message = None

        with pytest.raises(ValueError, match="error_message"):
            audit_storage.log_pass(destroy_pass)

        assert list(audit_storage.storage_dir.rglob("*.yaml")) == []

    def test_get_pass(self, audit_storage: AuditStorage) -> None:
        audit_storage.log_pass(_destroy_pass("destroy_1", datetime(2025, 11, 3, 10, 0, 0)))

        assert audit_storage.get_pass("destroy_1")["pass"]["pass_id"] == "destroy_1"
        assert audit_storage.get_pass("missing") is None

    def test_query_passes_by_date_range(self, audit_storage: AuditStorage) -> None:
        audit_storage.log_pass(_destroy_pass("destroy_old", datetime(2025, 10, 1, 9, 0, 0)))
        audit_storage.log_pass(_destroy_pass("destroy_new", datetime(2025, 11, 3, 9, 0, 0)))

        everything = audit_storage.query_passes()
        recent = audit_storage.query_passes(since=datetime(2025, 11, 1))
        older = audit_storage.query_passes(until=datetime(2025, 10, 31))

        assert [p["pass"]["pass_id"] for p in everything] == ["destroy_old", "destroy_new"]
        assert [p["pass"]["pass_id"] for p in recent] == ["destroy_new"]
        assert [p["pass"]["pass_id"] for p in older] == ["destroy_old"]
