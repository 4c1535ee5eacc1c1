"""Tests for the e2e-fixtures CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator
from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from e2e_fixtures.cli.main import app
from e2e_fixtures.models.resources import Resources
from e2e_fixtures.storage.resources_storage import ResourcesStorage
from tests.fixtures.resources import create_handler


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point configuration at tmp_path and keep global logging untouched."""
    monkeypatch.setenv("E2E_FIXTURES_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.setenv("SHARED_DIR", str(tmp_path))
    with patch("e2e_fixtures.cli.main.setup_logging"):
        yield


def _write_record(tmp_path: Path, resources: Resources) -> ResourcesStorage:
    storage = ResourcesStorage(tmp_path / "resources.yaml")
    storage.save(resources)
    return storage


class TestShow:
    """Test suite for the show command."""

    def test_show_without_record(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["show"])

        assert result.exit_code == 0
        assert "No resource record" in result.output

    def test_show_lists_fixtures(self, runner: CliRunner, tmp_path: Path) -> None:
        _write_record(tmp_path, Resources(region="us-east-2", kms_key="kms-123", vpc_id="vpc-1"))

        result = runner.invoke(app, ["show"])

        assert result.exit_code == 0
        assert "us-east-2" in result.output
        assert "kmsKey" in result.output
        assert "vpc-1" in result.output

    def test_show_empty_record(self, runner: CliRunner, tmp_path: Path) -> None:
        _write_record(tmp_path, Resources(region="us-east-2"))

        result = runner.invoke(app, ["show"])

        assert result.exit_code == 0
        assert "No fixtures recorded" in result.output

    def test_show_malformed_record(self, runner: CliRunner, tmp_path: Path) -> None:
        (tmp_path / "resources.yaml").write_text("kmsKey: [oops\n")

        result = runner.invoke(app, ["show"])

        assert result.exit_code == 1
        assert "Error loading resource record" in result.output

    def test_output_dir_option(self, runner: CliRunner, tmp_path: Path) -> None:
        other = tmp_path / "other"
        _write_record(other, Resources(region="eu-west-1", dns_domain="d.example.com"))

        result = runner.invoke(app, ["--output-dir", str(other), "show"])

        assert result.exit_code == 0
        assert "eu-west-1" in result.output

    def test_missing_explicit_config(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "show"])

        assert result.exit_code == 2


class TestDestroy:
    """Test suite for the destroy command."""

    def test_destroy_without_record(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["destroy", "--yes"])

        assert result.exit_code == 0
        assert "nothing to destroy" in result.output

    def test_destroy_success(self, runner: CliRunner, tmp_path: Path) -> None:
        storage = _write_record(tmp_path, Resources(region="us-east-2", kms_key="kms-123"))
        handler = create_handler(resources=storage.load(), storage=storage)

        with patch("e2e_fixtures.cli.main.ResourcesHandler.from_filesystem", return_value=handler):
            result = runner.invoke(app, ["destroy", "--yes"])

        assert result.exit_code == 0
        assert "All fixtures destroyed" in result.output
        assert storage.load().is_empty()

    def test_destroy_with_errors_exits_non_zero(self, runner: CliRunner, tmp_path: Path) -> None:
        storage = _write_record(tmp_path, Resources(region="us-east-2", dns_domain="d.example.com"))
        handler = create_handler(resources=storage.load(), storage=storage)
        handler.control_plane.delete_dns_domain.side_effect = RuntimeError("cli down")

        with patch("e2e_fixtures.cli.main.ResourcesHandler.from_filesystem", return_value=handler):
            result = runner.invoke(app, ["destroy", "--yes"])

        assert result.exit_code == 1
        assert "could not be destroyed" in result.output
        assert storage.load().dns_domain == "d.example.com"

    def test_destroy_cancelled(self, runner: CliRunner, tmp_path: Path) -> None:
        storage = _write_record(tmp_path, Resources(region="us-east-2", kms_key="kms-123"))
        handler = Mock(wraps=create_handler(resources=storage.load(), storage=storage))
        handler.resources = storage.load()

        with patch("e2e_fixtures.cli.main.ResourcesHandler.from_filesystem", return_value=handler):
            result = runner.invoke(app, ["destroy"], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        handler.destroy_resources.assert_not_called()
        assert storage.load().kms_key == "kms-123"


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "e2e-fixtures version" in result.output
