"""Configuration for fixture provisioning and cleanup.

Values come from built-in defaults, then an optional YAML config file, then
environment variables (highest precedence).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from e2e_fixtures.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path.home() / ".e2e-fixtures" / "config.yaml"

# Environment variable -> config attribute
ENV_OVERRIDES: Dict[str, str] = {
    "SHARED_DIR": "output_dir",
    "AWS_REGION": "region",
    "AWS_SHARED_CREDENTIALS_FILE": "aws_credentials_file",
    "SHARED_VPC_AWS_SHARED_CREDENTIALS_FILE": "aws_shared_account_credentials_file",
    "E2E_FIXTURES_LOG_LEVEL": "log_level",
    "E2E_FIXTURES_CONTROL_PLANE_CLI": "control_plane_cli",
}


@dataclass
class Config:
    """Runtime configuration.

    Attributes:
        output_dir: Directory holding the record file and auxiliary files
        region: Default AWS region for new records
        aws_credentials_file: Credentials file for the primary account (optional)
        aws_shared_account_credentials_file: Credentials file for the shared account (optional)
        log_level: Logging level name
        control_plane_cli: Control-plane CLI binary
        user_data_file_name: Record file name inside output_dir
        vpc_id_file_name: VPC id file name inside output_dir
        public_subnets_file_name: Public subnets file name inside output_dir
        audit_dir_name: Destroy pass audit directory inside output_dir
    """

    output_dir: str = str(Path.home() / "output")
    region: str = "us-east-2"
    aws_credentials_file: Optional[str] = None
    aws_shared_account_credentials_file: Optional[str] = None
    log_level: str = "INFO"
    control_plane_cli: str = "rosa"
    user_data_file_name: str = "resources.yaml"
    vpc_id_file_name: str = "vpc_id"
    public_subnets_file_name: str = "public_subnets"
    audit_dir_name: str = "audit-logs"

    @property
    def user_data_file(self) -> Path:
        return Path(self.output_dir) / self.user_data_file_name

    @property
    def vpc_id_file(self) -> Path:
        return Path(self.output_dir) / self.vpc_id_file_name

    @property
    def public_subnets_file(self) -> Path:
        return Path(self.output_dir) / self.public_subnets_file_name

    @property
    def audit_dir(self) -> Path:
        return Path(self.output_dir) / self.audit_dir_name

    @classmethod
    def load(cls, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> "Config":
        """Load configuration.

        Args:
            config_file: YAML config path (default: $E2E_FIXTURES_CONFIG or ~/.e2e-fixtures/config.yaml)
            environ: Environment mapping (default: os.environ)

        Returns:
            Loaded Config

        Raises:
            ConfigurationError: If the config file is malformed or names unknown keys
        """
        env = os.environ if environ is None else environ
        config = cls()

        path = Path(config_file or env.get("E2E_FIXTURES_CONFIG") or DEFAULT_CONFIG_FILE)
        if path.exists():
            config._apply(cls._read_file(path), source=str(path))
        elif config_file:
            raise ConfigurationError(f"Config file not found: {config_file}")

        for env_name, attribute in ENV_OVERRIDES.items():
            value = env.get(env_name)
            if value:
                setattr(config, attribute, value)

        return config

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid config file {path}: expected a mapping")
        return data

    def _apply(self, data: Dict[str, Any], source: str) -> None:
        known = {f.name for f in fields(self)}
        for key, value in data.items():
            if key not in known:
                raise ConfigurationError(f"Unknown config key '{key}' in {source}")
            setattr(self, key, value)
        logger.debug(f"Loaded configuration from {source}")
