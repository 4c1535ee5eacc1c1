"""Tests for AWSClientFactory and session creation."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest

from e2e_fixtures.aws.client import AWSClient, AWSClientFactory, create_session
from e2e_fixtures.config import Config
from e2e_fixtures.errors import ConfigurationError


class TestAWSClientFactory:
    """Test suite for AWSClientFactory."""

    @patch("e2e_fixtures.aws.client.create_session")
    def test_primary_client_uses_primary_credentials(self, mock_create_session: Mock) -> None:
        factory = AWSClientFactory(credentials_file="/creds/primary", shared_account_credentials_file="/creds/shared")

        client = factory.get_client("us-east-2")

        assert isinstance(client, AWSClient)
        assert client.shared_account is False
        assert client.region == "us-east-2"
        mock_create_session.assert_called_once_with("us-east-2", None, "/creds/primary")

    @patch("e2e_fixtures.aws.client.create_session")
    def test_shared_client_uses_shared_credentials(self, mock_create_session: Mock) -> None:
        factory = AWSClientFactory(credentials_file="/creds/primary", shared_account_credentials_file="/creds/shared")

        client = factory.get_client("us-east-2", use_shared_account=True)

        assert client.shared_account is True
        mock_create_session.assert_called_once_with("us-east-2", credentials_file="/creds/shared")

    @patch("e2e_fixtures.aws.client.create_session")
    def test_shared_client_without_credentials_raises(self, mock_create_session: Mock) -> None:
        factory = AWSClientFactory(credentials_file="/creds/primary")

        with pytest.raises(ConfigurationError, match="SHARED_VPC_AWS_SHARED_CREDENTIALS_FILE"):
            factory.get_client("us-east-2", use_shared_account=True)

        mock_create_session.assert_not_called()

    def test_from_config(self) -> None:
        config = Config(aws_credentials_file="/a", aws_shared_account_credentials_file="/b")

        factory = AWSClientFactory.from_config(config)

        assert factory.credentials_file == "/a"
        assert factory.shared_account_credentials_file == "/b"


class TestCreateSession:
    """Test suite for create_session."""

    @patch("e2e_fixtures.aws.client.boto3.Session")
    @patch("e2e_fixtures.aws.client.botocore.session.Session")
    def test_credentials_file_bound_to_session(self, mock_core_session: Mock, mock_session: Mock) -> None:
        create_session("us-east-2", credentials_file="/creds/shared")

        mock_core_session.return_value.set_config_variable.assert_called_once_with(
            "credentials_file", "/creds/shared"
        )
        mock_session.assert_called_once_with(
            botocore_session=mock_core_session.return_value, region_name="us-east-2"
        )

    @patch("e2e_fixtures.aws.client.boto3.Session")
    @patch("e2e_fixtures.aws.client.botocore.session.Session")
    def test_default_credential_chain(self, mock_core_session: Mock, mock_session: Mock) -> None:
        create_session("us-east-2", profile_name="dev")

        mock_core_session.assert_called_once_with(profile="dev")
        mock_core_session.return_value.set_config_variable.assert_not_called()
