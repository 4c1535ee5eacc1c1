"""Control-plane CLI wrapper.

Account roles, operator roles, OIDC configuration and DNS domains are managed
through the control-plane CLI rather than raw AWS calls.
"""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Optional

import yaml

from e2e_fixtures.errors import CommandError

logger = logging.getLogger(__name__)

OIDC_CONFIG_ID_PATTERN = re.compile(r"--oidc-config-id[ =]([a-z0-9]+)")
DNS_DOMAIN_PATTERN = re.compile(r"DNS domain '([^']+)' has been created")
# Output of a delete command whose target is already gone.
NOT_FOUND_PATTERN = re.compile(
    r"not found|does not exist|doesn't exist|there (?:is|are) no|no (?:account|operator) roles",
    re.IGNORECASE,
)


class ControlPlaneClient:
    """Runs control-plane CLI commands.

    Attributes:
        binary: CLI executable name or path
        timeout: Per-command timeout in seconds
    """

    def __init__(self, binary: str = "rosa", timeout: int = 1800) -> None:
        self.binary = binary
        self.timeout = timeout

    def run(self, *args: str) -> str:
        """Run a CLI command and return its combined output.

        Raises:
            CommandError: If the command exits with a non-zero status
        """
        command = [self.binary, *args]
        logger.debug(f"Running: {' '.join(command)}")
        completed = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=self.timeout,
            check=False,
        )
        if completed.returncode != 0:
            raise CommandError(command, completed.returncode, completed.stdout)
        return completed.stdout

    def run_delete(self, *args: str) -> str:
        """Run a delete command, treating an already-deleted target as success.

        Raises:
            CommandError: If the command fails for any other reason
        """
        try:
            return self.run(*args)
        except CommandError as e:
            if not NOT_FOUND_PATTERN.search(e.output):
                raise
            logger.info(f"Nothing to delete for '{' '.join(args)}': {e.output.strip()}")
            return e.output

    # Account roles

    def create_account_roles(
        self,
        prefix: str,
        hosted_cp: bool = False,
        version: str = "",
        channel_group: str = "",
        path: str = "",
        permissions_boundary: str = "",
        route53_role_arn: str = "",
        vpc_endpoint_role_arn: str = "",
    ) -> str:
        args = ["create", "account-roles", "--prefix", prefix, "--mode", "auto", "-y"]
        if hosted_cp:
            args.append("--hosted-cp")
        args += _optional_flags(
            ("--version", version),
            ("--channel-group", channel_group),
            ("--path", path),
            ("--permissions-boundary", permissions_boundary),
            ("--route53-role-arn", route53_role_arn),
            ("--vpc-endpoint-role-arn", vpc_endpoint_role_arn),
        )
        return self.run(*args)

    def delete_account_roles(self, prefix: str) -> str:
        return self.run_delete("delete", "account-roles", "--prefix", prefix, "--mode", "auto", "-y")

    # Operator roles

    def create_operator_roles(
        self,
        prefix: str,
        oidc_config_id: str,
        installer_role_arn: str,
        shared_route53_role_arn: str = "",
        shared_vpc_endpoint_role_arn: str = "",
        hosted_cp: bool = False,
        channel_group: str = "",
    ) -> str:
        args = [
            "create",
            "operator-roles",
            "--prefix",
            prefix,
            "--oidc-config-id",
            oidc_config_id,
            "--role-arn",
            installer_role_arn,
            "--mode",
            "auto",
            "-y",
        ]
        if hosted_cp:
            args.append("--hosted-cp")
        args += _optional_flags(
            ("--shared-route53-role-arn", shared_route53_role_arn),
            ("--shared-vpc-endpoint-role-arn", shared_vpc_endpoint_role_arn),
            ("--channel-group", channel_group),
        )
        return self.run(*args)

    def create_operator_roles_by_cluster(self, cluster_id: str) -> str:
        return self.run("create", "operator-roles", "--cluster", cluster_id, "--mode", "auto", "-y")

    def delete_operator_roles(self, prefix: str) -> str:
        return self.run_delete("delete", "operator-roles", "--prefix", prefix, "--mode", "auto", "-y")

    # OIDC

    def create_oidc_config(self, managed: bool, installer_role_arn: str = "", prefix: str = "") -> str:
        """Create an OIDC configuration and return its id.

        Raises:
            CommandError: If the command fails or prints no config id
        """
        args = ["create", "oidc-config", "--mode", "auto", "-y", f"--managed={str(managed).lower()}"]
        if not managed:
            args += _optional_flags(("--installer-role-arn", installer_role_arn), ("--prefix", prefix))
        output = self.run(*args)
        match = OIDC_CONFIG_ID_PATTERN.search(output)
        if not match:
            raise CommandError([self.binary, *args], 0, f"no OIDC config id in output: {output}")
        return match.group(1)

    def delete_oidc_config(self, oidc_config_id: str) -> str:
        return self.run_delete("delete", "oidc-config", "--oidc-config-id", oidc_config_id, "--mode", "auto", "-y")

    def create_oidc_provider(self, oidc_config_id: str) -> str:
        return self.run("create", "oidc-provider", "--oidc-config-id", oidc_config_id, "--mode", "auto", "-y")

    def create_oidc_provider_by_cluster(self, cluster_id: str) -> str:
        return self.run("create", "oidc-provider", "--cluster", cluster_id, "--mode", "auto", "-y")

    def describe_oidc_issuer(self, oidc_config_id: str) -> str:
        """Return the issuer URL of an OIDC configuration."""
        output = self.run("list", "oidc-config", "-o", "yaml")
        try:
            entries = yaml.safe_load(output)
        except yaml.YAMLError as e:
            raise CommandError([self.binary, "list", "oidc-config"], 0, f"unparseable output: {e}")
        for entry in entries or []:
            if isinstance(entry, dict) and str(entry.get("id")) == oidc_config_id and entry.get("issuer_url"):
                return entry["issuer_url"]
        raise CommandError([self.binary, "list", "oidc-config"], 0, f"OIDC config {oidc_config_id} not found")

    # DNS domains

    def create_dns_domain(self, hosted_cp: bool = False) -> str:
        args = ["create", "dns-domain"]
        if hosted_cp:
            args.append("--hosted-cp")
        output = self.run(*args)
        match = DNS_DOMAIN_PATTERN.search(output)
        if not match:
            raise CommandError([self.binary, *args], 0, f"no DNS domain in output: {output}")
        return match.group(1)

    def delete_dns_domain(self, dns_domain: str) -> str:
        return self.run_delete("delete", "dns-domain", dns_domain)


def _optional_flags(*pairs: tuple[str, Optional[str]]) -> list[str]:
    args: list[str] = []
    for flag, value in pairs:
        if value:
            args += [flag, value]
    return args
