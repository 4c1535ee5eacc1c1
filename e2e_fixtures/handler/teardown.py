"""Teardown plan for a destroy pass.

Steps run in list order, which is the dependency order: fixtures hosted
inside a VPC go before the VPC, IAM roles trusted by other roles go last.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Tuple

from e2e_fixtures.models.resources import Resources

if TYPE_CHECKING:
    from e2e_fixtures.handler.resources_handler import ResourcesHandler


@dataclass(frozen=True)
class TeardownStep:
    """One entry of the teardown plan.

    Attributes:
        label: Human-readable fixture label
        fields: Record fields the step owns; the step runs if any is set
        delete: Deletes the fixture, raising on failure
        clear: Clears the owned fields and persists
        shared_account: Tells whether the delete targets the shared account
    """

    label: str
    fields: Tuple[str, ...]
    delete: Callable[[], None]
    clear: Callable[[], None]
    shared_account: Callable[[Resources], bool] = lambda resources: False

    def is_present(self, resources: Resources) -> bool:
        return any(getattr(resources, name) for name in self.fields)

    def identifiers(self, resources: Resources) -> List[str]:
        return [getattr(resources, name) for name in self.fields if getattr(resources, name)]


def _always_shared(resources: Resources) -> bool:
    return True


def build_teardown_plan(handler: "ResourcesHandler") -> List[TeardownStep]:
    """Build the ordered teardown plan bound to a handler.

    Delete callables read identifiers from the handler when invoked, so the
    plan reflects clears made by earlier steps.
    """
    h = handler

    def vpc_shared(resources: Resources) -> bool:
        return resources.vpc_in_shared_account()

    def clear_hcp_roles() -> None:
        h.register_hcp_route53_share_role("")
        h.register_hcp_vpc_endpoint_share_role("")

    steps = [
        TeardownStep(
            "kms key",
            ("kms_key",),
            delete=lambda: h.delete_kms_key(etcd_kms=False),
            clear=lambda: h.register_kms_key(""),
        ),
        TeardownStep(
            "etcd kms key",
            ("etcd_kms_key",),
            delete=lambda: h.delete_kms_key(etcd_kms=True),
            clear=lambda: h.register_etcd_kms_key(""),
        ),
        TeardownStep(
            "audit log arn",
            ("audit_log_arn",),
            delete=h.delete_audit_log_role_arn,
            clear=lambda: h.register_audit_log_arn(""),
        ),
        TeardownStep(
            "ingress hosted zone",
            ("ingress_hosted_zone_id",),
            delete=lambda: h.delete_hosted_zone(h.ingress_hosted_zone_id),
            clear=lambda: h.register_ingress_hosted_zone_id(""),
            shared_account=vpc_shared,
        ),
        TeardownStep(
            "hostedcp internal hosted zone",
            ("hosted_cp_internal_hosted_zone_id",),
            delete=lambda: h.delete_hosted_zone(h.hosted_cp_internal_hosted_zone_id),
            clear=lambda: h.register_hosted_cp_internal_hosted_zone_id(""),
            shared_account=vpc_shared,
        ),
        TeardownStep(
            "dns domain",
            ("dns_domain",),
            delete=h.delete_dns_domain,
            clear=lambda: h.register_dns_domain(""),
        ),
        TeardownStep(
            "proxy resources",
            ("proxy_instance_id",),
            delete=lambda: h.cleanup_proxy_resources(h.proxy_instance_id, h.is_vpc_from_shared_account()),
            clear=lambda: h.register_proxy_instance_id(""),
            shared_account=vpc_shared,
        ),
        TeardownStep(
            "resource share",
            ("resource_share_arn",),
            delete=h.delete_resource_share,
            clear=lambda: h.register_resource_share_arn(""),
            shared_account=_always_shared,
        ),
        TeardownStep(
            "vpc chain",
            ("vpc_id",),
            delete=lambda: h.delete_vpc_chain(h.is_vpc_from_shared_account()),
            clear=lambda: h.register_vpc_id("", False),
            shared_account=vpc_shared,
        ),
        TeardownStep(
            "classic shared vpc role",
            ("shared_vpc_role",),
            delete=lambda: h.delete_shared_vpc_role(managed_policy=False),
            clear=lambda: h.register_shared_vpc_role(""),
            shared_account=_always_shared,
        ),
        TeardownStep(
            "hostedcp shared vpc roles",
            ("hcp_route53_share_role", "hcp_vpc_endpoint_share_role"),
            delete=lambda: h.delete_hosted_cp_shared_vpc_roles(managed_policy=False),
            clear=clear_hcp_roles,
            shared_account=_always_shared,
        ),
        TeardownStep(
            "additional principal role",
            ("additional_principals",),
            delete=lambda: h.delete_additional_principals_role(managed_policy=True),
            clear=lambda: h.register_additional_principals("", from_shared_account=False),
            shared_account=lambda resources: resources.additional_principals_in_shared_account(),
        ),
        TeardownStep(
            "operator roles",
            ("operator_roles_prefix",),
            delete=h.delete_operator_roles,
            clear=lambda: h.register_operator_roles_prefix(""),
        ),
        TeardownStep(
            "oidc config",
            ("oidc_config_id",),
            delete=h.delete_oidc_config,
            clear=lambda: h.register_oidc_config_id(""),
        ),
        TeardownStep(
            "account roles",
            ("account_roles_prefix",),
            delete=h.delete_account_roles,
            clear=lambda: h.register_account_roles_prefix(""),
        ),
    ]
    return steps
