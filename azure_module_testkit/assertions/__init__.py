"""Assertions over plans, names, live Azure resources and NSG compliance."""

from .live import (
    assert_address_space_contains,
    assert_contains,
    assert_contains_all,
    assert_dns_servers_contain,
    assert_equal,
    assert_output_keys,
    assert_subnet_count,
    assert_subnets_within_address_space,
)
from .naming import (
    assert_name_matches_convention,
    assert_resource_name_contains,
    get_change_attribute_str,
    get_planned_attribute_str,
)
from .plan import (
    require_planned_resource,
    require_planned_resources,
    require_resource_change_actions,
)
from .security import (
    ComplianceFinding,
    ComplianceReport,
    FindingType,
    SecurityRule,
    assert_compliant,
    assert_internet_facing_subnets_protected,
    assert_no_overly_permissive_rules,
    assert_required_tags,
    assert_security_compliance,
    extract_security_rules,
    find_missing_tags,
    find_overly_permissive_rules,
    find_priority_conflicts,
    find_unprotected_subnets,
    rules_from_live,
    rules_from_module_vars,
    subnet_associations_from_live,
    subnet_associations_from_resources,
    subnet_associations_from_vars,
    validate_resources_compliance,
    validate_security_compliance,
)

__all__ = [
    "ComplianceFinding",
    "ComplianceReport",
    "FindingType",
    "SecurityRule",
    "assert_address_space_contains",
    "assert_compliant",
    "assert_contains",
    "assert_contains_all",
    "assert_dns_servers_contain",
    "assert_equal",
    "assert_internet_facing_subnets_protected",
    "assert_name_matches_convention",
    "assert_no_overly_permissive_rules",
    "assert_output_keys",
    "assert_required_tags",
    "assert_resource_name_contains",
    "assert_security_compliance",
    "assert_subnet_count",
    "assert_subnets_within_address_space",
    "extract_security_rules",
    "find_missing_tags",
    "find_overly_permissive_rules",
    "find_priority_conflicts",
    "find_unprotected_subnets",
    "get_change_attribute_str",
    "get_planned_attribute_str",
    "require_planned_resource",
    "require_planned_resources",
    "require_resource_change_actions",
    "rules_from_live",
    "rules_from_module_vars",
    "subnet_associations_from_live",
    "subnet_associations_from_resources",
    "subnet_associations_from_vars",
    "validate_resources_compliance",
    "validate_security_compliance",
]
