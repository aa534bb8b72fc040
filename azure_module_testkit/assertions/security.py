"""Security-compliance assertions for network security groups.

Checks:
    - no inbound rule allows any protocol from any source, unless a Deny rule
      with a lower priority number in the same NSG covers it (Azure evaluates
      rules in ascending priority and stops at the first match)
    - priorities are unique per NSG and direction, within 100-4096
    - every internet-facing subnet has at least one associated NSG
    - taggable resources carry the required tags

Rules and associations can come from a plan, from applied state, from the
module's input variables or from live Azure data; the checks themselves only
see plain values.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..azure_queries import NetworkSecurityGroupInfo, VirtualNetworkInfo
from ..exceptions import ModuleAssertionError
from ..terraform.plan import PlannedResource

NSG_TYPE = "azurerm_network_security_group"
NSG_RULE_TYPE = "azurerm_network_security_rule"
SUBNET_TYPE = "azurerm_subnet"
SUBNET_NSG_ASSOCIATION_TYPE = "azurerm_subnet_network_security_group_association"

OPEN_SOURCES = frozenset({"*", "0.0.0.0/0", "::/0", "internet", "any"})
INTERNET_FACING_HINTS = ("web", "public", "frontend", "dmz", "appgw")
MIN_PRIORITY = 100
MAX_PRIORITY = 4096


class FindingType(str, Enum):
    OVERLY_PERMISSIVE = "overly_permissive_rule"
    PRIORITY_CONFLICT = "priority_conflict"
    PRIORITY_OUT_OF_RANGE = "priority_out_of_range"
    UNPROTECTED_SUBNET = "unprotected_subnet"
    MISSING_TAG = "missing_tag"


@dataclass
class ComplianceFinding:
    """A single compliance violation."""

    finding_type: FindingType
    message: str
    nsg_name: Optional[str] = None
    rule_name: Optional[str] = None
    subject: Optional[str] = None


@dataclass
class ComplianceReport:
    """Outcome of a compliance evaluation."""

    findings: List[ComplianceFinding] = field(default_factory=list)
    rules_checked: int = 0
    subnets_checked: int = 0

    @property
    def is_compliant(self) -> bool:
        return not self.findings

    def of_type(self, finding_type: FindingType) -> List[ComplianceFinding]:
        return [f for f in self.findings if f.finding_type == finding_type]


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _values(*values: str) -> Set[str]:
    return {v.lower() for v in values if v}


def _values_cover(mine: Set[str], theirs: Set[str]) -> bool:
    """A literal * matches anything; otherwise every value must appear in mine."""
    return "*" in mine or (bool(theirs) and theirs <= mine)


@dataclass(frozen=True)
class SecurityRule:
    """One NSG rule. Lower priority numbers are evaluated first."""

    name: str
    priority: int
    direction: str
    access: str
    protocol: str
    source_port_range: str = "*"
    destination_port_range: str = "*"
    source_address_prefix: str = "*"
    destination_address_prefix: str = "*"
    source_address_prefixes: Sequence[str] = ()
    source_port_ranges: Sequence[str] = ()
    destination_port_ranges: Sequence[str] = ()
    nsg_name: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], nsg_name: str = "") -> "SecurityRule":
        """Build a rule from a terraform/Azure rule mapping.

        Raises:
            ModuleAssertionError: If priority is missing or not an integer
        """
        name = _as_str(data.get("name"))
        priority = data.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, (int, str)):
            raise ModuleAssertionError(
                f"Rule '{name}' in NSG '{nsg_name}' has no integer priority",
                expected="int",
                actual=type(priority).__name__,
            )
        try:
            priority_value = int(priority)
        except ValueError as e:
            raise ModuleAssertionError(
                f"Rule '{name}' in NSG '{nsg_name}' has non-numeric priority {priority!r}",
                expected="int",
                actual=priority,
            ) from e

        return cls(
            name=name,
            priority=priority_value,
            direction=_as_str(data.get("direction")),
            access=_as_str(data.get("access")),
            protocol=_as_str(data.get("protocol")),
            source_port_range=_as_str(data.get("source_port_range")),
            destination_port_range=_as_str(data.get("destination_port_range")),
            source_address_prefix=_as_str(data.get("source_address_prefix")),
            destination_address_prefix=_as_str(data.get("destination_address_prefix")),
            source_address_prefixes=tuple(data.get("source_address_prefixes") or ()),
            source_port_ranges=tuple(data.get("source_port_ranges") or ()),
            destination_port_ranges=tuple(data.get("destination_port_ranges") or ()),
            nsg_name=nsg_name,
        )

    @property
    def is_inbound(self) -> bool:
        return self.direction.lower() == "inbound"

    @property
    def is_allow(self) -> bool:
        return self.access.lower() == "allow"

    @property
    def is_deny(self) -> bool:
        return self.access.lower() == "deny"

    @property
    def any_protocol(self) -> bool:
        return self.protocol == "*" or self.protocol.lower() == "any"

    @property
    def open_source(self) -> bool:
        sources = [self.source_address_prefix, *self.source_address_prefixes]
        return any(s.lower() in OPEN_SOURCES for s in sources if s)

    @property
    def all_destination_ports(self) -> bool:
        return self.destination_port_range == "*" or "*" in self.destination_port_ranges

    @property
    def source_addresses(self) -> Set[str]:
        return _values(self.source_address_prefix, *self.source_address_prefixes)

    @property
    def source_ports(self) -> Set[str]:
        return _values(self.source_port_range, *self.source_port_ranges) or {"*"}

    @property
    def destination_ports(self) -> Set[str]:
        return _values(self.destination_port_range, *self.destination_port_ranges)

    def covers(self, other: "SecurityRule") -> bool:
        """True if every packet other matches is also matched by this rule.

        Only a literal ``*`` matches every value; ``Internet`` or ``0.0.0.0/0``
        do not cover ``*``, which also matches VirtualNetwork sources.
        """
        if self.direction.lower() != other.direction.lower():
            return False
        if not (self.any_protocol or self.protocol.lower() == other.protocol.lower()):
            return False
        return (
            _values_cover(self.source_addresses, other.source_addresses)
            and _values_cover(self.source_ports, other.source_ports)
            and _values_cover(self.destination_ports, other.destination_ports)
            and _values_cover(
                _values(self.destination_address_prefix), _values(other.destination_address_prefix)
            )
        )


def rules_by_priority(rules: Iterable[SecurityRule]) -> List[SecurityRule]:
    """Rules in evaluation order (NSG name, direction, ascending priority)."""
    return sorted(rules, key=lambda r: (r.nsg_name, r.direction.lower(), r.priority))


# Extraction


def extract_security_rules(resources: Iterable[PlannedResource]) -> List[SecurityRule]:
    """Rules from inline ``security_rule`` blocks and standalone rule resources."""
    rules: List[SecurityRule] = []
    for resource in resources:
        if resource.type == NSG_TYPE:
            nsg_name = _as_str(resource.values.get("name")) or resource.instance_key or resource.name
            for rule in resource.values.get("security_rule") or []:
                rules.append(SecurityRule.from_mapping(rule, nsg_name))
        elif resource.type == NSG_RULE_TYPE:
            nsg_name = _as_str(resource.values.get("network_security_group_name"))
            rules.append(SecurityRule.from_mapping(resource.values, nsg_name))
    return rules


def rules_from_module_vars(network_security_groups: Mapping[str, Any]) -> List[SecurityRule]:
    """Rules from the module's ``network_security_groups`` input variable."""
    rules: List[SecurityRule] = []
    for nsg_name, nsg in network_security_groups.items():
        for rule in (nsg or {}).get("security_rules") or []:
            rules.append(SecurityRule.from_mapping(rule, nsg_name))
    return rules


def rules_from_live(nsgs: Iterable[NetworkSecurityGroupInfo]) -> List[SecurityRule]:
    return [
        SecurityRule.from_mapping(rule, nsg.name)
        for nsg in nsgs
        for rule in nsg.security_rules
    ]


def subnet_associations_from_vars(subnets: Mapping[str, Any]) -> Dict[str, List[str]]:
    """subnet name -> NSG keys, from the module's ``subnets`` input variable."""
    return {
        name: list((subnet or {}).get("network_security_group_keys") or [])
        for name, subnet in subnets.items()
    }


def subnet_associations_from_resources(
    resources: Iterable[PlannedResource],
) -> Dict[str, List[str]]:
    """subnet name -> associated NSG references, from plan or state resources.

    State carries real IDs; a plan usually does not, so associations whose
    subnet_id is unknown are matched to subnets by their for_each key.
    """
    resources = list(resources)
    subnets = [r for r in resources if r.type == SUBNET_TYPE]
    by_id = {r.values["id"]: r for r in subnets if r.values.get("id")}
    by_key = {r.instance_key: r for r in subnets if r.instance_key is not None}

    def subnet_name(resource: PlannedResource) -> str:
        return _as_str(resource.values.get("name")) or resource.instance_key or resource.name

    associations: Dict[str, List[str]] = {subnet_name(s): [] for s in subnets}
    for resource in resources:
        if resource.type != SUBNET_NSG_ASSOCIATION_TYPE:
            continue
        subnet = by_id.get(resource.values.get("subnet_id")) or by_key.get(resource.instance_key)
        name = subnet_name(subnet) if subnet else _as_str(resource.values.get("subnet_id")) or resource.address
        nsg_ref = _as_str(resource.values.get("network_security_group_id")) or resource.address
        associations.setdefault(name, []).append(nsg_ref)

    for subnet in subnets:
        nsg_id = subnet.values.get("network_security_group_id")
        if nsg_id:
            associations[subnet_name(subnet)].append(nsg_id)
    return associations


def subnet_associations_from_live(
    vnet: VirtualNetworkInfo, nsgs: Iterable[NetworkSecurityGroupInfo] = ()
) -> Dict[str, List[str]]:
    associations = {
        s.name: [s.network_security_group_id] if s.network_security_group_id else []
        for s in vnet.subnets
    }
    ids = {s.id: s.name for s in vnet.subnets if s.id}
    for nsg in nsgs:
        for subnet_id in nsg.subnet_ids:
            name = ids.get(subnet_id)
            if name and (nsg.id or nsg.name) not in associations[name]:
                associations[name].append(nsg.id or nsg.name)
    return associations


# Checks


def find_overly_permissive_rules(rules: Iterable[SecurityRule]) -> List[ComplianceFinding]:
    """Inbound Allow rules with protocol ``*`` from an open source.

    A rule is not reported when a Deny rule in the same NSG with a lower
    priority number covers it, because that Deny wins on the platform.
    """
    ordered = rules_by_priority(rules)
    findings: List[ComplianceFinding] = []
    for rule in ordered:
        if not (rule.is_inbound and rule.is_allow and rule.any_protocol and rule.open_source):
            continue
        shadowed_by = next(
            (
                r
                for r in ordered
                if r.nsg_name == rule.nsg_name
                and r.priority < rule.priority
                and r.is_deny
                and r.covers(rule)
            ),
            None,
        )
        if shadowed_by is not None:
            continue
        findings.append(
            ComplianceFinding(
                finding_type=FindingType.OVERLY_PERMISSIVE,
                message=(
                    f"Rule '{rule.name}' (priority {rule.priority}) in NSG '{rule.nsg_name}' "
                    f"allows any protocol inbound from '{rule.source_address_prefix or '*'}'"
                ),
                nsg_name=rule.nsg_name,
                rule_name=rule.name,
            )
        )
    return findings


def find_priority_conflicts(rules: Iterable[SecurityRule]) -> List[ComplianceFinding]:
    findings: List[ComplianceFinding] = []
    seen: Dict[tuple, SecurityRule] = {}
    for rule in rules_by_priority(rules):
        if not MIN_PRIORITY <= rule.priority <= MAX_PRIORITY:
            findings.append(
                ComplianceFinding(
                    finding_type=FindingType.PRIORITY_OUT_OF_RANGE,
                    message=(
                        f"Rule '{rule.name}' in NSG '{rule.nsg_name}' has priority "
                        f"{rule.priority}, allowed range is {MIN_PRIORITY}-{MAX_PRIORITY}"
                    ),
                    nsg_name=rule.nsg_name,
                    rule_name=rule.name,
                )
            )
        key = (rule.nsg_name, rule.direction.lower(), rule.priority)
        if key in seen:
            findings.append(
                ComplianceFinding(
                    finding_type=FindingType.PRIORITY_CONFLICT,
                    message=(
                        f"Rules '{seen[key].name}' and '{rule.name}' in NSG '{rule.nsg_name}' "
                        f"share {rule.direction} priority {rule.priority}"
                    ),
                    nsg_name=rule.nsg_name,
                    rule_name=rule.name,
                )
            )
        else:
            seen[key] = rule
    return findings


def is_internet_facing(subnet_name: str) -> bool:
    lowered = subnet_name.lower()
    return any(hint in lowered for hint in INTERNET_FACING_HINTS)


def find_unprotected_subnets(
    associations: Mapping[str, Sequence[str]],
    internet_facing: Optional[Iterable[str]] = None,
) -> List[ComplianceFinding]:
    """Internet-facing subnets without an associated NSG.

    Args:
        associations: subnet name -> associated NSG references
        internet_facing: Subnets to check; defaults to names matching
            INTERNET_FACING_HINTS
    """
    if internet_facing is None:
        targets = [name for name in associations if is_internet_facing(name)]
    else:
        targets = list(internet_facing)

    return [
        ComplianceFinding(
            finding_type=FindingType.UNPROTECTED_SUBNET,
            message=f"Internet-facing subnet '{name}' has no network security group",
            subject=name,
        )
        for name in targets
        if not associations.get(name)
    ]


def find_missing_tags(
    resources: Iterable[PlannedResource], required_tags: Mapping[str, Optional[str]]
) -> List[ComplianceFinding]:
    """Taggable resources missing a required tag (or with the wrong value).

    A required value of None only checks presence.
    """
    findings: List[ComplianceFinding] = []
    for resource in resources:
        if "tags" not in resource.values:
            continue
        tags = resource.values.get("tags") or {}
        for key, expected in required_tags.items():
            if key not in tags:
                findings.append(
                    ComplianceFinding(
                        finding_type=FindingType.MISSING_TAG,
                        message=f"{resource.address} is missing tag '{key}'",
                        subject=resource.address,
                    )
                )
            elif expected is not None and tags[key] != expected:
                findings.append(
                    ComplianceFinding(
                        finding_type=FindingType.MISSING_TAG,
                        message=(
                            f"{resource.address} has tag {key}={tags[key]!r}, "
                            f"expected {expected!r}"
                        ),
                        subject=resource.address,
                    )
                )
    return findings


def validate_security_compliance(
    rules: Iterable[SecurityRule],
    subnet_associations: Optional[Mapping[str, Sequence[str]]] = None,
    internet_facing: Optional[Iterable[str]] = None,
    tagged_resources: Optional[Iterable[PlannedResource]] = None,
    required_tags: Optional[Mapping[str, Optional[str]]] = None,
) -> ComplianceReport:
    """Run every compliance check and collect the findings."""
    rules = list(rules)
    report = ComplianceReport(rules_checked=len(rules))
    report.findings.extend(find_overly_permissive_rules(rules))
    report.findings.extend(find_priority_conflicts(rules))
    if subnet_associations is not None:
        report.subnets_checked = len(subnet_associations)
        report.findings.extend(find_unprotected_subnets(subnet_associations, internet_facing))
    if required_tags and tagged_resources is not None:
        report.findings.extend(find_missing_tags(tagged_resources, required_tags))
    return report


def validate_resources_compliance(
    resources: Iterable[PlannedResource],
    internet_facing: Optional[Iterable[str]] = None,
    required_tags: Optional[Mapping[str, Optional[str]]] = None,
) -> ComplianceReport:
    """Compliance over plan or state resources."""
    resources = list(resources)
    return validate_security_compliance(
        extract_security_rules(resources),
        subnet_associations_from_resources(resources),
        internet_facing=internet_facing,
        tagged_resources=resources,
        required_tags=required_tags,
    )


def assert_compliant(report: ComplianceReport) -> None:
    """Fail with every finding of a non-compliant report."""
    if report.is_compliant:
        return
    raise ModuleAssertionError(
        f"{len(report.findings)} security compliance violation(s):\n"
        + "\n".join(f"  - {f.message}" for f in report.findings),
        expected="no violations",
        actual=[f.message for f in report.findings],
    )


def assert_no_overly_permissive_rules(rules: Iterable[SecurityRule]) -> None:
    assert_compliant(ComplianceReport(findings=find_overly_permissive_rules(rules)))


def assert_internet_facing_subnets_protected(
    associations: Mapping[str, Sequence[str]],
    internet_facing: Optional[Iterable[str]] = None,
) -> None:
    assert_compliant(
        ComplianceReport(findings=find_unprotected_subnets(associations, internet_facing))
    )


def assert_required_tags(
    resources: Iterable[PlannedResource], required_tags: Mapping[str, Optional[str]]
) -> None:
    assert_compliant(ComplianceReport(findings=find_missing_tags(resources, required_tags)))


def assert_security_compliance(
    rules: Iterable[SecurityRule],
    subnet_associations: Optional[Mapping[str, Sequence[str]]] = None,
    internet_facing: Optional[Iterable[str]] = None,
) -> ComplianceReport:
    report = validate_security_compliance(rules, subnet_associations, internet_facing)
    assert_compliant(report)
    return report
