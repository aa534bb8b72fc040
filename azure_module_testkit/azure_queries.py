"""Read-only Azure network lookups for live-resource assertions.

Fetches virtual networks and network security groups through the Azure SDK
and flattens them into plain property bags, so the assertion layer never talks
to the network and never depends on SDK model classes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.network import NetworkManagementClient

from .exceptions import wrap_azure_exception

logger = logging.getLogger(__name__)


@dataclass
class SubnetInfo:
    """Live subnet properties."""

    name: str
    id: Optional[str] = None
    address_prefixes: List[str] = field(default_factory=list)
    network_security_group_id: Optional[str] = None
    delegations: List[str] = field(default_factory=list)


@dataclass
class VirtualNetworkInfo:
    """Live virtual network properties."""

    name: str
    id: Optional[str] = None
    location: Optional[str] = None
    address_prefixes: List[str] = field(default_factory=list)
    dns_servers: List[str] = field(default_factory=list)
    subnets: List[SubnetInfo] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def subnet_count(self) -> int:
        return len(self.subnets)

    def subnet(self, name: str) -> Optional[SubnetInfo]:
        return next((s for s in self.subnets if s.name == name), None)


@dataclass
class NetworkSecurityGroupInfo:
    """Live NSG with its rules as plain mappings and associated subnet IDs."""

    name: str
    id: Optional[str] = None
    security_rules: List[Dict[str, Any]] = field(default_factory=list)
    subnet_ids: List[str] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)


def _subnet_prefixes(subnet: Any) -> List[str]:
    prefixes = list(getattr(subnet, "address_prefixes", None) or [])
    single = getattr(subnet, "address_prefix", None)
    if single and single not in prefixes:
        prefixes.insert(0, single)
    return prefixes


def _subnet_from_sdk(subnet: Any) -> SubnetInfo:
    nsg = getattr(subnet, "network_security_group", None)
    return SubnetInfo(
        name=subnet.name,
        id=getattr(subnet, "id", None),
        address_prefixes=_subnet_prefixes(subnet),
        network_security_group_id=getattr(nsg, "id", None) if nsg else None,
        delegations=[
            d.service_name
            for d in getattr(subnet, "delegations", None) or []
            if getattr(d, "service_name", None)
        ],
    )


def _rule_to_mapping(rule: Any) -> Dict[str, Any]:
    return {
        "name": rule.name,
        "priority": rule.priority,
        "direction": rule.direction,
        "access": rule.access,
        "protocol": rule.protocol,
        "source_port_range": getattr(rule, "source_port_range", None),
        "destination_port_range": getattr(rule, "destination_port_range", None),
        "source_address_prefix": getattr(rule, "source_address_prefix", None),
        "destination_address_prefix": getattr(rule, "destination_address_prefix", None),
        "source_address_prefixes": list(getattr(rule, "source_address_prefixes", None) or []),
        "source_port_ranges": list(getattr(rule, "source_port_ranges", None) or []),
        "destination_port_ranges": list(getattr(rule, "destination_port_ranges", None) or []),
    }


class AzureNetworkQueries:
    """Network lookups scoped to one subscription."""

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str,
        client_factory: Optional[Callable[[TokenCredential, str], Any]] = None,
    ) -> None:
        self.subscription_id = subscription_id
        factory = client_factory or NetworkManagementClient
        self.client = factory(credential, subscription_id)

    def get_virtual_network(self, resource_group: str, name: str) -> VirtualNetworkInfo:
        """Fetch one virtual network.

        Raises:
            ResourceNotFoundInAzureError: The VNet does not exist
            AzureQueryError: Any other SDK failure
        """
        logger.debug(f"Fetching virtual network {resource_group}/{name}")
        try:
            vnet = self.client.virtual_networks.get(resource_group, name)
        except AzureError as e:
            raise wrap_azure_exception(e, resource_group, name) from e

        address_space = getattr(vnet, "address_space", None)
        dhcp = getattr(vnet, "dhcp_options", None)
        return VirtualNetworkInfo(
            name=vnet.name,
            id=getattr(vnet, "id", None),
            location=getattr(vnet, "location", None),
            address_prefixes=list(getattr(address_space, "address_prefixes", None) or []),
            dns_servers=list(getattr(dhcp, "dns_servers", None) or []),
            subnets=[_subnet_from_sdk(s) for s in getattr(vnet, "subnets", None) or []],
            tags=dict(getattr(vnet, "tags", None) or {}),
        )

    def list_network_security_groups(
        self, resource_group: str
    ) -> List[NetworkSecurityGroupInfo]:
        """Fetch every NSG in a resource group."""
        logger.debug(f"Listing network security groups in {resource_group}")
        try:
            groups = list(self.client.network_security_groups.list(resource_group))
        except AzureError as e:
            raise wrap_azure_exception(e, resource_group) from e

        return [
            NetworkSecurityGroupInfo(
                name=nsg.name,
                id=getattr(nsg, "id", None),
                security_rules=[
                    _rule_to_mapping(r) for r in getattr(nsg, "security_rules", None) or []
                ],
                subnet_ids=[
                    s.id for s in getattr(nsg, "subnets", None) or [] if getattr(s, "id", None)
                ],
                tags=dict(getattr(nsg, "tags", None) or {}),
            )
            for nsg in groups
        ]


def get_virtual_network(
    resource_group: str,
    name: str,
    subscription_id: str,
    credential: TokenCredential,
) -> VirtualNetworkInfo:
    """One-shot virtual network lookup."""
    return AzureNetworkQueries(credential, subscription_id).get_virtual_network(
        resource_group, name
    )
