"""Assertions over live Azure properties and terraform outputs.

All checks take data that was already fetched; nothing here calls Azure.
"""

import ipaddress
from typing import Any, Collection, Iterable, Mapping, Optional

from ..azure_queries import VirtualNetworkInfo
from ..exceptions import ModuleAssertionError


def assert_equal(expected: Any, actual: Any, what: str, address: Optional[str] = None) -> None:
    if expected != actual:
        raise ModuleAssertionError(
            f"{what}: expected {expected!r}, got {actual!r}",
            expected=expected,
            actual=actual,
            address=address,
        )


def assert_contains(
    container: Collection[Any], item: Any, what: str, address: Optional[str] = None
) -> None:
    if item not in container:
        raise ModuleAssertionError(
            f"{what} does not contain {item!r} (got {sorted(map(str, container))})",
            expected=item,
            actual=list(container),
            address=address,
        )


def assert_contains_all(
    container: Collection[Any], items: Iterable[Any], what: str, address: Optional[str] = None
) -> None:
    """Subset containment: every item must be in container."""
    missing = [i for i in items if i not in container]
    if missing:
        raise ModuleAssertionError(
            f"{what} is missing {missing!r} (got {sorted(map(str, container))})",
            expected=missing,
            actual=list(container),
            address=address,
        )


def assert_address_space_contains(vnet: VirtualNetworkInfo, cidr: str) -> None:
    assert_contains(vnet.address_prefixes, cidr, f"Address space of {vnet.name}", vnet.id)


def assert_dns_servers_contain(vnet: VirtualNetworkInfo, *servers: str) -> None:
    assert_contains_all(vnet.dns_servers, servers, f"DNS servers of {vnet.name}", vnet.id)


def assert_subnet_count(vnet: VirtualNetworkInfo, expected: int) -> None:
    assert_equal(expected, vnet.subnet_count, f"Subnet count of {vnet.name}", vnet.id)


def assert_subnets_within_address_space(vnet: VirtualNetworkInfo) -> None:
    """Every subnet prefix must fall inside one of the VNet's address prefixes."""
    networks = [ipaddress.ip_network(p, strict=False) for p in vnet.address_prefixes]
    for subnet in vnet.subnets:
        for prefix in subnet.address_prefixes:
            candidate = ipaddress.ip_network(prefix, strict=False)
            if not any(
                candidate.version == n.version and candidate.subnet_of(n)  # type: ignore[arg-type]
                for n in networks
            ):
                raise ModuleAssertionError(
                    f"Subnet {subnet.name} prefix {prefix} is outside the address space "
                    f"of {vnet.name}",
                    expected=vnet.address_prefixes,
                    actual=prefix,
                    address=subnet.id,
                )


def assert_output_keys(outputs: Mapping[str, Any], keys: Iterable[str], output_name: str) -> None:
    """Fail unless a map-valued output has every expected key."""
    assert_contains_all(set(outputs), keys, f"Output '{output_name}'")
