"""Tests for live-resource assertions."""

import pytest

from azure_module_testkit.assertions.live import (
    assert_address_space_contains,
    assert_contains,
    assert_dns_servers_contain,
    assert_equal,
    assert_output_keys,
    assert_subnet_count,
    assert_subnets_within_address_space,
)
from azure_module_testkit.azure_queries import SubnetInfo, VirtualNetworkInfo
from azure_module_testkit.exceptions import ModuleAssertionError


@pytest.fixture
def vnet():
    return VirtualNetworkInfo(
        name="vnet-test-ab12cd",
        id="/vnet/vnet-test-ab12cd",
        address_prefixes=["10.0.0.0/16"],
        dns_servers=["8.8.8.8", "8.8.4.4"],
        subnets=[
            SubnetInfo(name="default", address_prefixes=["10.0.1.0/24"]),
            SubnetInfo(name="aks", address_prefixes=["10.0.2.0/24"]),
            SubnetInfo(name="gateway", address_prefixes=["10.0.3.0/27"]),
        ],
    )


def test_address_space(vnet):
    assert_address_space_contains(vnet, "10.0.0.0/16")

    with pytest.raises(ModuleAssertionError, match="does not contain '10.1.0.0/16'"):
        assert_address_space_contains(vnet, "10.1.0.0/16")


def test_dns_servers(vnet):
    assert_dns_servers_contain(vnet, "8.8.8.8", "8.8.4.4")

    with pytest.raises(ModuleAssertionError, match="1.1.1.1"):
        assert_dns_servers_contain(vnet, "8.8.8.8", "1.1.1.1")


def test_subnet_count(vnet):
    assert_subnet_count(vnet, 3)

    with pytest.raises(ModuleAssertionError, match="expected 2, got 3"):
        assert_subnet_count(vnet, 2)


def test_subnets_within_address_space(vnet):
    assert_subnets_within_address_space(vnet)

    vnet.subnets.append(SubnetInfo(name="stray", address_prefixes=["192.168.0.0/24"]))
    with pytest.raises(ModuleAssertionError, match="stray"):
        assert_subnets_within_address_space(vnet)


def test_output_keys():
    subnet_ids = {"default": "/s/default", "aks": "/s/aks", "gateway": "/s/gateway"}

    assert_output_keys(subnet_ids, ["default", "aks", "gateway"], "subnet_ids")
    with pytest.raises(ModuleAssertionError, match="Output 'subnet_ids' is missing"):
        assert_output_keys(subnet_ids, ["default", "web"], "subnet_ids")


def test_generic_helpers():
    assert_equal("westeurope", "westeurope", "Location")
    assert_contains(["a", "b"], "a", "Names")

    with pytest.raises(ModuleAssertionError) as exc_info:
        assert_equal("westeurope", "eastus", "Location", address="/vnet/x")

    assert exc_info.value.address == "/vnet/x"
