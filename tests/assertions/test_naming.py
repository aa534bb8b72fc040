"""Tests for naming-convention assertions."""

import pytest

from azure_module_testkit.assertions.naming import (
    assert_name_matches_convention,
    assert_resource_name_contains,
    get_planned_attribute_str,
)
from azure_module_testkit.exceptions import ModuleAssertionError
from azure_module_testkit.terraform.plan import parse_plan_json


def _change(address, after, actions=("create",)):
    rtype, name = address.split("[")[0].split(".")[-2:]
    return {
        "address": address,
        "type": rtype,
        "name": name,
        "change": {"actions": list(actions), "before": None, "after": after},
    }


@pytest.fixture
def make_plan(plan_json):
    def _make(*changes):
        return parse_plan_json(plan_json([], changes=list(changes)))

    return _make


class TestGetPlannedAttributeStr:
    def test_returns_names(self, make_plan):
        plan = make_plan(
            _change("azurerm_virtual_network.main", {"name": "vnetprod-prod-vnet"}),
            _change('azurerm_subnet.subnets["a"]', {"name": "a"}),
        )

        assert get_planned_attribute_str(plan, "azurerm_virtual_network") == [
            "vnetprod-prod-vnet"
        ]

    def test_non_string_attribute_fails(self, make_plan):
        plan = make_plan(_change("azurerm_virtual_network.main", {"name": 42}))

        with pytest.raises(ModuleAssertionError, match="is int, expected str"):
            get_planned_attribute_str(plan, "azurerm_virtual_network")

    def test_missing_attribute_fails(self, make_plan):
        plan = make_plan(_change("azurerm_virtual_network.main", {"location": "westeurope"}))

        with pytest.raises(ModuleAssertionError, match="no planned attribute 'name'"):
            get_planned_attribute_str(plan, "azurerm_virtual_network")

    def test_no_resources_of_type_fails(self, make_plan):
        plan = make_plan(_change('azurerm_subnet.subnets["a"]', {"name": "a"}))

        with pytest.raises(ModuleAssertionError, match="no created or updated"):
            get_planned_attribute_str(plan, "azurerm_virtual_network")

    def test_deleted_resources_ignored(self, make_plan):
        plan = make_plan(
            _change("azurerm_virtual_network.old", None, actions=("delete",)),
            _change("azurerm_virtual_network.main", {"name": "vnet-new"}),
        )

        assert get_planned_attribute_str(plan, "azurerm_virtual_network") == ["vnet-new"]


class TestAssertResourceNameContains:
    def test_passes(self, make_plan):
        plan = make_plan(_change("azurerm_virtual_network.main", {"name": "vnetprod-prod-vnet"}))

        assert assert_resource_name_contains(plan, "azurerm_virtual_network", "vnetprod") == [
            "vnetprod-prod-vnet"
        ]

    def test_fails_with_address(self, make_plan):
        plan = make_plan(_change("azurerm_virtual_network.main", {"name": "vnet-test"}))

        with pytest.raises(ModuleAssertionError) as exc_info:
            assert_resource_name_contains(plan, "azurerm_virtual_network", "vnetprod")

        assert exc_info.value.address == "azurerm_virtual_network.main"
        assert exc_info.value.actual == "vnet-test"


class TestAssertNameMatchesConvention:
    def test_passes(self):
        assert_name_matches_convention(
            "vnetprod-prod-ab12cd", prefix="vnetprod", environment="prod", unique_id="ab12cd", max_length=64
        )

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"prefix": "vnettest"}, "does not start with prefix"),
            ({"environment": "dev"}, "does not contain environment"),
            ({"unique_id": "zz99yy"}, "does not contain unique id"),
            ({"max_length": 5}, "limit is 5"),
        ],
    )
    def test_failures(self, kwargs, message):
        with pytest.raises(ModuleAssertionError, match=message):
            assert_name_matches_convention("vnetprod-prod-ab12cd", **kwargs)
