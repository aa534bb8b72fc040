"""Shared fixtures for the testkit test suite."""

import json
import os
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from azure_module_testkit.config import TenantDefinition, reset_config_cache
from azure_module_testkit.credential_provider import get_credential_provider
from azure_module_testkit.tenant_config import TenantConfig, resolve_tenant_config

pytest_plugins = ["azure_module_testkit.pytest_plugin"]


@pytest.fixture(autouse=True)
def _isolate_config(request, monkeypatch, tmp_path):
    """Keep unit tests away from a developer's tenants file and ARM_* variables."""
    if request.node.get_closest_marker("integration"):
        yield
        return
    for var in (
        "ARM_SUBSCRIPTION_ID",
        "ARM_TENANT_ID",
        "ARM_CLIENT_ID",
        "ARM_CLIENT_SECRET",
        "AMT_REGION",
        "AZURE_LOCATION",
        "AMT_TENANT_NAME",
        "AMT_RESOURCE_GROUP_PREFIX",
        "AMT_TENANTS_FILE",
    ):
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("AMT_SETTINGS_"):
            monkeypatch.delenv(var)
    monkeypatch.chdir(tmp_path)
    reset_config_cache()
    get_credential_provider().clear_cache()
    yield
    reset_config_cache()


@pytest.fixture
def tenant_definition() -> TenantDefinition:
    return TenantDefinition(
        name="primary",
        subscription_id="00000000-0000-0000-0000-000000000001",
        tenant_id="11111111-1111-1111-1111-111111111111",
        region="westeurope",
        resource_group_prefix="rg-test-vnet",
    )


@pytest.fixture
def sp_tenant_definition() -> TenantDefinition:
    return TenantDefinition(
        name="secondary",
        subscription_id="00000000-0000-0000-0000-000000000002",
        tenant_id="22222222-2222-2222-2222-222222222222",
        region="northeurope",
        client_id="sp-client-id",
        client_secret="sp-secret",
    )


@pytest.fixture
def tenant_config(tenant_definition) -> TenantConfig:
    return resolve_tenant_config(tenant_definition, unique_id="ab12cd")


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


def _resource_json(
    address: str, values: Dict[str, Any], index: Optional[Any] = None
) -> Dict[str, Any]:
    rtype, name = address.split("[")[0].split(".")[-2:]
    item = {
        "address": address,
        "mode": "managed",
        "type": rtype,
        "name": name,
        "provider_name": "registry.terraform.io/hashicorp/azurerm",
        "values": values,
    }
    if index is not None:
        item["index"] = index
    return item


def _plan_json(
    resources: List[Dict[str, Any]],
    changes: Optional[List[Dict[str, Any]]] = None,
    outputs: Optional[Dict[str, Any]] = None,
) -> str:
    if changes is None:
        changes = [
            {
                "address": r["address"],
                "mode": "managed",
                "type": r["type"],
                "name": r["name"],
                "index": r.get("index"),
                "change": {"actions": ["create"], "before": None, "after": r["values"]},
            }
            for r in resources
        ]
    return json.dumps(
        {
            "format_version": "1.2",
            "planned_values": {
                "outputs": {k: {"value": v} for k, v in (outputs or {}).items()},
                "root_module": {"resources": resources},
            },
            "resource_changes": changes,
        }
    )


def _state_json(
    resources: List[Dict[str, Any]], outputs: Optional[Dict[str, Any]] = None
) -> str:
    return json.dumps(
        {
            "format_version": "1.0",
            "values": {
                "outputs": {k: {"value": v} for k, v in (outputs or {}).items()},
                "root_module": {"resources": resources},
            },
        }
    )


@pytest.fixture
def completed():
    """Factory for subprocess.CompletedProcess stand-ins."""
    return _completed


@pytest.fixture
def resource_json():
    """Factory for one resource entry of a plan or state document."""
    return _resource_json


@pytest.fixture
def plan_json():
    """Factory for ``terraform show -json <planfile>`` output."""
    return _plan_json


@pytest.fixture
def state_json():
    """Factory for ``terraform show -json`` output of applied state."""
    return _state_json
