"""Tests for tenant config resolution."""

import string

import pytest

from azure_module_testkit.config import TenantDefinition
from azure_module_testkit.exceptions import ConfigurationError
from azure_module_testkit.tenant_config import (
    TenantCredentials,
    generate_unique_id,
    resolve_tenant_config,
)


class TestGenerateUniqueId:
    def test_default_length_and_alphabet(self):
        unique_id = generate_unique_id()

        assert len(unique_id) == 6
        assert set(unique_id) <= set(string.ascii_lowercase + string.digits)

    def test_values_differ(self):
        assert len({generate_unique_id() for _ in range(50)}) == 50

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            generate_unique_id(0)


class TestResolveTenantConfig:
    def test_resolves_definition(self, tenant_definition):
        config = resolve_tenant_config(tenant_definition, unique_id="ab12cd")

        assert config.name == "primary"
        assert config.unique_id == "ab12cd"
        assert config.region == "westeurope"
        assert config.resource_group_name == "rg-test-vnet-ab12cd"
        assert config.unique_name("vnet-test") == "vnet-test-ab12cd"
        assert config.credentials is None

    def test_resolving_twice_differs_only_in_unique_id(self, tenant_definition):
        first = resolve_tenant_config(tenant_definition)
        second = resolve_tenant_config(tenant_definition)

        assert first.unique_id != second.unique_id
        assert first.subscription_id == second.subscription_id
        assert first.tenant_id == second.tenant_id
        assert first.region == second.region
        assert first.resource_group == second.resource_group

    def test_unique_id_length(self, tenant_definition):
        config = resolve_tenant_config(tenant_definition, unique_id_length=10)

        assert len(config.unique_id) == 10

    def test_missing_fields_fail(self):
        definition = TenantDefinition(name="incomplete", tenant_id="t")

        with pytest.raises(ConfigurationError) as exc_info:
            resolve_tenant_config(definition)

        assert exc_info.value.missing_keys == ["subscription_id", "region"]
        assert "incomplete" in exc_info.value.message

    def test_service_principal_credentials(self, sp_tenant_definition):
        config = resolve_tenant_config(sp_tenant_definition)

        assert config.credentials.client_id == "sp-client-id"
        assert config.credentials.tenant_id == sp_tenant_definition.tenant_id
        assert "sp-secret" not in config.describe()
        assert "sp-secret" not in repr(config)

    def test_config_is_immutable(self, tenant_config):
        with pytest.raises(AttributeError):
            tenant_config.region = "eastus"

    def test_tags_are_read_only(self):
        definition = TenantDefinition(
            name="tagged",
            subscription_id="sub",
            tenant_id="tenant",
            region="westeurope",
            tags={"team": "network"},
        )
        config = resolve_tenant_config(definition)

        assert config.tags == {"team": "network"}
        with pytest.raises(TypeError):
            config.tags["team"] = "other"  # type: ignore[index]
        assert definition.tags == {"team": "network"}


class TestTenantCredentials:
    def test_missing_secret(self):
        with pytest.raises(ValueError, match="Client secret is required"):
            TenantCredentials(tenant_id="t", client_id="c", client_secret="")

    def test_mask_secret(self):
        creds = TenantCredentials(tenant_id="t", client_id="c", client_secret="s3cret")

        assert "s3cret" not in creds.mask_secret()
