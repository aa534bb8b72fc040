"""Tests for tenant definition loading."""

import pytest
import yaml

from azure_module_testkit.config import (
    ConfigLoader,
    TenantDefinition,
    get_tenant_definitions,
    get_testkit_config,
    load_config,
    reset_config_cache,
)
from azure_module_testkit.exceptions import ConfigurationError

TENANTS = {
    "tenants": [
        {
            "name": "primary",
            "subscription_id": "sub-1",
            "tenant_id": "tenant-1",
            "region": "westeurope",
        },
        {
            "name": "secondary",
            "subscription_id": "sub-2",
            "tenant_id": "tenant-2",
            "region": "northeurope",
            "client_id": "client-2",
            "client_secret": "secret-2",
            "tags": {"team": "network"},
        },
    ],
    "settings": {"max_workers": 2, "retry": {"max_retries": 5}},
}


@pytest.fixture
def tenants_file(tmp_path):
    path = tmp_path / "tenants.yaml"
    path.write_text(yaml.safe_dump(TENANTS))
    return path


class TestConfigLoader:
    def test_load_tenants_file(self, tenants_file):
        config = ConfigLoader(tenants_file, use_dotenv=False).load()

        assert [t.name for t in config.tenants] == ["primary", "secondary"]
        assert config.tenants[1].tags == {"team": "network"}
        assert config.settings.max_workers == 2
        assert config.settings.retry.max_retries == 5
        assert config.settings.retry.initial_delay == 5.0

    def test_default_file_in_working_directory(self, tenants_file):
        # the isolation fixture chdirs into tmp_path, where tenants_file lives
        config = load_config()

        assert len(config.tenants) == 2

    def test_missing_default_file_is_not_an_error(self):
        config = ConfigLoader(use_dotenv=False).load()

        assert config.tenants == ()

    def test_missing_explicit_file_fails(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AMT_TENANTS_FILE", str(tmp_path / "nope.yaml"))

        with pytest.raises(ConfigurationError, match="Tenants file not found"):
            ConfigLoader(use_dotenv=False).load()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("tenants: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigLoader(path, use_dotenv=False).load()

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigLoader(path, use_dotenv=False).load()

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "extra.yaml"
        path.write_text(yaml.safe_dump({"tenants": [{"name": "a", "colour": "blue"}]}))

        with pytest.raises(ConfigurationError, match="validation failed"):
            ConfigLoader(path, use_dotenv=False).load()

    def test_duplicate_tenant_names_rejected(self, tmp_path):
        path = tmp_path / "dup.yaml"
        path.write_text(yaml.safe_dump({"tenants": [{"name": "a"}, {"name": "a"}]}))

        with pytest.raises(ConfigurationError, match="Duplicate tenant name"):
            ConfigLoader(path, use_dotenv=False).load()

    def test_settings_env_override(self, tenants_file, monkeypatch):
        monkeypatch.setenv("AMT_SETTINGS_MAX_WORKERS", "8")
        monkeypatch.setenv("AMT_SETTINGS_KEEP_RESOURCES", "true")
        monkeypatch.setenv("AMT_SETTINGS_RETRY__INITIAL_DELAY", "0.5")

        config = ConfigLoader(tenants_file, use_dotenv=False).load()

        assert config.settings.max_workers == 8
        assert config.settings.keep_resources is True
        assert config.settings.retry.initial_delay == 0.5
        assert config.settings.retry.max_retries == 5

    def test_single_tenant_from_arm_env(self, monkeypatch):
        monkeypatch.setenv("ARM_SUBSCRIPTION_ID", "sub-env")
        monkeypatch.setenv("ARM_TENANT_ID", "tenant-env")
        monkeypatch.setenv("AMT_REGION", "eastus")
        monkeypatch.setenv("ARM_CLIENT_ID", "client-env")
        monkeypatch.setenv("ARM_CLIENT_SECRET", "secret-env")

        config = ConfigLoader(use_dotenv=False).load()

        assert len(config.tenants) == 1
        tenant = config.tenants[0]
        assert tenant.name == "default"
        assert tenant.subscription_id == "sub-env"
        assert tenant.region == "eastus"
        assert tenant.client_id == "client-env"

    def test_tenants_file_wins_over_arm_env(self, tenants_file, monkeypatch):
        monkeypatch.setenv("ARM_SUBSCRIPTION_ID", "sub-env")

        config = ConfigLoader(tenants_file, use_dotenv=False).load()

        assert [t.subscription_id for t in config.tenants] == ["sub-1", "sub-2"]

    def test_client_id_without_secret_rejected(self, monkeypatch):
        monkeypatch.setenv("ARM_SUBSCRIPTION_ID", "sub-env")
        monkeypatch.setenv("ARM_CLIENT_ID", "client-env")

        with pytest.raises(ConfigurationError, match="must be set together"):
            ConfigLoader(use_dotenv=False).load()


class TestTenantDefinition:
    def test_frozen(self):
        definition = TenantDefinition(name="a")

        with pytest.raises(Exception):
            definition.name = "b"

    def test_blank_name_rejected(self):
        with pytest.raises(ValueError, match="must not be empty"):
            TenantDefinition(name="  ")

    def test_secret_not_in_repr(self):
        definition = TenantDefinition(name="a", client_id="c", client_secret="hunter2")

        assert "hunter2" not in repr(definition)


class TestProcessWideConfig:
    def test_cached_until_reset(self, tenants_file):
        first = get_testkit_config()

        assert get_testkit_config() is first
        reset_config_cache()
        assert get_testkit_config() is not first

    def test_definitions_are_a_tuple(self, tenants_file):
        definitions = get_tenant_definitions()

        assert isinstance(definitions, tuple)
        assert definitions[0].name == "primary"

    def test_cached_tenants_are_read_only(self, tenants_file):
        config = get_testkit_config()

        assert isinstance(config.tenants, tuple)
        with pytest.raises(AttributeError):
            config.tenants.append(TenantDefinition(name="intruder"))
        with pytest.raises(Exception):
            config.tenants = ()
