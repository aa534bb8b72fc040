"""
Configuration loader for tenant definitions and harness settings.

Handles loading from multiple sources with proper priority:
Environment Variables > Tenants File > Defaults

The result is process-wide and read-only: it is loaded once, cached, and
handed out as immutable pydantic models / tuples to every tenant unit.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .models import DEFAULT_RESOURCE_GROUP_PREFIX, TenantDefinition, TenantsFile

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached_config: Optional[TenantsFile] = None


class ConfigLoader:
    """
    Loads tenant definitions and harness settings.

    Priority order (highest to lowest):
    1. Environment variables (AMT_SETTINGS_* for settings, ARM_* for a
       single tenant when the tenants file defines none)
    2. Tenants file (AMT_TENANTS_FILE, default ./tenants.yaml)
    3. Default values
    """

    DEFAULT_TENANTS_FILE = Path("tenants.yaml")
    ENV_PREFIX = "AMT_SETTINGS_"

    def __init__(self, tenants_file: Optional[Path] = None, use_dotenv: bool = True):
        """
        Initialize configuration loader.

        Args:
            tenants_file: Path to the tenants file. If None, uses AMT_TENANTS_FILE
                or ./tenants.yaml.
            use_dotenv: Load a .env file into the environment before reading it
        """
        if use_dotenv:
            load_dotenv(override=False)
        self.tenants_file = tenants_file or self._get_tenants_file_from_env()

    @classmethod
    def _get_tenants_file_from_env(cls) -> Path:
        """Get tenants file path from environment variable or default."""
        env_path = os.environ.get("AMT_TENANTS_FILE")
        if env_path:
            return Path(env_path).expanduser()
        return cls.DEFAULT_TENANTS_FILE

    def load(self) -> TenantsFile:
        """
        Load configuration from all sources and merge.

        Returns:
            Validated TenantsFile object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_dict: dict[str, Any] = {}

        if self.tenants_file.exists():
            config_dict = self._load_file(self.tenants_file)
            logger.info(f"Loaded tenant definitions from {self.tenants_file}")
        elif "AMT_TENANTS_FILE" in os.environ:
            raise ConfigurationError(
                f"Tenants file not found: {self.tenants_file}",
                context={"tenants_file": str(self.tenants_file)},
            )

        env_settings = self._load_settings_from_env()
        if env_settings:
            config_dict["settings"] = self._deep_merge(
                config_dict.get("settings") or {}, env_settings
            )

        if not config_dict.get("tenants"):
            env_tenant = self._load_tenant_from_env()
            if env_tenant is not None:
                config_dict["tenants"] = [env_tenant]
                logger.info("Using single tenant definition from ARM_* environment")

        try:
            return TenantsFile.model_validate(config_dict)
        except ValidationError as e:
            raise ConfigurationError(
                f"Tenant configuration validation failed: {e}", cause=e
            ) from e

    def _load_file(self, path: Path) -> dict[str, Any]:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If file cannot be read or parsed
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", cause=e) from e
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read tenants file {path}: {e}", cause=e
            ) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Tenants file {path} must contain a mapping at the top level"
            )
        return data

    def _load_tenant_from_env(self) -> Optional[dict[str, Any]]:
        """Build a single tenant definition from ARM_* variables, if any are set."""
        subscription_id = os.environ.get("ARM_SUBSCRIPTION_ID")
        tenant_id = os.environ.get("ARM_TENANT_ID")
        if not subscription_id and not tenant_id:
            return None

        tenant: dict[str, Any] = {
            "name": os.environ.get("AMT_TENANT_NAME", "default"),
            "subscription_id": subscription_id,
            "tenant_id": tenant_id,
            "region": os.environ.get("AMT_REGION") or os.environ.get("AZURE_LOCATION"),
            "resource_group_prefix": os.environ.get(
                "AMT_RESOURCE_GROUP_PREFIX", DEFAULT_RESOURCE_GROUP_PREFIX
            ),
        }
        client_id = os.environ.get("ARM_CLIENT_ID")
        client_secret = os.environ.get("ARM_CLIENT_SECRET")
        if client_id or client_secret:
            tenant["client_id"] = client_id
            tenant["client_secret"] = client_secret
        return tenant

    def _load_settings_from_env(self) -> dict[str, Any]:
        """
        Load harness settings from environment variables.

        Environment variable format:
        - AMT_SETTINGS_MAX_WORKERS
        - AMT_SETTINGS_KEEP_RESOURCES
        - AMT_SETTINGS_RETRY__MAX_RETRIES

        Double underscore (__) separates nested keys.
        """
        config: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            config_key = key[len(self.ENV_PREFIX) :].lower()
            parts = config_key.split("__")

            current = config
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = self._convert_env_value(value)

        return config

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to bool, int, float or str."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(
        self, base: dict[str, Any], update: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge two dictionaries without modifying base."""
        result = base.copy()

        for key, value in update.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def load_config(tenants_file: Optional[Path] = None) -> TenantsFile:
    """Load configuration without touching the process-wide cache."""
    return ConfigLoader(tenants_file).load()


def get_testkit_config() -> TenantsFile:
    """Return the process-wide configuration, loading it on first use."""
    global _cached_config
    with _cache_lock:
        if _cached_config is None:
            _cached_config = ConfigLoader().load()
        return _cached_config


def get_tenant_definitions() -> Tuple[TenantDefinition, ...]:
    """Return the process-wide tenant definitions as an immutable tuple."""
    return tuple(get_testkit_config().tenants)


def reset_config_cache() -> None:
    """Forget the cached configuration. Intended for tests."""
    global _cached_config
    with _cache_lock:
        _cached_config = None
