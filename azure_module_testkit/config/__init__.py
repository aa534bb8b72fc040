"""
Configuration for tenant definitions and harness settings.

Provides type-safe configuration loading and validation with support
for a tenants file, environment variables and .env files.
"""

from .loader import (
    ConfigLoader,
    get_tenant_definitions,
    get_testkit_config,
    load_config,
    reset_config_cache,
)
from .models import (
    DEFAULT_RESOURCE_GROUP_PREFIX,
    HarnessSettings,
    RetrySettings,
    TenantDefinition,
    TenantsFile,
)

__all__ = [
    "DEFAULT_RESOURCE_GROUP_PREFIX",
    "ConfigLoader",
    "HarnessSettings",
    "RetrySettings",
    "TenantDefinition",
    "TenantsFile",
    "get_tenant_definitions",
    "get_testkit_config",
    "load_config",
    "reset_config_cache",
]
