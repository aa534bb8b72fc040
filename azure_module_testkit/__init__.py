"""
Azure Module Testkit

Integration-test harness for Azure Terraform modules: runs each test body
concurrently against every configured tenant, drives terraform plan/apply/
destroy with transient-error retries, and releases every resource a test
creates.
"""

from .cleanup import CleanupStack
from .credential_provider import (
    AzureAuthContext,
    TenantCredentialProvider,
    get_credential_provider,
    setup_azure_auth,
)
from .exceptions import (
    AzureAuthenticationError,
    AzureQueryError,
    CleanupError,
    ConfigurationError,
    ModuleAssertionError,
    MultiTenantTestFailure,
    ResourceNotFoundInAzureError,
    RetryExhaustedError,
    TerraformCommandError,
    TerraformError,
    TerraformTimeoutError,
    TestkitError,
    TransientTerraformError,
    UnitCancelledError,
)
from .resource_group import ResourceGroupManager, create_resource_group
from .runner import (
    MultiTenantRunReport,
    MultiTenantTestRunner,
    TenantRunResult,
    TenantTestContext,
    run_multi_tenant,
)
from .tenant_config import TenantConfig, generate_unique_id, resolve_tenant_config

__version__ = "0.1.0"

__all__ = [
    "AzureAuthContext",
    "AzureAuthenticationError",
    "AzureQueryError",
    "CleanupError",
    "CleanupStack",
    "ConfigurationError",
    "ModuleAssertionError",
    "MultiTenantRunReport",
    "MultiTenantTestFailure",
    "MultiTenantTestRunner",
    "ResourceGroupManager",
    "ResourceNotFoundInAzureError",
    "RetryExhaustedError",
    "TenantConfig",
    "TenantCredentialProvider",
    "TenantRunResult",
    "TenantTestContext",
    "TerraformCommandError",
    "TerraformError",
    "TerraformTimeoutError",
    "TestkitError",
    "TransientTerraformError",
    "UnitCancelledError",
    "create_resource_group",
    "generate_unique_id",
    "get_credential_provider",
    "resolve_tenant_config",
    "run_multi_tenant",
    "setup_azure_auth",
]
