"""
Credential Provider Module

Builds the Azure credential and the terraform environment for one tenant unit.

Auth setup never writes to ``os.environ``: parallel units for different
tenants would otherwise overwrite each other's ARM_* variables. The
environment overrides are returned instead and travel with ModuleOptions.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from azure.core.credentials import TokenCredential
from azure.identity import ClientSecretCredential, DefaultAzureCredential

from .exceptions import AzureAuthenticationError
from .tenant_config import TenantConfig

if TYPE_CHECKING:
    from .runner import TenantTestContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AzureAuthContext:
    """
    Auth material for one tenant unit.

    Attributes:
        credential: Azure SDK credential for cloud queries
        tenant_id: Azure tenant ID
        subscription_id: Azure subscription ID
        env_vars: Environment overrides for terraform (ARM_*)
    """

    credential: TokenCredential
    tenant_id: str
    subscription_id: str
    env_vars: Dict[str, str] = field(default_factory=dict, repr=False)


class TenantCredentialProvider:
    """
    Creates and caches Azure credentials per tenant/service principal.

    Credentials are thread-safe and reused across units of the same tenant;
    the cache is the only state shared between units.
    """

    def __init__(self) -> None:
        self._credential_cache: Dict[Tuple[str, Optional[str]], TokenCredential] = {}
        self._lock = threading.Lock()

    def get_credential(self, config: TenantConfig) -> TokenCredential:
        """
        Get the credential for a tenant config.

        Uses ClientSecretCredential when the tenant defines a service principal
        and DefaultAzureCredential (CLI, managed identity, env) otherwise.

        Raises:
            AzureAuthenticationError: If the credential cannot be constructed
        """
        client_id = config.credentials.client_id if config.credentials else None
        key = (config.tenant_id, client_id)

        with self._lock:
            if key not in self._credential_cache:
                self._credential_cache[key] = self._create_credential(config)
            return self._credential_cache[key]

    def _create_credential(self, config: TenantConfig) -> TokenCredential:
        masked_tenant_id = (
            config.tenant_id[:8] + "..." if len(config.tenant_id) > 8 else config.tenant_id
        )
        try:
            if config.credentials:
                logger.debug(
                    f"Creating service principal credential for tenant {masked_tenant_id}"
                )
                return ClientSecretCredential(
                    tenant_id=config.credentials.tenant_id,
                    client_id=config.credentials.client_id,
                    client_secret=config.credentials.client_secret,
                )
            logger.debug(f"Using DefaultAzureCredential for tenant {masked_tenant_id}")
            return DefaultAzureCredential(additionally_allowed_tenants=["*"])
        except ValueError as e:
            raise AzureAuthenticationError(
                f"Could not create credential: {e}",
                tenant_id=config.tenant_id,
                cause=e,
            ) from e

    def terraform_env(self, config: TenantConfig) -> Dict[str, str]:
        """Environment overrides that point the azurerm provider at this tenant."""
        env = {
            "ARM_SUBSCRIPTION_ID": config.subscription_id,
            "ARM_TENANT_ID": config.tenant_id,
        }
        if config.credentials:
            env["ARM_CLIENT_ID"] = config.credentials.client_id
            env["ARM_CLIENT_SECRET"] = config.credentials.client_secret
        return env

    def clear_cache(self) -> None:
        """Clear credential cache. Useful for testing or credential refresh."""
        with self._lock:
            self._credential_cache.clear()


_default_provider = TenantCredentialProvider()


def get_credential_provider() -> TenantCredentialProvider:
    return _default_provider


def setup_azure_auth(
    ctx: "TenantTestContext",
    config: TenantConfig,
    provider: Optional[TenantCredentialProvider] = None,
) -> AzureAuthContext:
    """Resolve auth for a tenant unit and remember it on the context."""
    provider = provider or _default_provider
    auth = AzureAuthContext(
        credential=provider.get_credential(config),
        tenant_id=config.tenant_id,
        subscription_id=config.subscription_id,
        env_vars=provider.terraform_env(config),
    )
    ctx.auth = auth
    ctx.logger.info("azure_auth_ready", subscription_id=config.subscription_id)
    return auth
