"""Resource group lifecycle for tenant units.

Each unit gets a fresh resource group named ``{prefix}-{unique_id}``. Its
deletion is registered on the unit's cleanup stack at creation time, so it is
the last release step and runs after any module destroy registered later.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import structlog
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.mgmt.resource import ResourceManagementClient

from .exceptions import AzureQueryError, CleanupError
from .tenant_config import TenantConfig
from .timeout_config import Timeouts

if TYPE_CHECKING:
    from .credential_provider import AzureAuthContext
    from .runner import TenantTestContext

logger = structlog.get_logger(__name__)

MANAGED_BY_TAG = {"managed-by": "azure-module-testkit"}


class ResourceGroupManager:
    """Creates, deletes and checks resource groups in one subscription."""

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str,
        client_factory: Optional[Callable[[TokenCredential, str], Any]] = None,
    ) -> None:
        self.subscription_id = subscription_id
        factory = client_factory or ResourceManagementClient
        self.client = factory(credential, subscription_id)

    def create(
        self, name: str, location: str, tags: Optional[Dict[str, str]] = None
    ) -> Any:
        """Create a resource group. Never assumed to exist beforehand."""
        log = logger.bind(resource_group=name, subscription_id=self.subscription_id)
        log.info("creating_resource_group", location=location)
        try:
            return self.client.resource_groups.create_or_update(
                name, {"location": location, "tags": {**MANAGED_BY_TAG, **(tags or {})}}
            )
        except AzureError as e:
            raise AzureQueryError(
                f"Failed to create resource group: {e}", resource_group=name, cause=e
            ) from e

    def delete(self, name: str, timeout: Optional[int] = None) -> bool:
        """Delete a resource group and everything in it, waiting for completion.

        Returns:
            True if the group was deleted, False if it was already gone

        Raises:
            CleanupError: If deletion fails or does not finish in time
        """
        log = logger.bind(resource_group=name, subscription_id=self.subscription_id)
        log.info("deleting_resource_group")
        try:
            poller = self.client.resource_groups.begin_delete(name)
            poller.result(timeout=timeout or Timeouts.AZURE_POLL)
        except ResourceNotFoundError:
            log.info("resource_group_already_deleted")
            return False
        except AzureError as e:
            raise CleanupError(
                f"Failed to delete resource group {name}: {e}",
                step="delete resource group",
                context={"resource_group": name},
                cause=e,
            ) from e

        if not poller.done():
            raise CleanupError(
                f"Deletion of resource group {name} did not finish within "
                f"{timeout or Timeouts.AZURE_POLL}s",
                step="delete resource group",
                context={"resource_group": name},
            )
        log.info("resource_group_deleted")
        return True

    def exists(self, name: str) -> bool:
        try:
            return bool(self.client.resource_groups.check_existence(name))
        except AzureError as e:
            raise AzureQueryError(
                f"Failed to check resource group existence: {e}",
                resource_group=name,
                cause=e,
            ) from e


def create_resource_group(
    ctx: "TenantTestContext",
    config: TenantConfig,
    auth: Optional["AzureAuthContext"] = None,
    manager: Optional[ResourceGroupManager] = None,
) -> str:
    """Create the unit's resource group and register its deletion.

    Args:
        ctx: Tenant unit context
        config: Resolved tenant config
        auth: Auth from setup_azure_auth (default: ctx.auth)
        manager: Resource group manager (default: built from auth)

    Returns:
        The resource group name
    """
    if manager is None:
        auth = auth or ctx.auth
        if auth is None:
            raise RuntimeError("setup_azure_auth must run before create_resource_group")
        manager = ResourceGroupManager(auth.credential, config.subscription_id)

    name = config.resource_group_name
    tags = {**dict(config.tags), "testkit-unique-id": config.unique_id}
    # Registered first: a create that fails after reaching Azure may still leave a group
    ctx.defer(manager.delete, name, description=f"delete resource group {name}")
    ctx.resource_groups.append(name)
    manager.create(name, config.region, tags)
    return name
