"""
Tenant Configuration Resolution

Turns a process-wide TenantDefinition into the immutable TenantConfig that one
tenant unit of one test owns for its whole lifetime. Every resolution draws a
fresh unique ID, so concurrent runs (in this process or in other CI jobs) never
collide on resource group or resource names.
"""

import logging
import secrets
import string
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from .config.models import TenantDefinition
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Lowercase letters and digits are valid in every Azure resource name
UNIQUE_ID_ALPHABET = string.ascii_lowercase + string.digits
DEFAULT_UNIQUE_ID_LENGTH = 6

REQUIRED_TENANT_FIELDS = ("subscription_id", "tenant_id", "region")


@dataclass(frozen=True)
class TenantCredentials:
    """
    Service principal credentials for a single tenant.

    Attributes:
        tenant_id: Azure tenant ID
        client_id: Service principal client ID
        client_secret: Service principal client secret
    """

    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)

    def __post_init__(self) -> None:
        """Validate credentials after initialization."""
        if not self.tenant_id:
            raise ValueError("Tenant ID is required")
        if not self.client_id:
            raise ValueError("Client ID is required")
        if not self.client_secret:
            raise ValueError("Client secret is required")

    def mask_secret(self) -> str:
        """Return a safe representation for logging."""
        return f"TenantCredentials(tenant_id={self.tenant_id}, client_id={self.client_id})"


@dataclass(frozen=True)
class TenantConfig:
    """
    Resolved configuration for one tenant unit of one test.

    Attributes:
        name: Tenant label (from the tenant definition)
        unique_id: Identifier unique to this test invocation
        subscription_id: Azure subscription ID
        tenant_id: Azure tenant ID
        region: Azure region
        resource_group: Resource group name prefix
        credentials: Service principal credentials, or None for ambient auth
        tags: Tags added to the test's resource group
    """

    name: str
    unique_id: str
    subscription_id: str
    tenant_id: str
    region: str
    resource_group: str
    credentials: Optional[TenantCredentials] = None
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def resource_group_name(self) -> str:
        """Name of the resource group this unit creates and deletes."""
        return f"{self.resource_group}-{self.unique_id}"

    def unique_name(self, base: str) -> str:
        """Derive a resource name scoped to this unit, e.g. vnet-test-ab12cd."""
        return f"{base}-{self.unique_id}"

    def describe(self) -> str:
        """Return a log-safe one-line summary."""
        auth = self.credentials.mask_secret() if self.credentials else "ambient"
        return (
            f"TenantConfig(name={self.name}, unique_id={self.unique_id}, "
            f"subscription_id={self.subscription_id}, region={self.region}, "
            f"resource_group={self.resource_group_name}, auth={auth})"
        )


def generate_unique_id(length: int = DEFAULT_UNIQUE_ID_LENGTH) -> str:
    """Generate a random identifier of lowercase letters and digits.

    Six characters give ~2.2 billion combinations, enough to keep concurrent
    CI runs from colliding.
    """
    if length < 1:
        raise ValueError("Unique ID length must be positive")
    return "".join(secrets.choice(UNIQUE_ID_ALPHABET) for _ in range(length))


def resolve_tenant_config(
    definition: TenantDefinition,
    unique_id: Optional[str] = None,
    unique_id_length: int = DEFAULT_UNIQUE_ID_LENGTH,
) -> TenantConfig:
    """
    Resolve a tenant definition into a TenantConfig with a fresh unique ID.

    Args:
        definition: Process-wide tenant definition
        unique_id: Explicit unique ID (tests only); generated when omitted
        unique_id_length: Length of the generated unique ID

    Returns:
        TenantConfig: Immutable per-unit configuration

    Raises:
        ConfigurationError: If subscription_id, tenant_id or region is missing.
            There is no default for cloud identity.
    """
    missing = [f for f in REQUIRED_TENANT_FIELDS if not getattr(definition, f)]
    if missing:
        raise ConfigurationError(
            f"Tenant '{definition.name}' is missing required fields: {', '.join(missing)}",
            missing_keys=missing,
            context={"tenant": definition.name},
        )

    credentials = None
    if definition.client_id and definition.client_secret:
        credentials = TenantCredentials(
            tenant_id=definition.tenant_id,  # type: ignore[arg-type]
            client_id=definition.client_id,
            client_secret=definition.client_secret,
        )

    config = TenantConfig(
        name=definition.name,
        unique_id=unique_id or generate_unique_id(unique_id_length),
        subscription_id=definition.subscription_id,  # type: ignore[arg-type]
        tenant_id=definition.tenant_id,  # type: ignore[arg-type]
        region=definition.region,  # type: ignore[arg-type]
        resource_group=definition.resource_group_prefix,
        credentials=credentials,
        tags=definition.tags,
    )
    logger.debug(f"Resolved {config.describe()}")
    return config
