"""
Configuration models for tenant definitions and harness settings.

Provides type-safe configuration using pydantic with validation,
defaults, and schema enforcement.
"""

from typing import Annotated, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_RESOURCE_GROUP_PREFIX = "rg-testkit"


class TenantDefinition(BaseModel):
    """One tenant the harness runs every multi-tenant test against.

    Identity fields are optional here so that a partially filled tenants file
    still loads; resolving a definition into a TenantConfig is where missing
    identity fails the run.
    """

    name: str = Field(description="Tenant label used in subtest names")
    subscription_id: Optional[str] = Field(
        default=None, description="Azure subscription the tests provision into"
    )
    tenant_id: Optional[str] = Field(default=None, description="Azure AD tenant ID")
    region: Optional[str] = Field(default=None, description="Azure region, e.g. westeurope")
    resource_group_prefix: str = Field(
        default=DEFAULT_RESOURCE_GROUP_PREFIX,
        description="Prefix of per-test resource group names",
    )
    client_id: Optional[str] = Field(
        default=None, description="Service principal client ID"
    )
    client_secret: Optional[str] = Field(
        default=None, description="Service principal client secret", repr=False
    )
    tags: Dict[str, str] = Field(
        default_factory=dict, description="Tags added to every resource group"
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Tenant names appear in subtest ids; keep them non-blank."""
        if not v or not v.strip():
            raise ValueError("Tenant name must not be empty")
        return v.strip()

    @field_validator("resource_group_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Resource group names allow at most 90 characters."""
        if not v:
            raise ValueError("resource_group_prefix must not be empty")
        if len(v) > 80:
            raise ValueError(
                "resource_group_prefix must leave room for the unique suffix (max 80 chars)"
            )
        return v

    @model_validator(mode="after")
    def validate_service_principal(self) -> "TenantDefinition":
        """A client ID without its secret (or vice versa) is a typo, not a choice."""
        if bool(self.client_id) != bool(self.client_secret):
            raise ValueError(
                f"Tenant '{self.name}': client_id and client_secret must be set together"
            )
        return self


class RetrySettings(BaseModel):
    """Defaults for the terraform retry policy."""

    max_retries: Annotated[int, Field(ge=0, le=10)] = Field(
        default=3, description="Retries after the first failed attempt"
    )
    initial_delay: Annotated[float, Field(ge=0.0)] = Field(
        default=5.0, description="Seconds before the first retry"
    )
    max_delay: Annotated[float, Field(gt=0.0)] = Field(
        default=60.0, description="Upper bound for a single backoff sleep"
    )
    backoff_factor: Annotated[float, Field(ge=1.0)] = Field(
        default=2.0, description="Multiplier applied to the delay after each retry"
    )

    model_config = ConfigDict(extra="forbid")


class HarnessSettings(BaseModel):
    """Process-wide harness settings."""

    max_workers: Optional[Annotated[int, Field(gt=0)]] = Field(
        default=None, description="Parallel tenant units (default: one per tenant)"
    )
    unique_id_length: Annotated[int, Field(ge=4, le=16)] = Field(
        default=6, description="Length of generated unique IDs"
    )
    keep_resources: bool = Field(
        default=False,
        description="Skip cleanup to inspect resources after a failure",
    )
    retry: RetrySettings = Field(default_factory=RetrySettings)

    model_config = ConfigDict(extra="forbid")


class TenantsFile(BaseModel):
    """Top-level schema of a tenants YAML file."""

    tenants: Tuple[TenantDefinition, ...] = Field(default_factory=tuple)
    settings: HarnessSettings = Field(default_factory=HarnessSettings)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "TenantsFile":
        """Duplicate tenant names would collide in subtest ids."""
        seen = set()
        for tenant in self.tenants:
            if tenant.name in seen:
                raise ValueError(f"Duplicate tenant name: {tenant.name}")
            seen.add(tenant.name)
        return self
