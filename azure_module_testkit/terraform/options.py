"""Options for one terraform invocation lifecycle.

A ModuleOptions record is built once per test, handed to exactly one
plan-only or apply+destroy lifecycle, and discarded after teardown.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

# Regex -> reason. Matched against combined stdout+stderr of a failed command.
DEFAULT_RETRYABLE_ERRORS: Dict[str, str] = {
    # Provider/registry downloads during init
    r"Failed to query available provider packages": "Provider registry unreachable",
    r"Could not retrieve the list of available versions for provider": "Provider registry unreachable",
    r"could not query provider registry for": "Provider registry unreachable",
    r"Error installing provider": "Provider download failed",
    r"Failed to install provider": "Provider download failed",
    r"timeout while waiting for plugin to start": "Provider plugin slow to start",
    r"timed out waiting for server handshake": "Provider plugin slow to start",
    # Network
    r"read: connection reset by peer": "Connection reset",
    r"TLS handshake timeout": "TLS handshake timeout",
    r"Client\.Timeout exceeded while awaiting headers": "HTTP client timeout",
    r"i/o timeout": "Network I/O timeout",
    # Azure throttling and transient service failures
    r"TooManyRequests": "Azure throttling",
    r"StatusCode=429": "Azure throttling",
    r"(?i)throttl": "Azure throttling",
    r"RetryableError": "Azure reported a retryable error",
    r"StatusCode=50[234]": "Azure transient server error",
    r"AnotherOperationInProgress": "Concurrent operation on the same resource",
    r"ReferencedResourceNotProvisioned": "Dependent resource still provisioning",
    # Transient auth token failures
    r"obtaining Authorization Token": "Transient token acquisition failure",
    r"AADSTS50058": "Transient AAD session error",
    r"AADSTS90033": "Transient AAD service error",
    r"Error acquiring the state lock": "State lock briefly held",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Retry classification and bounded backoff schedule.

    Attempt n (1-based retry count) sleeps
    ``min(initial_delay * backoff_factor ** (n - 1), max_delay)`` seconds.
    """

    retryable_errors: Mapping[str, str] = field(default_factory=dict)
    max_retries: int = 3
    initial_delay: float = 5.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Seconds to sleep before the given retry (1-based)."""
        return min(
            self.initial_delay * (self.backoff_factor ** (retry_number - 1)),
            self.max_delay,
        )


NO_RETRY = RetryPolicy(retryable_errors={}, max_retries=0)


@dataclass
class ModuleOptions:
    """
    Terraform options for the module under test.

    Attributes:
        terraform_dir: Directory of the module (or example) under test
        vars: Input variables; values may be scalars, lists or nested mappings
        env_vars: Environment overrides for the terraform process
            (ARM_SUBSCRIPTION_ID, ARM_TENANT_ID, ...)
        plan_only: Never apply; destroy becomes a no-op
        retry_policy: Transient error classification and backoff
        var_files: Extra -var-file arguments
        lock: Pass -lock=false when False
        parallelism: Optional -parallelism for apply/destroy
    """

    terraform_dir: Union[str, Path]
    vars: Dict[str, Any] = field(default_factory=dict)
    env_vars: Dict[str, str] = field(default_factory=dict)
    plan_only: bool = False
    retry_policy: RetryPolicy = NO_RETRY
    var_files: List[Union[str, Path]] = field(default_factory=list)
    lock: bool = True
    parallelism: Optional[int] = None

    def __post_init__(self) -> None:
        self.terraform_dir = Path(self.terraform_dir)


def default_retry_policy(
    max_retries: int = 3,
    initial_delay: float = 5.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
) -> RetryPolicy:
    """Build a RetryPolicy with the default retryable-error allowlist."""
    return RetryPolicy(
        retryable_errors=dict(DEFAULT_RETRYABLE_ERRORS),
        max_retries=max_retries,
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff_factor=backoff_factor,
    )


def with_default_retryable_errors(
    options: ModuleOptions, policy: Optional[RetryPolicy] = None
) -> ModuleOptions:
    """Return a copy of options that retries the default transient errors.

    Patterns already present on the options' policy are kept.
    """
    base = policy or default_retry_policy()
    merged = dict(base.retryable_errors)
    merged.update(options.retry_policy.retryable_errors)
    return replace(options, retry_policy=replace(base, retryable_errors=merged))
