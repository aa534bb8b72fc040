"""
Custom Exception Hierarchy for Azure Module Testkit

This module standardizes error handling across the harness. Every error carries
structured context (error code, context mapping, cause, recovery suggestion) so
that a failing tenant unit can be reported with enough detail to debug it
without re-running a slow cloud test.

Taxonomy:
    - ConfigurationError: fatal, never retried
    - TerraformError family: provisioning tool failures (transient or not)
    - AzureQueryError family: read-only cloud lookups
    - CleanupError: teardown failures, reported but never masking a test failure
    - ModuleAssertionError: assertion failures with expected/actual values
"""

from typing import Any, Dict, List, Optional, Sequence


class TestkitError(Exception):
    """
    Base exception class for all Azure Module Testkit errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    # Keep pytest from collecting exception classes whose names start with "Test"
    __test__ = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Configuration-related exceptions
class ConfigurationError(TestkitError):
    """Raised for missing tenant fields or malformed configuration. Never retried."""

    def __init__(
        self, message: str, missing_keys: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if missing_keys:
            context["missing_keys"] = missing_keys
        kwargs["context"] = context
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        kwargs.setdefault(
            "recovery_suggestion",
            f"Set required configuration: {', '.join(missing_keys)}"
            if missing_keys
            else "Check the tenants file and environment variables",
        )
        super().__init__(message, **kwargs)
        self.missing_keys = missing_keys or []


# Terraform-related exceptions
class TerraformError(TestkitError):
    """Base class for provisioning tool errors."""

    pass


class TerraformCommandError(TerraformError):
    """Raised when a terraform command exits non-zero with a non-retryable error."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if command:
            context["command"] = " ".join(command)
        if exit_code is not None:
            context["exit_code"] = exit_code
        kwargs["context"] = context
        kwargs.setdefault("error_code", "TERRAFORM_COMMAND_FAILED")
        super().__init__(message, **kwargs)
        self.command = list(command) if command else []
        self.exit_code = exit_code
        self.stderr = stderr or ""


class TransientTerraformError(TerraformCommandError):
    """Raised for a failed attempt whose output matched a retryable pattern."""

    def __init__(
        self, message: str, matched_pattern: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if matched_pattern:
            context["matched_pattern"] = matched_pattern
        kwargs["context"] = context
        kwargs.setdefault("error_code", "TERRAFORM_TRANSIENT_ERROR")
        super().__init__(message, **kwargs)
        self.matched_pattern = matched_pattern


class RetryExhaustedError(TerraformError):
    """Raised when a retryable error persists past the retry budget."""

    def __init__(
        self,
        message: str,
        attempts: Optional[int] = None,
        last_error: Optional[TransientTerraformError] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if attempts:
            context["attempts"] = attempts
        if last_error is not None and last_error.matched_pattern:
            context["matched_pattern"] = last_error.matched_pattern
        kwargs["context"] = context
        kwargs.setdefault("error_code", "TERRAFORM_RETRY_EXHAUSTED")
        kwargs.setdefault("cause", last_error)
        kwargs.setdefault(
            "recovery_suggestion",
            "Check Azure service health and subscription throttling limits",
        )
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class TerraformTimeoutError(TerraformError):
    """Raised when a terraform command exceeds its timeout and is killed."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        timeout_value: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if command:
            context["command"] = " ".join(command)
        if timeout_value:
            context["timeout"] = f"{timeout_value}s"
        kwargs["context"] = context
        kwargs.setdefault("error_code", "TERRAFORM_TIMEOUT")
        super().__init__(message, **kwargs)
        self.timeout_value = timeout_value


# Azure-related exceptions
class AzureQueryError(TestkitError):
    """Raised when a read-only Azure lookup fails."""

    def __init__(
        self,
        message: str,
        resource_group: Optional[str] = None,
        resource_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if resource_group:
            context["resource_group"] = resource_group
        if resource_name:
            context["resource_name"] = resource_name
        kwargs["context"] = context
        kwargs.setdefault("error_code", "AZURE_QUERY_FAILED")
        super().__init__(message, **kwargs)


class ResourceNotFoundInAzureError(AzureQueryError):
    """Raised when a queried Azure resource does not exist."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "AZURE_RESOURCE_NOT_FOUND")
        super().__init__(message, **kwargs)


class AzureAuthenticationError(TestkitError):
    """Raised when building an Azure credential for a tenant fails."""

    def __init__(
        self, message: str, tenant_id: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if tenant_id:
            context["tenant_id"] = tenant_id
        kwargs["context"] = context
        kwargs.setdefault("error_code", "AZURE_AUTH_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Try running 'az login' or check the service principal credentials",
        )
        super().__init__(message, **kwargs)


# Lifecycle exceptions
class CleanupError(TestkitError):
    """Raised when a release step (destroy, resource group deletion) fails."""

    def __init__(
        self, message: str, step: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if step:
            context["step"] = step
        kwargs["context"] = context
        kwargs.setdefault("error_code", "CLEANUP_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Check the Azure portal for leaked resource groups tagged "
            "managed-by=azure-module-testkit",
        )
        super().__init__(message, **kwargs)
        self.step = step


class UnitCancelledError(TestkitError):
    """Raised inside a tenant unit once the run has been cancelled."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "UNIT_CANCELLED")
        super().__init__(message, **kwargs)


# Assertion exceptions
class ModuleAssertionError(TestkitError, AssertionError):
    """Raised when a plan, naming, live-resource or compliance check fails."""

    def __init__(
        self,
        message: str,
        expected: Any = None,
        actual: Any = None,
        address: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if address:
            context["address"] = address
        if expected is not None:
            context["expected"] = expected
        if actual is not None:
            context["actual"] = actual
        kwargs["context"] = context
        kwargs.setdefault("error_code", "ASSERTION_FAILED")
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual
        self.address = address


class MultiTenantTestFailure(AssertionError):
    """Aggregate failure raised after all tenant units of a run have finished."""

    def __init__(self, test_name: str, failures: Dict[str, str]) -> None:
        self.test_name = test_name
        self.failures = dict(failures)
        lines = [f"{len(failures)} tenant unit(s) of '{test_name}' failed:"]
        for tenant, summary in failures.items():
            lines.append(f"  [{tenant}] {summary}")
        super().__init__("\n".join(lines))


def wrap_azure_exception(
    exc: Exception,
    resource_group: Optional[str] = None,
    resource_name: Optional[str] = None,
) -> AzureQueryError:
    """
    Wrap an Azure SDK exception in the testkit hierarchy.

    Args:
        exc: The original exception
        resource_group: Resource group involved in the lookup
        resource_name: Resource involved in the lookup

    Returns:
        AzureQueryError: Wrapped exception with enhanced context
    """
    from azure.core.exceptions import ResourceNotFoundError

    if isinstance(exc, ResourceNotFoundError):
        return ResourceNotFoundInAzureError(
            f"Azure resource not found: {exc}",
            resource_group=resource_group,
            resource_name=resource_name,
            cause=exc,
        )
    return AzureQueryError(
        f"Azure query failed: {exc}",
        resource_group=resource_group,
        resource_name=resource_name,
        cause=exc,
    )
