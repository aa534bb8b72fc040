"""Multi-tenant test runner.

Philosophy:
- One tenant unit per configured tenant, each in its own worker thread
- A unit owns everything it creates and releases it before it finishes
- A failing tenant never stops or hides the others

Public API:
    MultiTenantTestRunner: Fans a test body out across tenants
    TenantTestContext: Per-unit handle passed to the test body
    run_multi_tenant: Run a body against the configured tenants

Usage:
    ```python
    def body(ctx, config):
        auth = setup_azure_auth(ctx, config)
        create_resource_group(ctx, config)
        options = ctx.module_options(module_dir, vars={...})
        deferred_destroy(ctx, options)
        ctx.terraform.init_and_apply(options)

    run_multi_tenant("test_vnet_apply", body)
    ```
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import structlog

from .assertions.security import (
    ComplianceReport,
    assert_compliant,
    validate_resources_compliance,
)
from .azure_queries import AzureNetworkQueries
from .cleanup import CleanupStack, CleanupStep
from .config.loader import get_testkit_config
from .config.models import HarnessSettings, TenantDefinition
from .credential_provider import AzureAuthContext
from .exceptions import (
    CleanupError,
    ConfigurationError,
    MultiTenantTestFailure,
    UnitCancelledError,
)
from .tenant_config import TenantConfig, resolve_tenant_config
from .terraform.options import ModuleOptions, RetryPolicy, default_retry_policy
from .terraform.runner import TerraformRunner

logger = structlog.get_logger(__name__)

TestBody = Callable[["TenantTestContext", TenantConfig], Any]


class TenantTestContext:
    """Per-tenant handle for one unit of a multi-tenant test.

    Attributes:
        name: Subtest name, ``"{test}/{tenant}"``
        config: The unit's resolved tenant config
        logger: structlog logger bound to test, tenant and unique id
        cleanup: The unit's release steps
        auth: Set by setup_azure_auth
        resource_groups: Resource groups created by this unit
    """

    def __init__(
        self,
        test_name: str,
        config: TenantConfig,
        cancel_event: Optional[threading.Event] = None,
        retry_policy: Optional[RetryPolicy] = None,
        terraform_binary: Optional[str] = None,
    ) -> None:
        self.test_name = test_name
        self.name = f"{test_name}/{config.name}"
        self.config = config
        self.logger = logger.bind(
            test=test_name, tenant=config.name, unique_id=config.unique_id
        )
        self.cleanup = CleanupStack(self.name)
        self.auth: Optional[AzureAuthContext] = None
        self.resource_groups: List[str] = []
        self.retry_policy = retry_policy or default_retry_policy()
        self._cancel_event = cancel_event or threading.Event()
        self._terraform_binary = terraform_binary
        self._terraform: Optional[TerraformRunner] = None
        self._releasing = False

    def defer(
        self, func: Callable[..., Any], *args: Any, description: Optional[str] = None, **kwargs: Any
    ) -> CleanupStep:
        """Register a release step; steps run in reverse order of registration."""
        return self.cleanup.push(func, *args, description=description, **kwargs)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise UnitCancelledError if the run was cancelled.

        Never raises once cleanup has started, so release steps that go
        through the terraform runner still execute.
        """
        if self._cancel_event.is_set() and not self._releasing:
            raise UnitCancelledError(
                f"{self.name} cancelled", context={"tenant": self.config.name}
            )

    @property
    def terraform(self) -> TerraformRunner:
        """Terraform runner that stops between attempts when the run is cancelled."""
        if self._terraform is None:
            self._terraform = TerraformRunner(
                binary=self._terraform_binary, cancel_check=self.check_cancelled
            )
        return self._terraform

    def module_options(
        self,
        terraform_dir: Union[str, Path],
        vars: Optional[Dict[str, Any]] = None,
        plan_only: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ) -> ModuleOptions:
        """Build ModuleOptions pointing terraform at this unit's tenant.

        ARM_* overrides come from ``self.auth``; the process environment is
        never modified.
        """
        env_vars = dict(self.auth.env_vars) if self.auth else {}
        env_vars.update(kwargs.pop("env_vars", {}))
        return ModuleOptions(
            terraform_dir=terraform_dir,
            vars=dict(vars or {}),
            env_vars=env_vars,
            plan_only=plan_only,
            retry_policy=retry_policy or self.retry_policy,
            **kwargs,
        )

    def network_queries(self) -> AzureNetworkQueries:
        if self.auth is None:
            raise RuntimeError("setup_azure_auth must run before network queries")
        return AzureNetworkQueries(self.auth.credential, self.config.subscription_id)

    def validate_security_compliance(
        self,
        options: ModuleOptions,
        internet_facing: Optional[Iterable[str]] = None,
        required_tags: Optional[Mapping[str, Optional[str]]] = None,
    ) -> ComplianceReport:
        """Check the applied module's NSG rules and subnet associations.

        Raises:
            ModuleAssertionError: With every finding, if any
        """
        state = self.terraform.show_state(options)
        report = validate_resources_compliance(
            state.resources.values(),
            internet_facing=internet_facing,
            required_tags=required_tags,
        )
        self.logger.info(
            "security_compliance_checked",
            rules=report.rules_checked,
            subnets=report.subnets_checked,
            findings=len(report.findings),
        )
        assert_compliant(report)
        return report

    def release(self, keep_resources: bool = False) -> List[CleanupError]:
        """Unwind the cleanup stack (or drop it when keeping resources)."""
        self._releasing = True
        if keep_resources:
            count = self.cleanup.discard()
            self.logger.warning(
                "cleanup_skipped_resources_kept",
                steps=count,
                resource_groups=self.resource_groups,
            )
            return []

        errors = self.cleanup.unwind()
        for error in errors:
            self.logger.error("cleanup_step_failed", step=error.step, error=str(error))
        return errors


@dataclass
class TenantRunResult:
    """Outcome of one tenant unit."""

    tenant: str
    unique_id: str
    error: Optional[BaseException] = None
    cleanup_errors: List[CleanupError] = field(default_factory=list)
    duration: float = 0.0
    cancelled: bool = False

    @property
    def passed(self) -> bool:
        return self.error is None and not self.cleanup_errors and not self.cancelled

    def summary(self) -> str:
        parts = []
        if self.error is not None:
            parts.append(f"{type(self.error).__name__}: {self.error}")
        elif self.cancelled:
            parts.append("cancelled")
        parts.extend(f"cleanup failed: {e}" for e in self.cleanup_errors)
        return "; ".join(parts) or "passed"


@dataclass
class MultiTenantRunReport:
    """Results of every tenant unit of one run, in tenant order."""

    test_name: str
    results: List[TenantRunResult] = field(default_factory=list)

    @property
    def failures(self) -> List[TenantRunResult]:
        return [r for r in self.results if not r.passed]

    @property
    def passed(self) -> bool:
        return not self.failures

    def result_for(self, tenant: str) -> TenantRunResult:
        for result in self.results:
            if result.tenant == tenant:
                return result
        raise KeyError(tenant)

    def raise_for_failures(self) -> None:
        """Raise MultiTenantTestFailure naming every failed tenant."""
        failures = self.failures
        if not failures:
            return
        first_error = next((r.error for r in failures if r.error is not None), None)
        raise MultiTenantTestFailure(
            self.test_name, {r.tenant: r.summary() for r in failures}
        ) from first_error


class MultiTenantTestRunner:
    """Runs a test body once per tenant, concurrently and in isolation."""

    def __init__(
        self,
        definitions: Optional[Sequence[TenantDefinition]] = None,
        settings: Optional[HarnessSettings] = None,
        max_workers: Optional[int] = None,
        terraform_binary: Optional[str] = None,
    ) -> None:
        """Initialize the runner.

        Args:
            definitions: Tenants to run against (default: the configured registry)
            settings: Harness settings (default: from the tenants file)
            max_workers: Parallel units (default: settings, else one per tenant)
            terraform_binary: terraform executable override
        """
        if definitions is None:
            testkit_config = get_testkit_config()
            definitions = testkit_config.tenants
            settings = settings or testkit_config.settings
        self.definitions = tuple(definitions)
        self.settings = settings or HarnessSettings()
        self.max_workers = max_workers or self.settings.max_workers
        self.terraform_binary = terraform_binary
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Stop the run: pending units are skipped, running units stop at their
        next cancellation check. Cleanup still runs for every started unit."""
        logger.warning("multi_tenant_run_cancelled")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _retry_policy(self) -> RetryPolicy:
        return default_retry_policy(**self.settings.retry.model_dump())

    def resolve_configs(self) -> List[TenantConfig]:
        """Resolve every tenant before any unit starts.

        Raises:
            ConfigurationError: If no tenants are configured or one is incomplete
        """
        if not self.definitions:
            raise ConfigurationError(
                "No tenant definitions configured",
                recovery_suggestion=(
                    "Create tenants.yaml (or set AMT_TENANTS_FILE), "
                    "or set ARM_SUBSCRIPTION_ID, ARM_TENANT_ID and AMT_REGION"
                ),
            )
        return [
            resolve_tenant_config(d, unique_id_length=self.settings.unique_id_length)
            for d in self.definitions
        ]

    def run(
        self, name: str, body: TestBody, raise_on_failure: bool = True
    ) -> MultiTenantRunReport:
        """Run body once per tenant and wait for every unit.

        Args:
            name: Test name; units are named ``"{name}/{tenant}"``
            body: ``body(ctx, config)``
            raise_on_failure: Raise MultiTenantTestFailure if any unit failed

        Returns:
            MultiTenantRunReport: Per-tenant results
        """
        configs = self.resolve_configs()
        workers = self.max_workers or len(configs)
        logger.info(
            "multi_tenant_run_started",
            test=name,
            tenants=[c.name for c in configs],
            max_workers=workers,
        )

        futures: List[Future] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="amt-unit") as executor:
            try:
                for config in configs:
                    futures.append(executor.submit(self._run_unit, name, body, config))
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                self.cancel()
                raise

        report = MultiTenantRunReport(
            test_name=name, results=[f.result() for f in futures]
        )
        logger.info(
            "multi_tenant_run_finished",
            test=name,
            passed=sum(1 for r in report.results if r.passed),
            failed=len(report.failures),
        )
        if raise_on_failure:
            report.raise_for_failures()
        return report

    def _run_unit(self, test_name: str, body: TestBody, config: TenantConfig) -> TenantRunResult:
        ctx = TenantTestContext(
            test_name,
            config,
            cancel_event=self._cancel_event,
            retry_policy=self._retry_policy(),
            terraform_binary=self.terraform_binary,
        )
        result = TenantRunResult(tenant=config.name, unique_id=config.unique_id)
        if self.cancelled:
            ctx.logger.warning("tenant_unit_skipped_cancelled")
            result.cancelled = True
            return result

        start = time.monotonic()
        ctx.logger.info("tenant_unit_started", config=config.describe())
        try:
            body(ctx, config)
        except UnitCancelledError as e:
            ctx.logger.warning("tenant_unit_cancelled")
            result.cancelled = True
            result.error = e
        except (KeyboardInterrupt, SystemExit):
            raise
        except BaseException as e:
            # pytest.fail/skip raise BaseException subclasses; they belong to this tenant
            ctx.logger.error("tenant_unit_failed", error=str(e), exc_info=True)
            result.error = e
        finally:
            result.cleanup_errors = ctx.release(self.settings.keep_resources)
            result.duration = time.monotonic() - start

        ctx.logger.info(
            "tenant_unit_finished",
            passed=result.passed,
            duration=round(result.duration, 2),
        )
        return result


def run_multi_tenant(
    name: str,
    body: TestBody,
    definitions: Optional[Sequence[TenantDefinition]] = None,
    **kwargs: Any,
) -> MultiTenantRunReport:
    """Run body against every configured tenant and fail on any tenant failure."""
    return MultiTenantTestRunner(definitions, **kwargs).run(name, body)
