"""Terraform invocation: options, retry policy, runner and plan parsing."""

from .options import (
    DEFAULT_RETRYABLE_ERRORS,
    NO_RETRY,
    ModuleOptions,
    RetryPolicy,
    default_retry_policy,
    with_default_retryable_errors,
)
from .plan import (
    Change,
    PlannedResource,
    PlanResult,
    ResourceChange,
    TerraformState,
    parse_plan_json,
    parse_state_json,
    strip_instance_keys,
)
from .retry import match_retryable_error, run_with_retries
from .runner import (
    TerraformRunner,
    deferred_destroy,
    destroy,
    init_and_apply,
    init_and_plan,
    output,
    output_map,
)
from .workspace import copy_module_to_temp, isolated_module_dir, remove_workspace

__all__ = [
    "DEFAULT_RETRYABLE_ERRORS",
    "NO_RETRY",
    "Change",
    "ModuleOptions",
    "PlanResult",
    "PlannedResource",
    "ResourceChange",
    "RetryPolicy",
    "TerraformRunner",
    "TerraformState",
    "copy_module_to_temp",
    "default_retry_policy",
    "deferred_destroy",
    "destroy",
    "init_and_apply",
    "init_and_plan",
    "isolated_module_dir",
    "match_retryable_error",
    "output",
    "output_map",
    "parse_plan_json",
    "parse_state_json",
    "remove_workspace",
    "run_with_retries",
    "strip_instance_keys",
    "with_default_retryable_errors",
]
