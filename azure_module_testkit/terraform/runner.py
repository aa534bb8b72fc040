"""Terraform command execution for module tests.

Wraps the terraform binary: init, plan (saved plan + ``show -json``), apply,
destroy and outputs. Every command:
    - runs with the options' env overrides layered over the process environment
    - receives input variables through a temporary ``.tfvars.json`` file so
      nested lists and maps keep their structure
    - is bounded by a timeout from ``Timeouts`` (the process is killed on expiry)
    - goes through the options' retry policy
"""

import json
import logging
import os
import subprocess
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..exceptions import (
    ConfigurationError,
    ModuleAssertionError,
    TerraformError,
    TerraformTimeoutError,
)
from ..timeout_config import Timeouts, log_timeout_event
from .options import ModuleOptions
from .plan import PlanResult, TerraformState, parse_plan_json, parse_state_json
from .retry import run_with_retries

logger = logging.getLogger(__name__)

AUTOMATION_ENV = {"TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}


class TerraformRunner:
    """Runs terraform commands for a ModuleOptions record."""

    def __init__(
        self,
        binary: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_check: Optional[Callable[[], None]] = None,
    ) -> None:
        """Initialize the runner.

        Args:
            binary: terraform executable (default: AMT_TERRAFORM_BINARY or "terraform")
            sleep: Backoff sleep function
            cancel_check: Called before every attempt; raises to stop the unit
        """
        self.binary = binary or os.environ.get("AMT_TERRAFORM_BINARY", "terraform")
        self._sleep = sleep
        self._cancel_check = cancel_check

    def _get_environment(self, options: ModuleOptions) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(AUTOMATION_ENV)
        env.update({k: str(v) for k, v in options.env_vars.items()})
        return env

    @contextmanager
    def _var_args(self, options: ModuleOptions) -> Iterator[List[str]]:
        """Yield -var-file arguments; the generated vars file is removed afterwards."""
        args = [f"-var-file={Path(f).resolve()}" for f in options.var_files]
        if not options.vars:
            yield args
            return

        fd, path = tempfile.mkstemp(prefix="amt-", suffix=".tfvars.json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(options.vars, f)
            yield [*args, f"-var-file={path}"]
        finally:
            try:
                os.unlink(path)
            except OSError:
                logger.warning(f"Could not remove vars file {path}")

    def _data_dir(self, options: ModuleOptions) -> Path:
        """Terraform's working data directory; TF_DATA_DIR is relative to the module."""
        data_dir = options.env_vars.get("TF_DATA_DIR") or os.environ.get("TF_DATA_DIR")
        return Path(options.terraform_dir) / (data_dir or ".terraform")

    def _lock_args(self, options: ModuleOptions) -> List[str]:
        return [] if options.lock else ["-lock=false"]

    def _run_once(
        self, args: List[str], options: ModuleOptions, timeout: int, operation: str
    ) -> "subprocess.CompletedProcess[str]":
        cmd = [self.binary, *args]
        logger.debug(f"Running command: {' '.join(cmd)} (cwd={options.terraform_dir})")
        try:
            return subprocess.run(
                cmd,
                cwd=options.terraform_dir,
                env=self._get_environment(options),
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            log_timeout_event(operation, timeout, cmd)
            raise TerraformTimeoutError(
                f"Terraform {operation} timed out after {timeout} seconds",
                command=cmd,
                timeout_value=timeout,
                cause=e,
            ) from e
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"Terraform binary not found: {self.binary}",
                recovery_suggestion="Install terraform or set AMT_TERRAFORM_BINARY",
                cause=e,
            ) from e

    def run_command(
        self, options: ModuleOptions, args: List[str], timeout: int, operation: str
    ) -> str:
        """Run ``terraform <args>`` under the retry policy and return stdout."""
        result = run_with_retries(
            f"terraform {operation}",
            lambda: self._run_once(args, options, timeout, operation),
            [self.binary, *args],
            options.retry_policy,
            sleep=self._sleep,
            before_attempt=self._cancel_check,
        )
        return result.stdout

    def init(self, options: ModuleOptions) -> str:
        """Run terraform init."""
        logger.info(f"Running terraform init in {options.terraform_dir}")
        return self.run_command(
            options,
            ["init", "-input=false", "-no-color", *self._lock_args(options)],
            Timeouts.TERRAFORM_INIT,
            "init",
        )

    def plan(self, options: ModuleOptions) -> PlanResult:
        """Run terraform plan into a saved plan and parse it with show -json."""
        logger.info(f"Running terraform plan in {options.terraform_dir}")
        fd, plan_file = tempfile.mkstemp(prefix="amt-", suffix=".tfplan")
        os.close(fd)
        try:
            with self._var_args(options) as var_args:
                self.run_command(
                    options,
                    [
                        "plan",
                        "-input=false",
                        "-no-color",
                        f"-out={plan_file}",
                        *self._lock_args(options),
                        *var_args,
                    ],
                    Timeouts.TERRAFORM_PLAN,
                    "plan",
                )
            output = self.run_command(
                options,
                ["show", "-json", "-no-color", plan_file],
                Timeouts.TERRAFORM_SHOW,
                "show",
            )
        finally:
            try:
                os.unlink(plan_file)
            except OSError:
                logger.warning(f"Could not remove plan file {plan_file}")
        return parse_plan_json(output)

    def init_and_plan(self, options: ModuleOptions) -> PlanResult:
        self.init(options)
        return self.plan(options)

    def apply(self, options: ModuleOptions) -> Dict[str, Any]:
        """Run terraform apply and return all outputs."""
        if options.plan_only:
            raise ConfigurationError(
                "Refusing to apply options marked plan_only",
                context={"terraform_dir": str(options.terraform_dir)},
            )
        logger.info(f"Running terraform apply in {options.terraform_dir}")
        extra = (
            [f"-parallelism={options.parallelism}"] if options.parallelism else []
        )
        with self._var_args(options) as var_args:
            self.run_command(
                options,
                [
                    "apply",
                    "-auto-approve",
                    "-input=false",
                    "-no-color",
                    *self._lock_args(options),
                    *extra,
                    *var_args,
                ],
                Timeouts.TERRAFORM_APPLY,
                "apply",
            )
        return self.output_all(options)

    def init_and_apply(self, options: ModuleOptions) -> Dict[str, Any]:
        self.init(options)
        return self.apply(options)

    def destroy(self, options: ModuleOptions) -> str:
        """Run terraform destroy.

        A no-op for plan-only options and for modules that were never
        initialized, since neither can have created anything.
        """
        if options.plan_only:
            logger.debug(
                f"Skipping destroy for plan-only module {options.terraform_dir}"
            )
            return ""
        data_dir = self._data_dir(options)
        if not data_dir.exists():
            logger.warning(
                f"Skipping destroy: {options.terraform_dir} was never initialized "
                f"(no {data_dir})"
            )
            return ""

        logger.info(f"Running terraform destroy in {options.terraform_dir}")
        with self._var_args(options) as var_args:
            return self.run_command(
                options,
                [
                    "destroy",
                    "-auto-approve",
                    "-input=false",
                    "-no-color",
                    *self._lock_args(options),
                    *var_args,
                ],
                Timeouts.TERRAFORM_DESTROY,
                "destroy",
            )

    def show_state(self, options: ModuleOptions) -> TerraformState:
        """Return the current state as parsed by ``terraform show -json``."""
        output = self.run_command(
            options, ["show", "-json", "-no-color"], Timeouts.TERRAFORM_SHOW, "show"
        )
        return parse_state_json(output)

    def output_all(self, options: ModuleOptions) -> Dict[str, Any]:
        """Return every declared output as name -> value."""
        output = self.run_command(
            options, ["output", "-json", "-no-color"], Timeouts.TERRAFORM_OUTPUT, "output"
        )
        try:
            data = json.loads(output or "{}")
        except json.JSONDecodeError as e:
            raise TerraformError(f"Could not parse terraform outputs: {e}", cause=e) from e
        return {name: item.get("value") for name, item in data.items()}

    def _typed_output(self, options: ModuleOptions, name: str, expected: type) -> Any:
        outputs = self.output_all(options)
        if name not in outputs:
            raise ModuleAssertionError(
                f"Output '{name}' is not declared",
                expected=name,
                actual=sorted(outputs),
            )
        value = outputs[name]
        if not isinstance(value, expected):
            raise ModuleAssertionError(
                f"Output '{name}' is {type(value).__name__}, expected {expected.__name__}",
                expected=expected.__name__,
                actual=type(value).__name__,
            )
        return value

    def output(self, options: ModuleOptions, name: str) -> str:
        return self._typed_output(options, name, str)

    def output_map(self, options: ModuleOptions, name: str) -> Dict[str, Any]:
        return self._typed_output(options, name, dict)

    def output_list(self, options: ModuleOptions, name: str) -> List[Any]:
        return self._typed_output(options, name, list)

    def version(self) -> Optional[str]:
        """Return the installed terraform version, or None if unavailable."""
        try:
            result = subprocess.run(
                [self.binary, "version", "-json"],
                capture_output=True,
                text=True,
                timeout=Timeouts.VERSION_CHECK,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return None
        if result.returncode != 0:
            return None
        try:
            return json.loads(result.stdout).get("terraform_version")
        except json.JSONDecodeError:
            return None


_default_runner = TerraformRunner()


def init_and_plan(options: ModuleOptions) -> PlanResult:
    return _default_runner.init_and_plan(options)


def init_and_apply(options: ModuleOptions) -> Dict[str, Any]:
    return _default_runner.init_and_apply(options)


def destroy(options: ModuleOptions) -> str:
    return _default_runner.destroy(options)


def output(options: ModuleOptions, name: str) -> str:
    return _default_runner.output(options, name)


def output_map(options: ModuleOptions, name: str) -> Dict[str, Any]:
    return _default_runner.output_map(options, name)


def deferred_destroy(ctx: Any, options: ModuleOptions) -> None:
    """Register destroy on the unit's cleanup stack right after options are built.

    Registered before apply runs, so a failure inside apply itself still
    triggers destroy.
    """
    ctx.defer(
        ctx.terraform.destroy,
        options,
        description=f"terraform destroy {options.terraform_dir}",
    )
