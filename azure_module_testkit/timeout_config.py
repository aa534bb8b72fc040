"""
Centralized timeout configuration for external operations.

Every terraform subprocess and Azure long-running operation started by the
harness is bounded by one of these values, so a hung provider plugin or a stuck
deletion can never block a tenant unit (and its cleanup) forever.

Usage:
    from azure_module_testkit.timeout_config import Timeouts

    subprocess.run(cmd, timeout=Timeouts.TERRAFORM_INIT)

Environment Variables:
    - AMT_TIMEOUT_QUICK: Version checks (default: 30s)
    - AMT_TIMEOUT_OUTPUT: terraform output (default: AMT_TIMEOUT_QUICK)
    - AMT_TIMEOUT_INIT: terraform init, provider downloads (default: 300s)
    - AMT_TIMEOUT_PLAN: terraform plan / show (default: 600s)
    - AMT_TIMEOUT_APPLY: terraform apply (default: 1800s)
    - AMT_TIMEOUT_DESTROY: terraform destroy (default: 1800s)
    - AMT_TIMEOUT_AZURE_POLL: resource group create/delete pollers (default: 1800s)
"""

import logging
import os
from typing import Final, List, Optional, Union

logger = logging.getLogger(__name__)


def _get_timeout(env_var: str, default: int) -> int:
    """Get timeout value from environment variable or use default.

    Args:
        env_var: Environment variable name
        default: Default timeout in seconds

    Returns:
        Timeout value in seconds
    """
    value = os.environ.get(env_var)
    if value is not None:
        try:
            timeout = int(value)
            if timeout <= 0:
                logger.warning(
                    f"Invalid timeout value for {env_var}: {value}. "
                    f"Must be positive. Using default: {default}s"
                )
                return default
            return timeout
        except ValueError:
            logger.warning(
                f"Invalid timeout value for {env_var}: {value}. "
                f"Must be integer. Using default: {default}s"
            )
            return default
    return default


class Timeouts:
    """Timeout constants for terraform commands and Azure pollers (seconds)."""

    QUICK: Final[int] = _get_timeout("AMT_TIMEOUT_QUICK", 30)
    VERSION_CHECK: Final[int] = QUICK
    TERRAFORM_OUTPUT: Final[int] = _get_timeout("AMT_TIMEOUT_OUTPUT", QUICK)

    TERRAFORM_INIT: Final[int] = _get_timeout("AMT_TIMEOUT_INIT", 300)
    TERRAFORM_PLAN: Final[int] = _get_timeout("AMT_TIMEOUT_PLAN", 600)
    TERRAFORM_SHOW: Final[int] = TERRAFORM_PLAN

    TERRAFORM_APPLY: Final[int] = _get_timeout("AMT_TIMEOUT_APPLY", 1800)
    TERRAFORM_DESTROY: Final[int] = _get_timeout("AMT_TIMEOUT_DESTROY", 1800)

    AZURE_POLL: Final[int] = _get_timeout("AMT_TIMEOUT_AZURE_POLL", 1800)


def log_timeout_event(
    operation: str,
    timeout_value: int,
    command: Optional[Union[str, List[str]]] = None,
    level: str = "warning",
) -> None:
    """Log a timeout event with consistent formatting.

    Args:
        operation: Name of the operation that timed out
        timeout_value: Timeout value that was exceeded
        command: Optional command that timed out
        level: Log level (debug, info, warning, error)
    """
    log_func = getattr(logger, level, logger.warning)
    cmd_str = ""
    if command:
        cmd_str = " ".join(command) if isinstance(command, list) else command
        if len(cmd_str) > 100:
            cmd_str = cmd_str[:97] + "..."
        cmd_str = f" - command: '{cmd_str}'"

    log_func(
        f"Operation '{operation}' timed out after {timeout_value} seconds{cmd_str}"
    )
