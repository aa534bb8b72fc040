"""Retry classification with exponential backoff for terraform commands.

A failed command is retried only when its output matches a pattern in the
policy's allowlist. Anything else fails the unit on the first attempt; an
allowlisted error that keeps happening fails it once the retry budget is spent.
"""

import logging
import re
import subprocess
import time
from functools import lru_cache
from typing import Callable, List, Optional, Sequence

from ..exceptions import (
    RetryExhaustedError,
    TerraformCommandError,
    TransientTerraformError,
)
from .options import RetryPolicy

logger = logging.getLogger(__name__)


_INLINE_FLAGS = re.compile(r"^\(\?[aiLmsux]+\)")


@lru_cache(maxsize=None)
def compile_retryable_pattern(pattern: str) -> "re.Pattern[str]":
    """Compile an allowlist pattern once.

    Leading and trailing ``.*`` (common in terratest-style lists) are dropped:
    ``re.search`` does not need them and they backtrack quadratically on long
    output that does not match.
    """
    flags_match = _INLINE_FLAGS.match(pattern)
    flags = flags_match.group(0) if flags_match else ""
    core = pattern[len(flags):]
    while core.startswith(".*"):
        core = core[2:]
    while core.endswith(".*") and not core.endswith("\\.*"):
        core = core[:-2]
    return re.compile(flags + core, re.DOTALL)


def match_retryable_error(output: str, policy: RetryPolicy) -> Optional[str]:
    """Return the first allowlisted pattern found in output, or None."""
    for pattern in policy.retryable_errors:
        if compile_retryable_pattern(pattern).search(output):
            return pattern
    return None


def run_with_retries(
    description: str,
    run_once: Callable[[], "subprocess.CompletedProcess[str]"],
    command: Sequence[str],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    before_attempt: Optional[Callable[[], None]] = None,
) -> "subprocess.CompletedProcess[str]":
    """Run a command, retrying allowlisted failures with backoff.

    Args:
        description: Human-readable name for logs ("terraform apply")
        run_once: Executes the command once and returns the completed process
        command: The argv, for error context
        policy: Retry classification and backoff schedule
        sleep: Sleep function (injectable for tests)
        before_attempt: Hook run before every attempt, e.g. a cancellation check

    Returns:
        The successful completed process

    Raises:
        TerraformCommandError: Non-retryable failure
        RetryExhaustedError: Retryable failure that persisted past max_retries
    """
    failures: List[TransientTerraformError] = []

    for attempt in range(1, policy.max_attempts + 1):
        if before_attempt is not None:
            before_attempt()

        result = run_once()
        if result.returncode == 0:
            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}")
            return result

        output = f"{result.stdout or ''}\n{result.stderr or ''}"
        pattern = match_retryable_error(output, policy)

        if pattern is None:
            raise TerraformCommandError(
                f"{description} failed: {(result.stderr or result.stdout or '').strip()}",
                command=command,
                exit_code=result.returncode,
                stderr=result.stderr,
            )

        reason = policy.retryable_errors[pattern]
        failures.append(
            TransientTerraformError(
                f"{description} hit a retryable error: {reason}",
                matched_pattern=pattern,
                command=command,
                exit_code=result.returncode,
                stderr=result.stderr,
            )
        )

        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed with retryable error ({reason}); "
                f"attempt {attempt}/{policy.max_attempts}, retrying in {delay:.1f}s"
            )
            sleep(delay)

    raise RetryExhaustedError(
        f"{description} still failing after {policy.max_attempts} attempts: "
        f"{policy.retryable_errors[failures[-1].matched_pattern]}",  # type: ignore[index]
        attempts=policy.max_attempts,
        last_error=failures[-1],
    )
