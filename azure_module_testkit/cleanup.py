"""Scoped release steps for tenant units.

Every acquisition (resource group, applied module, temp workspace) registers
its release step here at the moment it is acquired. The stack unwinds in
reverse order of registration, runs every step even when an earlier one
fails, and records failures instead of raising them, so a cleanup error can
never hide the assertion failure that preceded it.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from .exceptions import CleanupError

logger = logging.getLogger(__name__)


@dataclass
class CleanupStep:
    """One registered release step."""

    description: str
    func: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: dict = field(default_factory=dict)


class CleanupStack:
    """LIFO stack of release steps owned by a single tenant unit."""

    def __init__(self, owner: str = "") -> None:
        self.owner = owner
        self._steps: List[CleanupStep] = []
        self._lock = threading.Lock()
        self._closed = False
        self.errors: List[CleanupError] = []

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def closed(self) -> bool:
        return self._closed

    def push(
        self,
        func: Callable[..., Any],
        *args: Any,
        description: Optional[str] = None,
        **kwargs: Any,
    ) -> CleanupStep:
        """Register a release step. Returns the step for introspection."""
        step = CleanupStep(
            description=description or getattr(func, "__name__", repr(func)),
            func=func,
            args=args,
            kwargs=kwargs,
        )
        with self._lock:
            if self._closed:
                raise RuntimeError(
                    f"Cannot register '{step.description}': cleanup for {self.owner} already ran"
                )
            self._steps.append(step)
        logger.debug(f"[{self.owner}] registered cleanup step: {step.description}")
        return step

    def unwind(self) -> List[CleanupError]:
        """Run every step in reverse order and return the failures.

        Idempotent: a second call does nothing and returns the same errors.
        """
        with self._lock:
            if self._closed:
                return list(self.errors)
            self._closed = True
            steps = list(reversed(self._steps))
            self._steps.clear()

        interrupt: Optional[BaseException] = None
        for step in steps:
            logger.info(f"[{self.owner}] cleanup: {step.description}")
            try:
                step.func(*step.args, **step.kwargs)
            except Exception as exc:
                self._record(step, exc)
            except BaseException as exc:
                # KeyboardInterrupt/SystemExit: finish the stack, then re-raise
                self._record(step, exc)
                interrupt = interrupt or exc

        if interrupt is not None:
            raise interrupt
        return list(self.errors)

    def _record(self, step: CleanupStep, exc: BaseException) -> None:
        if isinstance(exc, CleanupError):
            error = exc
        else:
            error = CleanupError(
                f"Cleanup step '{step.description}' failed: {exc}",
                step=step.description,
                cause=exc,
            )
        logger.error(f"[{self.owner}] {error}")
        self.errors.append(error)

    def discard(self) -> int:
        """Drop all steps without running them (keep-resources debugging mode)."""
        with self._lock:
            count = len(self._steps)
            self._steps.clear()
            self._closed = True
        return count
