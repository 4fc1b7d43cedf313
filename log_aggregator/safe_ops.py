"""Uniform try/fallback execution wrapper and a linear-backoff retry policy."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    success: bool
    data: Any = None
    error: str | None = None
    fallback_used: bool = False
    operation_name: str = "operation"


def safe_operation(
    operation: Callable[..., Any],
    *args: Any,
    fallback: Callable[..., Any] | None = None,
    continue_on_error: bool = True,
    name: str | None = None,
    **kwargs: Any,
) -> OperationResult:
    """Run *operation*; on failure try *fallback* with the same arguments.

    Returns an OperationResult. When the operation and the fallback both
    fail (or there is no fallback) the error is re-raised unless
    *continue_on_error* is set, in which case ``success=False`` is returned.
    """
    op_name = name or getattr(operation, "__name__", "operation")
    try:
        return OperationResult(success=True, data=operation(*args, **kwargs), operation_name=op_name)
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
        if fallback is None:
            if not continue_on_error:
                raise
            logger.warning("Operation %s failed: %s", op_name, error)
            return OperationResult(success=False, error=error, operation_name=op_name)

        logger.warning("Operation %s failed (%s), using fallback", op_name, error)
        try:
            data = fallback(*args, **kwargs)
        except Exception as fallback_exc:
            if not continue_on_error:
                raise
            logger.warning("Fallback for %s failed: %s", op_name, fallback_exc)
            return OperationResult(
                success=False,
                error=f"{error}; fallback: {type(fallback_exc).__name__}: {fallback_exc}",
                fallback_used=True,
                operation_name=op_name,
            )
        return OperationResult(
            success=True, data=data, error=error, fallback_used=True, operation_name=op_name,
        )


class RetryPolicy:
    """Retry a call on OSError with linear backoff (backoff * attempt)."""

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 0.2):
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except OSError as exc:
                if attempt == self.max_attempts:
                    raise
                delay = self.backoff_seconds * attempt
                logger.debug(
                    "Attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt, self.max_attempts, exc, delay,
                )
                time.sleep(delay)
