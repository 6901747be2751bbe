"""Retry execution with capped exponential backoff."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..exceptions import AnalyzerError, ErrorCode
from .error_mapper import classify_registry_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_DELAY = 30.0
DEFAULT_BASE_DELAY = 0.5


def exponential_backoff(base: float, attempt: int) -> float:
    """Calculate a capped exponential delay: ``base * 2**attempt``.

    Args:
        base: Base delay in seconds
        attempt: Zero-based attempt number

    Returns:
        Delay in seconds, never above MAX_DELAY
    """
    if attempt > 30:
        return MAX_DELAY

    delay = base * (2**attempt)
    if delay <= 0 or delay > MAX_DELAY:
        return MAX_DELAY
    return delay


def _default_classify(error: BaseException) -> AnalyzerError:
    return classify_registry_error("retry", "", error)


class RetryExecutor:
    """Run an async operation with bounded retries.

    ``max_retries`` counts retries, not executions: ``max_retries=2`` means
    one initial execution plus up to two retries. Only temporary errors
    (TIMEOUT, FETCH_FAILED) are retried, everything else fails fast.
    The number of executions performed is kept in ``attempts`` so callers
    can record it whether the run succeeded or not.
    """

    def __init__(
        self,
        max_retries: int,
        base_delay: float = DEFAULT_BASE_DELAY,
        classify: Optional[Callable[[BaseException], AnalyzerError]] = None,
    ) -> None:
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay if base_delay > 0 else DEFAULT_BASE_DELAY
        self.classify = classify or _default_classify
        self.attempts = 0

    def _deadline_error(self, error: Optional[AnalyzerError]) -> AnalyzerError:
        operation = error.operation if error else "retry"
        reference = error.reference if error else ""
        return AnalyzerError(
            ErrorCode.TIMEOUT, operation, reference, "operation timeout", error
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        deadline: Optional[float] = None,
    ) -> T:
        """Execute ``operation`` until it succeeds or retries are exhausted.

        Args:
            operation: Zero-argument coroutine function
            deadline: Absolute deadline in event loop time, if any

        Returns:
            The operation result

        Raises:
            AnalyzerError: The classified error of the last execution, or
                TIMEOUT when the deadline is reached
            asyncio.CancelledError: If the surrounding task is cancelled
        """
        loop = asyncio.get_running_loop()
        last_error: Optional[AnalyzerError] = None

        for attempt in range(self.max_retries + 1):
            if deadline is not None and loop.time() >= deadline:
                raise self._deadline_error(last_error)

            self.attempts += 1
            try:
                return await operation()
            except Exception as e:
                last_error = self.classify(e)

            if not last_error.temporary:
                raise last_error

            if attempt == self.max_retries:
                break

            delay = exponential_backoff(self.base_delay, attempt)
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise self._deadline_error(last_error)
                delay = min(delay, remaining)

            logger.warning(
                f"Attempt {self.attempts}/{self.max_retries + 1} failed "
                f"({last_error.code}), retrying in {delay:.3f}s"
            )
            # Cancellation during the wait propagates instead of last_error
            await asyncio.sleep(delay)

        raise last_error
