"""
Bounded retry helpers for calls to upstream model services.

The retry loop is iterative with an explicit attempt counter so that the
number of attempts is fixed up front and does not depend on call-stack depth.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(
    base: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 30.0
) -> Callable[[int], float]:
    """
    Build a backoff function mapping a 1-based attempt number to a delay.

    Args:
        base: Delay in seconds after the first failed attempt
        factor: Multiplier applied for every further attempt
        max_delay: Upper bound on any single delay

    Returns:
        Function returning the number of seconds to wait after `attempt`
    """
    def _delay(attempt: int) -> float:
        return min(base * (factor ** (attempt - 1)), max_delay)

    return _delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    backoff: Callable[[int], float] = exponential_backoff(),
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation"
) -> T:
    """
    Run an async operation, retrying transient failures.

    Exceptions not listed in `retry_on` propagate immediately. When the
    attempt budget is exhausted the last exception is re-raised.

    Args:
        operation: Zero-argument coroutine factory to invoke
        max_attempts: Total number of attempts, including the first one
        backoff: Function mapping the failed attempt number to a delay
        retry_on: Exception types considered transient
        description: Label used in log messages

    Returns:
        The operation's result

    Raises:
        ValueError: If max_attempts is less than 1
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error(
                    f"Retry budget exhausted: operation={description}, "
                    f"attempts={attempt}, error={type(e).__name__}: {e}"
                )
                raise
            delay = backoff(attempt)
            logger.warning(
                f"Transient failure, retrying: operation={description}, "
                f"attempt={attempt}/{max_attempts}, wait={delay:.2f}s, "
                f"error={type(e).__name__}"
            )
            await asyncio.sleep(delay)
