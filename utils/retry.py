"""Exponential-backoff retry for transient Gemini and Supabase failures."""

import time
import random
from functools import wraps
from typing import Any, Callable, Iterator, Tuple, Type, TypeVar

from .logger import get_logger
from .error_handler import APIError, TransientAPIError
import config

logger = get_logger()

F = TypeVar('F', bound=Callable[..., Any])


def backoff_delays(
    attempts: int,
    initial_delay: float = config.RETRY_INITIAL_DELAY,
    backoff_factor: float = config.RETRY_BACKOFF_FACTOR,
    jitter: float = 0.1,
) -> Iterator[float]:
    """Yields the wait before each retry: ``attempts - 1`` delays growing by ``backoff_factor``.

    Each delay is perturbed by up to ``jitter`` (as a fraction of the delay) in either direction.
    """
    delay = initial_delay
    for _ in range(max(0, attempts - 1)):
        yield max(0.0, delay + delay * jitter * random.uniform(-1, 1))
        delay *= backoff_factor


def _describe(error: Exception) -> str:
    if isinstance(error, APIError) and (error.service or error.status_code):
        return f"{type(error).__name__} from {error.service or 'API'} (status {error.status_code or 'n/a'})"
    return type(error).__name__


def retry_on_exception(
    exceptions: Tuple[Type[Exception], ...] = (TransientAPIError,),
    max_attempts: int = config.NETWORK_MAX_ATTEMPTS,
    initial_delay: float = config.RETRY_INITIAL_DELAY,
    backoff_factor: float = config.RETRY_BACKOFF_FACTOR,
    jitter: float = 0.1
) -> Callable[[F], F]:
    """Decorator to retry a call on the given exceptions with exponential backoff.

    Args:
        exceptions: Exception types that are safe to retry.
        max_attempts: Maximum number of attempts (including the initial one).
        initial_delay: Delay before the first retry in seconds.
        backoff_factor: Multiplier for the delay in subsequent retries.
        jitter: Fraction of each delay added or removed at random.

    Returns:
        A decorator function. The last exception is re-raised once attempts run out.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delays = backoff_delays(max_attempts, initial_delay, backoff_factor, jitter)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    wait_time = next(delays, None)
                    if wait_time is None:
                        logger.error(
                            f"{func.__qualname__} gave up after {attempt} attempt(s): {_describe(e)}.",
                            exc_info=config.DEBUG
                        )
                        raise
                    logger.warning(
                        f"{func.__qualname__} attempt {attempt}/{max_attempts} failed with {_describe(e)}; "
                        f"retrying in {wait_time:.2f}s."
                    )
                    time.sleep(wait_time)

        return wrapper # type: ignore
    return decorator
