import asyncio
import logging
import random
from functools import wraps
from typing import Callable, Type, Tuple, Optional

from executor.errors import TransientActionError, PermanentActionError

logger = logging.getLogger("automation_engine")

class RetryManager:
    """
    Manages retry logic with exponential backoff and jitter.
    """

    @staticmethod
    def is_transient_error(exception: Exception) -> bool:
        """
        Determines if an error is transient and worth retrying.
        """
        if isinstance(exception, PermanentActionError):
            return False
        if isinstance(exception, (TransientActionError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
            return True

        error_msg = str(exception).lower()
        transient_keywords = [
            "timeout",
            "connection",
            "rate limit",
            "429",
            "500", "502", "503", "504"
        ]

        return any(keyword in error_msg for keyword in transient_keywords)

    @staticmethod
    def with_retry(
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        retry_on: Tuple[Type[Exception], ...] = (Exception,),
        on_attempt: Optional[Callable[[int], None]] = None,
    ):
        """
        Decorator to retry an async function upon failure.

        `on_attempt` is called with the attempt number before each call so
        callers can report how many attempts an operation took.
        """
        def decorator(func: Callable):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                attempt = 0
                while True:
                    if on_attempt:
                        on_attempt(attempt + 1)
                    try:
                        return await func(*args, **kwargs)
                    except retry_on as e:
                        attempt += 1
                        if attempt >= max_attempts:
                            logger.warning(f"Max retry attempts ({max_attempts}) reached for {func.__name__}. Last error: {e}")
                            raise

                        if not RetryManager.is_transient_error(e):
                            logger.info(f"Non-transient error in {func.__name__}: {e}. Not retrying.")
                            raise

                        # Calculate delay: base * 2^(attempt-1) + jitter
                        delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                        jitter = random.uniform(0, 0.1 * delay)
                        final_delay = delay + jitter

                        logger.info(f"Transient error in {func.__name__}: {e}. Retrying execution in {final_delay:.2f}s (Attempt {attempt}/{max_attempts})")
                        await asyncio.sleep(final_delay)
            return wrapper
        return decorator
