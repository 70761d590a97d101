
import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from solscalp.exceptions import OperationalError
from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    transient_errors: Optional[Tuple[Type[Exception], ...]] = None,
    sleep: Optional[Sleep] = None,
    **kwargs,
) -> Any:
    """
    Await `func(*args, **kwargs)`, retrying transient errors.

    Implements linear backoff: the wait before attempt N+1 is
    `base_delay * N`.

    Args:
        max_attempts: Total attempts including the first call
        base_delay: Backoff unit in seconds
        transient_errors: Exception types to retry on. Defaults to
                          OperationalError; anything else is raised at once.
        sleep: Awaitable sleep (injectable for tests)
    """
    transient_errors = transient_errors or (OperationalError,)
    sleep = sleep or asyncio.sleep
    name = getattr(func, "__name__", repr(func))

    attempt = 1
    while True:
        try:
            return await func(*args, **kwargs)
        except transient_errors as e:
            if attempt >= max_attempts:
                logger.warning(
                    f"Max attempts ({max_attempts}) exhausted for {name}",
                    error=str(e),
                )
                raise

            wait = base_delay * attempt
            logger.warning(
                f"Transient error in {name}, retrying ({attempt}/{max_attempts})",
                error=str(e),
                wait=f"{wait:.2f}s",
            )
            await sleep(wait)
            attempt += 1

