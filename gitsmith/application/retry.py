import asyncio
import logging
from typing import Awaitable, Callable, Iterator, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff: base_delay, base_delay * multiplier, ... capped at max_delay."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(5, ge=1)
    base_delay: float = Field(1.0, ge=0)
    multiplier: float = Field(2.0, ge=1)
    max_delay: float = Field(16.0, ge=0)

    def delays(self) -> Iterator[float]:
        """Yields the pause before each retry, so max_attempts - 1 values."""
        delay = self.base_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay)
            delay *= self.multiplier


async def poll(
    operation: Callable[[], Awaitable[T]],
    accept: Callable[[T], bool],
    policy: RetryPolicy,
) -> T:
    """
    Awaits operation until accept(result) is true or the attempts run out.

    Returns:
        The first accepted result, or the last result when none was accepted.
    """
    result = await operation()
    attempt = 1
    for delay in policy.delays():
        if accept(result):
            return result
        logger.debug(f"Attempt {attempt}/{policy.max_attempts} not accepted. Retrying in {delay:.1f}s...")
        await asyncio.sleep(delay)
        result = await operation()
        attempt += 1
    return result
