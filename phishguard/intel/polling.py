"""Bounded fixed-interval polling for submit-then-poll providers."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollPolicy:
    """How many times to poll, and how long to wait before each attempt."""

    max_attempts: int = 3
    interval: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")

    @property
    def budget(self) -> float:
        """Total time spent sleeping if every attempt comes back empty."""
        return self.max_attempts * self.interval


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    """Result of a polling loop."""

    value: Optional[T]
    attempts: int
    last_error: Optional[BaseException] = None

    @property
    def exhausted(self) -> bool:
        return self.value is None


async def poll_until(
    fetch: Callable[[], Awaitable[Optional[T]]],
    policy: PollPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    retry_on: tuple[type[BaseException], ...] = (),
) -> PollOutcome[T]:
    """
    Wait, then call fetch(), up to policy.max_attempts times.

    fetch() returns None while the job is still pending. Exceptions listed in
    retry_on count as a pending attempt; anything else propagates.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, policy.max_attempts + 1):
        await sleep(policy.interval)
        try:
            value = await fetch()
        except retry_on as e:
            last_error = e
            logger.debug(f"Poll attempt {attempt}/{policy.max_attempts} failed: {e}")
            continue
        if value is not None:
            return PollOutcome(value=value, attempts=attempt)
        logger.debug(f"Poll attempt {attempt}/{policy.max_attempts}: still pending")

    return PollOutcome(value=None, attempts=policy.max_attempts, last_error=last_error)
