"""Token-bucket throttle for the commerce API."""

import asyncio
import logging
import math
import re
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Header value looks like "32/40" (used/capacity)
_CALL_LIMIT_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")


def parse_call_limit(header_value: Optional[str]) -> Optional[tuple]:
    """Parse a "used/capacity" rate-limit header into a tuple of ints."""
    if not header_value:
        return None
    match = _CALL_LIMIT_PATTERN.match(header_value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class RateLimiter:
    """
    Token bucket modelled on the commerce API's burst bucket.

    Credits are refilled lazily on every access instead of by a background
    timer. Refill and consumption happen under one lock so concurrent
    stages never drive the bucket negative.
    """

    def __init__(
        self,
        bucket_capacity: int = 40,
        refill_rate: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize the rate limiter.

        Args:
            bucket_capacity: Maximum credits held by the bucket
            refill_rate: Credits restored per second
            clock: Monotonic clock in seconds
            sleep: Coroutine used to wait for credits
        """
        self.bucket_capacity = bucket_capacity
        self.refill_rate = refill_rate
        self.current_credits: float = bucket_capacity
        self._clock = clock
        self._sleep = sleep
        self.last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        credits_to_add = math.floor(elapsed * self.refill_rate)

        if credits_to_add > 0:
            self.current_credits = min(self.bucket_capacity, self.current_credits + credits_to_add)
            self.last_refill = now

    def wait_time_ms(self) -> int:
        """Milliseconds until one full credit is available."""
        if self.current_credits >= 1:
            return 0
        return math.ceil((1 - self.current_credits) / self.refill_rate * 1000)

    async def throttle(self) -> None:
        """Wait until a credit is available, then consume it."""
        async with self._lock:
            self._refill()

            while self.current_credits < 1:
                wait_ms = self.wait_time_ms()
                logger.debug(f"Rate limit reached, waiting {wait_ms}ms")
                await self._sleep(wait_ms / 1000)
                self._refill()

            self.current_credits = max(0, self.current_credits - 1)

    def available_credits(self) -> float:
        """Current credits after a lazy refill."""
        self._refill()
        return self.current_credits

    def sync(self, used: int, capacity: int) -> None:
        """Align the bucket with the quota last reported by the API."""
        if capacity <= 0:
            return
        self.bucket_capacity = capacity
        self.current_credits = max(0, min(capacity, capacity - used))
        self.last_refill = self._clock()
        logger.debug(f"Rate limiter synced to {self.current_credits}/{capacity} credits")

    def sync_from_header(self, header_value: Optional[str]) -> bool:
        """Sync from a raw "used/capacity" header; returns False if unusable."""
        parsed = parse_call_limit(header_value)
        if not parsed:
            return False
        self.sync(*parsed)
        return True
