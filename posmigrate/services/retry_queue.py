"""Retry queue with exponential backoff for failed operations."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, List, Optional

from ..models.record import Operation

logger = logging.getLogger(__name__)


@dataclass
class RetryEntry:
    """A queued operation and its retry bookkeeping."""
    operation: Operation
    retry_count: int = 0
    history: List[str] = field(default_factory=list)
    last_status_code: Optional[int] = None


@dataclass
class DrainResult:
    """Outcome of draining the queue."""
    succeeded: List[RetryEntry] = field(default_factory=list)
    permanently_failed: List[RetryEntry] = field(default_factory=list)
    # Results returned by the execute function, index-aligned with succeeded
    results: List[Any] = field(default_factory=list)


class RetryQueue:
    """
    FIFO queue of failed operations.

    Each attempt waits base_delay * 2^retry_count before running. A failed
    attempt goes to the back of the queue so a single bad operation never
    blocks the others. Entries that reach max_retries are reported once as
    permanently failed, with their full history.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        is_retryable: Optional[Callable[[Exception], bool]] = None
    ):
        """
        Initialize the retry queue.

        Args:
            max_retries: Attempts allowed per operation
            base_delay: Backoff base in seconds
            sleep: Coroutine used for backoff waits
            is_retryable: Optional classifier; failures it rejects become
                permanent without further attempts
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep
        self._is_retryable = is_retryable
        self._queue: Deque[RetryEntry] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> List[RetryEntry]:
        return list(self._queue)

    def add(self, operation: Operation) -> RetryEntry:
        """Enqueue an operation with a zero retry count."""
        entry = RetryEntry(operation=operation)
        self._queue.append(entry)
        return entry

    def backoff_delay(self, retry_count: int) -> float:
        return self.base_delay * (2 ** retry_count)

    async def drain(
        self,
        execute_fn: Callable[[Operation], Awaitable[Any]],
        should_stop: Optional[Callable[[], bool]] = None
    ) -> DrainResult:
        """
        Retry every queued operation until it succeeds or runs out of retries.

        Args:
            execute_fn: Coroutine function performing one operation
            should_stop: Checked before each attempt; remaining entries are
                reported as permanently failed when it returns True

        Returns:
            DrainResult with succeeded and permanently failed entries
        """
        result = DrainResult()

        while self._queue:
            entry = self._queue.popleft()

            if should_stop and should_stop():
                entry.history.append("Cancelled before retry")
                result.permanently_failed.append(entry)
                continue

            if entry.retry_count >= self.max_retries:
                logger.error(
                    f"Max retries reached for {entry.operation.operation_kind.value} "
                    f"{entry.operation.resource_kind.value} {entry.operation.record_id}"
                )
                result.permanently_failed.append(entry)
                continue

            await self._sleep(self.backoff_delay(entry.retry_count))

            try:
                outcome = await execute_fn(entry.operation)
            except Exception as e:
                entry.retry_count += 1
                entry.history.append(str(e))
                entry.last_status_code = getattr(e, "status_code", None)

                if self._is_retryable and not self._is_retryable(e):
                    logger.error(f"Retry {entry.retry_count} failed with a permanent error: {e}")
                    result.permanently_failed.append(entry)
                    continue

                logger.info(f"Retry {entry.retry_count} failed for {entry.operation.record_id}: {e}")
                self._queue.append(entry)
                continue

            logger.info(f"Retry successful for {entry.operation.record_id}")
            result.succeeded.append(entry)
            result.results.append(outcome)

        return result
