"""Rate-limited batch execution of per-record operations."""

import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional

from ..models.migration import MigrationProgress, MigrationStatus, OperationError
from ..models.record import Operation, OperationKind
from ..services.rate_limiter import RateLimiter
from ..services.retry_queue import DrainResult, RetryQueue
from .commerce_client import CommerceClient, OperationResult

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def is_retryable_error(error: Exception) -> bool:
    """Transient failures: 429/5xx statuses, or rate-limit and timeout messages."""
    if getattr(error, "status_code", None) in RETRYABLE_STATUS_CODES:
        return True
    message = str(error).lower()
    return "rate limit" in message or "timeout" in message


class BatchExecutor:
    """
    Runs operations in rate-limited, concurrently executed batches.

    Batch size shrinks with the remaining rate-limit headroom: 10 at a
    full bucket, never below 1. The limiter is throttled once per batch and
    once per retry attempt, and re-synced from the API's call-limit header
    after each. A failing operation never aborts its batch; transient
    failures also go to the retry queue, which retry_failed() drains
    afterwards.
    """

    def __init__(
        self,
        client: CommerceClient,
        rate_limiter: RateLimiter,
        retry_queue: RetryQueue,
        cancel_token: Optional[Any] = None,
        base_batch_size: int = 10
    ):
        """
        Initialize the executor.

        Args:
            client: Commerce API client
            rate_limiter: Limiter shared by every stage of the run
            retry_queue: Queue receiving retryable failures
            cancel_token: Object with an is_cancelled flag, checked between batches
            base_batch_size: Batch size at a full bucket
        """
        self.client = client
        self.rate_limiter = rate_limiter
        self.retry_queue = retry_queue
        self.cancel_token = cancel_token
        self.base_batch_size = base_batch_size
        # Retry entry id -> error recorded for the original attempt
        self._retry_errors: Dict[int, OperationError] = {}

    @property
    def cancelled(self) -> bool:
        return bool(self.cancel_token is not None and self.cancel_token.is_cancelled)

    def batch_size(self) -> int:
        """Size of the next batch given the credits available right now."""
        available = self.rate_limiter.available_credits()
        return max(1, math.floor(self.base_batch_size * available / self.rate_limiter.bucket_capacity))

    async def execute_operation(self, operation: Operation) -> OperationResult:
        """Perform one operation without blocking the event loop."""
        return await asyncio.to_thread(self.client.execute_operation, operation)

    async def _execute_throttled(self, operation: Operation) -> OperationResult:
        """Single retry attempt; each one spends a credit from the shared bucket."""
        await self.rate_limiter.throttle()
        try:
            return await self.execute_operation(operation)
        finally:
            self.rate_limiter.sync_from_header(self.client.last_call_limit)

    async def run(
        self,
        operations: List[Operation],
        on_batch_complete: Optional[Callable[[MigrationProgress], None]] = None
    ) -> MigrationProgress:
        """
        Execute operations batch by batch.

        Args:
            operations: Operations in submission order
            on_batch_complete: Called with the running progress after each batch

        Returns:
            MigrationProgress; COMPLETED once every batch ran, whatever the
            failure count
        """
        progress = MigrationProgress(total=len(operations))
        progress.start()

        index = 0
        batch_number = 0

        try:
            while index < len(operations):
                if self.cancelled:
                    logger.warning(f"Cancelled with {len(operations) - index} operations not executed")
                    self._fail_remaining(progress, operations[index:], "Migration cancelled before execution")
                    progress.finish(MigrationStatus.CANCELLED)
                    return progress

                size = self.batch_size()
                batch = operations[index:index + size]
                batch_number += 1

                await self.rate_limiter.throttle()

                outcomes = await asyncio.gather(
                    *(self.execute_operation(op) for op in batch),
                    return_exceptions=True,
                )

                for operation, outcome in zip(batch, outcomes):
                    if isinstance(outcome, Exception):
                        self._record_failure(progress, operation, outcome)
                    elif isinstance(outcome, BaseException):
                        raise outcome
                    else:
                        progress.record_success(operation.resource_kind, self._created_id(operation, outcome))

                index += len(batch)
                self.rate_limiter.sync_from_header(self.client.last_call_limit)

                logger.debug(
                    f"Batch {batch_number}: {len(batch)} operations, "
                    f"{progress.completed} completed, {progress.failed} failed"
                )

                if on_batch_complete:
                    on_batch_complete(progress)

        except Exception as e:
            logger.error(f"Batch execution aborted: {e}")
            self._fail_remaining(progress, operations[index:], f"Batch execution aborted: {e}")
            progress.finish(MigrationStatus.FAILED)
            return progress

        progress.finish(MigrationStatus.COMPLETED)
        logger.info(
            f"Executed {len(operations)} operations in {batch_number} batches: "
            f"{progress.completed} completed, {progress.failed} failed, "
            f"{len(self.retry_queue)} queued for retry"
        )
        return progress

    async def retry_failed(self, progress: MigrationProgress) -> DrainResult:
        """
        Drain the retry queue and fold the outcome into a progress record.

        Successful retries move from failed to completed. Entries that run
        out of retries stay failed, now marked permanent with their history.
        """
        if not len(self.retry_queue):
            return DrainResult()

        logger.info(f"Retrying {len(self.retry_queue)} failed operations")
        result = await self.retry_queue.drain(self._execute_throttled, should_stop=lambda: self.cancelled)

        for entry, outcome in zip(result.succeeded, result.results):
            error = self._retry_errors.pop(id(entry), None)
            if error is not None:
                progress.resolve_failure(error, self._created_id(entry.operation, outcome))

        for entry in result.permanently_failed:
            error = self._retry_errors.pop(id(entry), None)
            if error is None:
                continue
            error.retry_count = entry.retry_count
            error.retry_history = [error.error_message] + entry.history
            error.permanent = True
            if entry.history:
                error.error_message = entry.history[-1]
            if entry.last_status_code is not None:
                error.status_code = entry.last_status_code

        logger.info(
            f"Retries finished: {len(result.succeeded)} recovered, "
            f"{len(result.permanently_failed)} permanently failed"
        )
        return result

    def _record_failure(self, progress: MigrationProgress, operation: Operation, exc: Exception) -> None:
        retryable = is_retryable_error(exc)
        error = OperationError(
            operation=operation,
            error_message=str(exc),
            retryable=retryable,
            permanent=not retryable,
            status_code=getattr(exc, "status_code", None),
        )
        progress.record_failure(error)

        if retryable:
            entry = self.retry_queue.add(operation)
            self._retry_errors[id(entry)] = error
            logger.warning(f"Queued {operation.resource_kind.value} {operation.record_id} for retry: {exc}")
        else:
            logger.error(f"Failed {operation.resource_kind.value} {operation.record_id}: {exc}")

    def _fail_remaining(self, progress: MigrationProgress, operations: List[Operation], message: str) -> None:
        for operation in operations:
            progress.record_failure(OperationError(operation=operation, error_message=message))

    @staticmethod
    def _created_id(operation: Operation, outcome: Any) -> Optional[str]:
        if operation.operation_kind != OperationKind.CREATE:
            return None
        return getattr(outcome, "target_id", None)
