"""Execution through the commerce platform's asynchronous bulk API."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..exceptions import BulkOperationError, BulkOperationTimeout, CommerceAPIError
from ..models.migration import MigrationProgress, MigrationStatus, OperationError
from ..models.record import Operation, OperationKind, ResourceKind
from ..services.rate_limiter import RateLimiter
from .commerce_client import CommerceClient

logger = logging.getLogger(__name__)

SUCCESS_STATES = {"COMPLETED"}
FAILURE_STATES = {"FAILED", "CANCELED", "CANCELLED", "EXPIRED"}


class BulkExecutor:
    """
    Submits one bulk job per stage and polls it to a terminal state.

    Polling is bounded by max_poll_seconds, stops when the cancel token is
    set, and backs off exponentially while status calls fail.
    """

    def __init__(
        self,
        client: CommerceClient,
        rate_limiter: Optional[RateLimiter] = None,
        cancel_token: Optional[Any] = None,
        poll_interval: float = 5.0,
        max_poll_seconds: float = 3600.0,
        max_poll_backoff: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.rate_limiter = rate_limiter
        self.cancel_token = cancel_token
        self.poll_interval = poll_interval
        self.max_poll_seconds = max_poll_seconds
        self.max_poll_backoff = max_poll_backoff
        self._clock = clock
        self._sleep = sleep

    @property
    def cancelled(self) -> bool:
        return bool(self.cancel_token is not None and self.cancel_token.is_cancelled)

    async def run_bulk(self, resource_kind: ResourceKind, records: List[Dict[str, Any]]) -> MigrationProgress:
        """
        Import records of one kind as a single bulk job.

        Args:
            resource_kind: Kind of every record
            records: Transformed records

        Returns:
            MigrationProgress: completed == total on success; on failure one
            synthetic error carries the job's error code and every record
            counts as failed
        """
        progress = MigrationProgress(total=len(records))
        progress.start()

        if not records:
            progress.finish(MigrationStatus.COMPLETED)
            return progress

        operation_id = None
        try:
            if self.rate_limiter:
                await self.rate_limiter.throttle()
            operation_id = await asyncio.to_thread(self.client.submit_bulk_import, resource_kind, records)
            node = await self.wait_for_completion(operation_id)
        except BulkOperationTimeout as e:
            logger.error(str(e))
            self._fail_all(progress, resource_kind, operation_id, str(e), e.error_code)
            progress.finish(MigrationStatus.FAILED)
            return progress
        except (BulkOperationError, CommerceAPIError) as e:
            logger.error(f"Bulk {resource_kind.value} import failed: {e}")
            self._fail_all(progress, resource_kind, operation_id, str(e), getattr(e, "error_code", None))
            progress.finish(MigrationStatus.FAILED)
            return progress

        if node is None:
            self._fail_all(progress, resource_kind, operation_id, "Bulk operation polling cancelled", None)
            progress.finish(MigrationStatus.CANCELLED)
            return progress

        status = node.get("status")
        if status in SUCCESS_STATES:
            progress.completed = progress.total
            progress.finish(MigrationStatus.COMPLETED)
            logger.info(f"Bulk {resource_kind.value} import {operation_id} completed: {progress.total} records")
            return progress

        error_code = node.get("errorCode")
        message = f"Bulk operation {str(status).lower()}: {error_code or 'no error code'}"
        logger.error(f"Bulk {resource_kind.value} import {operation_id}: {message}")
        self._fail_all(progress, resource_kind, operation_id, message, error_code)
        progress.finish(MigrationStatus.FAILED)
        return progress

    async def wait_for_completion(self, operation_id: str) -> Optional[Dict[str, Any]]:
        """
        Poll a bulk job until it reaches a terminal state.

        Returns:
            The final status node, or None when cancelled

        Raises:
            BulkOperationTimeout: The job outlived max_poll_seconds
        """
        deadline = self._clock() + self.max_poll_seconds
        poll_errors = 0

        while True:
            if self.cancelled:
                logger.warning(f"Stopped polling bulk operation {operation_id}: cancelled")
                return None

            try:
                node = await asyncio.to_thread(self.client.get_bulk_operation_status, operation_id)
            except CommerceAPIError as e:
                poll_errors += 1
                delay = min(self.poll_interval * (2 ** poll_errors), self.max_poll_backoff)
                logger.warning(f"Polling {operation_id} failed ({poll_errors} in a row), retrying in {delay}s: {e}")
            else:
                poll_errors = 0
                status = node.get("status")
                if status in SUCCESS_STATES or status in FAILURE_STATES:
                    return node
                logger.debug(f"Bulk operation {operation_id} is {status}, {node.get('objectCount')} objects")
                delay = self.poll_interval

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise BulkOperationTimeout(
                    f"Bulk operation {operation_id} did not finish within {self.max_poll_seconds}s",
                    error_code="TIMEOUT",
                )
            await self._sleep(min(delay, remaining))

    def _fail_all(
        self,
        progress: MigrationProgress,
        resource_kind: ResourceKind,
        operation_id: Optional[str],
        message: str,
        error_code: Optional[str]
    ) -> None:
        operation = Operation(
            operation_kind=OperationKind.CREATE,
            resource_kind=resource_kind,
            payload={"bulk_operation_id": operation_id, "record_count": progress.total, "error_code": error_code},
        )
        progress.failed = progress.total - progress.completed
        progress.errors.append(OperationError(operation=operation, error_message=message))
