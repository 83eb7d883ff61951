"""Commerce API client and the executors that drive it."""

from .commerce_client import CommerceClient, OperationResult
from .batch_executor import BatchExecutor, is_retryable_error
from .bulk_executor import BulkExecutor

__all__ = [
    "CommerceClient",
    "OperationResult",
    "BatchExecutor",
    "is_retryable_error",
    "BulkExecutor",
]
