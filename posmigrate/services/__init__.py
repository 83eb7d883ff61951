"""Core services for the migration engine."""

from .rate_limiter import RateLimiter
from .retry_queue import RetryQueue, RetryEntry
from .transformer import RecordTransformer, validate_mappings
from .verifier import IntegrityVerifier, IntegrityReport
from .analytics import MigrationAnalytics
from .llm_inference import MappingAssistant

__all__ = [
    "RateLimiter",
    "RetryQueue",
    "RetryEntry",
    "RecordTransformer",
    "validate_mappings",
    "IntegrityVerifier",
    "IntegrityReport",
    "MigrationAnalytics",
    "MappingAssistant",
]
