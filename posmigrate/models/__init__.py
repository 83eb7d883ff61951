"""Data models for the migration engine."""

from .record import (
    ResourceKind,
    OperationKind,
    Operation,
    SourceRecord,
    ValidationError,
    ValidationErrorType,
    InvalidRecord,
    TransformationOutcome,
    tag_records,
)
from .mapping import (
    TargetField,
    TARGET_FIELDS,
    FieldMapping,
    MappingSuggestion,
    DetectedField,
    SchemaDetectionResult,
    DataValidationResult,
)
from .migration import (
    MigrationStatus,
    StepStatus,
    MigrationStrategy,
    MigrationPriority,
    MigrationOptions,
    MigrationStep,
    MigrationPlan,
    MigrationProgress,
    OperationError,
    CommerceConfig,
    MigrationConfig,
)

__all__ = [
    "ResourceKind",
    "OperationKind",
    "Operation",
    "SourceRecord",
    "ValidationError",
    "ValidationErrorType",
    "InvalidRecord",
    "TransformationOutcome",
    "tag_records",
    "TargetField",
    "TARGET_FIELDS",
    "FieldMapping",
    "MappingSuggestion",
    "DetectedField",
    "SchemaDetectionResult",
    "DataValidationResult",
    "MigrationStatus",
    "StepStatus",
    "MigrationStrategy",
    "MigrationPriority",
    "MigrationOptions",
    "MigrationStep",
    "MigrationPlan",
    "MigrationProgress",
    "OperationError",
    "CommerceConfig",
    "MigrationConfig",
]
