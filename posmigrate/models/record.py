"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid


class ResourceKind(str, Enum):
    """Kinds of resources in the target commerce platform."""
    PRODUCT = "product"
    CUSTOMER = "customer"
    ORDER = "order"
    INVENTORY = "inventory"

    @classmethod
    def from_stage(cls, stage_id: str) -> "ResourceKind":
        """Resolve a plan stage id ("products", "customers", ...) to a kind."""
        for kind in cls:
            if stage_id in (kind.value, kind.stage_id):
                return kind
        raise ValueError(f"Unknown resource stage: {stage_id}")

    @property
    def stage_id(self) -> str:
        """Stage identifier used in migration plans."""
        if self == ResourceKind.INVENTORY:
            return self.value
        return f"{self.value}s"


class OperationKind(str, Enum):
    """Write operations supported against the commerce API."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ValidationErrorType(str, Enum):
    """Categories of record and mapping validation errors."""
    REQUIRED = "required"
    FORMAT = "format"
    MAX_LENGTH = "max_length"
    INVALID = "invalid"
    DUPLICATE = "duplicate"


@dataclass
class ValidationError:
    """A validation error on a record."""
    field: str
    message: str
    error_type: ValidationErrorType = ValidationErrorType.INVALID
    severity: str = "error"  # error, warning
    value: Optional[Any] = None
    suggested_fix: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type.value,
            "severity": self.severity,
            "value": self.value,
            "suggested_fix": self.suggested_fix,
        }


@dataclass
class SourceRecord:
    """A raw POS record tagged with the resource kind it migrates to."""
    data: Dict[str, Any]
    resource_kind: ResourceKind
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "resource_kind": self.resource_kind.value,
            "data": self.data,
        }


def tag_records(
    rows: List[Dict[str, Any]],
    resource_kind: ResourceKind,
    id_field: Optional[str] = None
) -> List[SourceRecord]:
    """Tag every row of a single-kind export with its resource kind."""
    records = []
    for idx, row in enumerate(rows):
        record_id = str(row.get(id_field)) if id_field and row.get(id_field) else str(idx)
        records.append(SourceRecord(data=row, resource_kind=resource_kind, id=record_id))
    return records


@dataclass
class Operation:
    """A single write against the commerce API."""
    operation_kind: OperationKind
    resource_kind: ResourceKind
    payload: Dict[str, Any] = field(default_factory=dict)
    external_id: Optional[str] = None
    record_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "operation_kind": self.operation_kind.value,
            "resource_kind": self.resource_kind.value,
            "payload": self.payload,
            "external_id": self.external_id,
            "record_id": self.record_id,
        }


@dataclass
class InvalidRecord:
    """A record that failed transformation or validation."""
    original: SourceRecord
    transformed: Optional[Dict[str, Any]] = None
    errors: List[ValidationError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "original": self.original.to_dict(),
            "transformed": self.transformed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class TransformationOutcome:
    """Result of transforming and validating a record set."""
    valid_data: List[SourceRecord] = field(default_factory=list)
    invalid_data: List[InvalidRecord] = field(default_factory=list)
    log: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.invalid_data

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "valid_count": len(self.valid_data),
            "invalid_count": len(self.invalid_data),
            "invalid_data": [r.to_dict() for r in self.invalid_data],
            "log": self.log,
        }
