"""Field mapping models and the target commerce schema."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .record import ValidationError


@dataclass(frozen=True)
class TargetField:
    """A field of the target commerce schema."""
    id: str
    label: str
    type: str = "string"
    required: bool = False


# Fixed target schema offered to the mapping step
TARGET_FIELDS: List[TargetField] = [
    TargetField("title", "Product Title", "string", required=True),
    TargetField("description", "Description", "string"),
    TargetField("sku", "SKU", "string", required=True),
    TargetField("price", "Price", "currency"),
    TargetField("compare_at_price", "Compare At Price", "currency"),
    TargetField("vendor", "Vendor", "string"),
    TargetField("product_type", "Product Type", "string"),
    TargetField("tags", "Tags", "string"),
    TargetField("barcode", "Barcode", "string"),
    TargetField("inventory_quantity", "Inventory Quantity", "number"),
    TargetField("first_name", "First Name", "string"),
    TargetField("last_name", "Last Name", "string"),
    TargetField("email", "Email", "email"),
    TargetField("phone", "Phone", "phone"),
    TargetField("order_number", "Order Number", "string"),
    TargetField("total_price", "Order Total", "currency"),
]


@dataclass(frozen=True)
class FieldMapping:
    """
    Association from a source column to a target field.

    An empty target_field leaves the source column unmapped. Mappings are
    frozen because a run must not see them change once it starts.
    """
    source_field: str
    target_field: str = ""
    confidence: int = 0  # 0-100
    reasoning: str = ""

    @property
    def is_mapped(self) -> bool:
        return bool(self.target_field)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        """Create from dictionary representation (snake or camel case keys)."""
        confidence = data.get("confidence", 0) or 0
        return cls(
            source_field=data.get("source_field") or data.get("sourceField") or "",
            target_field=(
                data.get("target_field")
                or data.get("targetField")
                or data.get("suggested_mapping")
                or data.get("suggestedMapping")
                or ""
            ),
            confidence=max(0, min(100, int(confidence))),
            reasoning=data.get("reasoning", ""),
        )


@dataclass
class MappingSuggestion:
    """A ranked mapping candidate returned by the mapping assistant."""
    source_field: str
    suggested_mapping: str
    confidence: int
    reasoning: str

    def to_field_mapping(self) -> FieldMapping:
        return FieldMapping(
            source_field=self.source_field,
            target_field=self.suggested_mapping,
            confidence=self.confidence,
            reasoning=self.reasoning,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_field": self.source_field,
            "suggested_mapping": self.suggested_mapping,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass
class DetectedField:
    """A source column found during schema detection."""
    name: str
    type: str  # string, number, date, email, phone, currency, boolean
    confidence: int
    sample_values: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "type": self.type,
            "confidence": self.confidence,
            "sample_values": self.sample_values,
        }


@dataclass
class SchemaDetectionResult:
    """Detected schema of a POS export."""
    fields: List[DetectedField] = field(default_factory=list)
    detected_source: str = "unknown"
    confidence: int = 0

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "fields": [f.to_dict() for f in self.fields],
            "detected_source": self.detected_source,
            "confidence": self.confidence,
        }


@dataclass
class DataValidationResult:
    """Result of validating a mapping set or a mapped data sample."""
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def find_target_field(target_id: str) -> Optional[TargetField]:
    for target in TARGET_FIELDS:
        if target.id == target_id:
            return target
    return None
