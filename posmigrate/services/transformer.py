"""Transformation and validation of POS records for the commerce schema."""

import logging
import math
import re
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from ..models.mapping import DataValidationResult, FieldMapping
from ..models.record import (
    InvalidRecord,
    SourceRecord,
    TransformationOutcome,
    ValidationError,
    ValidationErrorType,
)

logger = logging.getLogger(__name__)

PRICE_FIELDS = {"price", "compare_at_price", "total_price"}
QUANTITY_FIELDS = {"inventory_quantity", "quantity"}
TAG_FIELDS = {"tags"}

MAX_TITLE_LENGTH = 255
MAX_SKU_LENGTH = 100

# Currency symbols and whitespace that POS exports put in prices
_PRICE_NOISE = re.compile(r"[\s$€£¥]")
# Commas are accepted only as thousands separators; "12,50" stays unparseable
_THOUSANDS = re.compile(r"^[-+]?\d{1,3}(,\d{3})+(\.\d+)?$")
_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")


def parse_price(value: Any) -> Optional[float]:
    """Parse a price-like value; None when it is not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if value is None:
        return None

    cleaned = _PRICE_NOISE.sub("", str(value))
    if "," in cleaned:
        if not _THOUSANDS.match(cleaned):
            return None
        cleaned = cleaned.replace(",", "")
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_quantity(value: Any) -> int:
    """Parse a quantity-like value, defaulting to 0 when unparseable."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    match = _LEADING_INT.match(str(value)) if value is not None else None
    return int(match.group(1)) if match else 0


class RecordTransformer:
    """
    Applies a field mapping to raw records and checks target constraints.

    Quantity coercion is lenient (unparseable counts become 0) while price
    coercion is strict: a non-numeric price is left as-is so validation
    rejects the record.
    """

    def __init__(self):
        """Initialize the transformer."""
        self._coercions: Dict[str, Callable[[Any], Any]] = {}
        for name in PRICE_FIELDS:
            self._coercions[name] = self._coerce_price
        for name in QUANTITY_FIELDS:
            self._coercions[name] = parse_quantity
        for name in TAG_FIELDS:
            self._coercions[name] = self._coerce_tags

    def transform(self, record: Dict[str, Any], mappings: List[FieldMapping]) -> Dict[str, Any]:
        """
        Copy mapped source values into a new target record.

        Args:
            record: Raw source record
            mappings: Field mappings; entries without a target are skipped

        Returns:
            New dictionary keyed by target field
        """
        transformed: Dict[str, Any] = {}

        for mapping in mappings:
            if not mapping.is_mapped or mapping.source_field not in record:
                continue
            value = record[mapping.source_field]
            coerce = self._coercions.get(mapping.target_field)
            transformed[mapping.target_field] = coerce(value) if coerce else value

        return transformed

    def _coerce_price(self, value: Any) -> Any:
        number = parse_price(value)
        if number is None:
            return value
        return f"{number:.2f}"

    def _coerce_tags(self, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return value

    def validate(self, record: Dict[str, Any]) -> List[ValidationError]:
        """Check a transformed record against the target constraints."""
        errors = []

        title = record.get("title")
        if title is not None and len(str(title)) > MAX_TITLE_LENGTH:
            errors.append(ValidationError(
                field="title",
                message=f"Product title exceeds {MAX_TITLE_LENGTH} characters",
                error_type=ValidationErrorType.MAX_LENGTH,
                value=len(str(title)),
                suggested_fix=f"Truncate to {MAX_TITLE_LENGTH} characters",
            ))

        price = record.get("price")
        if price is not None and price != "":
            number = parse_price(price)
            if number is None:
                errors.append(ValidationError(
                    field="price",
                    message="Price must be a number",
                    error_type=ValidationErrorType.FORMAT,
                    value=price,
                ))
            elif number < 0:
                errors.append(ValidationError(
                    field="price",
                    message="Price must be a positive number",
                    error_type=ValidationErrorType.INVALID,
                    value=price,
                ))

        sku = record.get("sku")
        if sku is not None and len(str(sku)) > MAX_SKU_LENGTH:
            errors.append(ValidationError(
                field="sku",
                message=f"SKU exceeds {MAX_SKU_LENGTH} characters",
                error_type=ValidationErrorType.MAX_LENGTH,
                value=len(str(sku)),
                suggested_fix=f"Truncate to {MAX_SKU_LENGTH} characters",
            ))

        return errors

    def is_valid(self, record: Dict[str, Any]) -> bool:
        """Quick check if a transformed record is valid."""
        return not self.validate(record)

    def validate_and_transform(
        self,
        mappings: List[FieldMapping],
        records: List[SourceRecord]
    ) -> TransformationOutcome:
        """
        Transform and validate every record.

        Valid records come back as new SourceRecords carrying the
        transformed data, with the original id and resource kind.
        """
        outcome = TransformationOutcome()

        for record in records:
            try:
                transformed = self.transform(record.data, mappings)
            except Exception as e:
                outcome.invalid_data.append(InvalidRecord(
                    original=record,
                    errors=[ValidationError(field="*", message=f"Transform error: {e}")],
                ))
                outcome.log.append(f"✗ Transformation failed for {record.id}: {e}")
                logger.error(f"Transform error for record {record.id}: {e}")
                continue

            errors = self.validate(transformed)
            if errors:
                outcome.invalid_data.append(InvalidRecord(
                    original=record,
                    transformed=transformed,
                    errors=errors,
                ))
                outcome.log.append(
                    f"✗ Validation failed for {record.id}: {', '.join(e.message for e in errors)}"
                )
            else:
                outcome.valid_data.append(SourceRecord(
                    data=transformed,
                    resource_kind=record.resource_kind,
                    id=record.id,
                ))
                outcome.log.append(f"✓ Record {record.id} transformed successfully")

        logger.info(
            f"Transformed {len(outcome.valid_data)} valid, {len(outcome.invalid_data)} invalid records"
        )
        return outcome


def validate_mappings(mappings: List[FieldMapping]) -> DataValidationResult:
    """
    Check the invariants of a mapping set.

    A source field mapped twice is an error. Two sources feeding the same
    target field is only a warning.
    """
    result = DataValidationResult()

    source_counts = Counter(m.source_field for m in mappings)
    for source_field, count in source_counts.items():
        if count > 1:
            result.errors.append(ValidationError(
                field=source_field,
                message=f"Source field '{source_field}' is mapped {count} times",
                error_type=ValidationErrorType.DUPLICATE,
            ))

    target_counts = Counter(m.target_field for m in mappings if m.is_mapped)
    for target_field, count in target_counts.items():
        if count > 1:
            result.warnings.append(ValidationError(
                field=target_field,
                message=f"Target field '{target_field}' receives {count} source fields",
                error_type=ValidationErrorType.DUPLICATE,
                severity="warning",
            ))

    return result
