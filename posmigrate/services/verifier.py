"""Post-migration integrity verification."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Keys tried in order when pairing an original record with a migrated one
MATCH_KEYS = ("sku", "id", "email")
CRITICAL_FIELDS = ("title", "price", "sku", "email")


@dataclass
class Inconsistency:
    """Field-level differences between a matched pair of records."""
    match_field: str
    match_value: Any
    issues: List[str]
    original: Dict[str, Any] = field(default_factory=dict)
    migrated: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            self.match_field: self.match_value,
            "issues": self.issues,
        }


@dataclass
class IntegrityReport:
    """Completeness and fidelity of a migrated record set."""
    integrity_percent: float
    missing_records: List[Dict[str, Any]] = field(default_factory=list)
    inconsistencies: List[Inconsistency] = field(default_factory=list)
    original_count: int = 0
    migrated_count: int = 0

    @property
    def is_complete(self) -> bool:
        return not self.missing_records

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "integrity_percent": self.integrity_percent,
            "original_count": self.original_count,
            "migrated_count": self.migrated_count,
            "missing_records": self.missing_records,
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
        }


def _has_value(value: Any) -> bool:
    return value is not None and value != ""


def _key(value: Any) -> str:
    return str(value).strip()


def _values_equal(original: Any, migrated: Any) -> bool:
    if original == migrated:
        return True
    if original is None or migrated is None or isinstance(original, bool) or isinstance(migrated, bool):
        return False
    # Prices come back as "10.00" for an original 10
    try:
        return float(original) == float(migrated)
    except (TypeError, ValueError):
        return False


def _display(value: Any) -> str:
    return "undefined" if value is None else str(value)


class IntegrityVerifier:
    """
    Compares source records with what landed in the target system.

    Records pair up on the first non-empty key of sku, id, email. Unpaired
    originals are missing; paired records are compared field by field on
    title, price, sku and email.
    """

    def __init__(
        self,
        match_keys: Tuple[str, ...] = MATCH_KEYS,
        critical_fields: Tuple[str, ...] = CRITICAL_FIELDS
    ):
        self.match_keys = match_keys
        self.critical_fields = critical_fields

    def verify(
        self,
        original: List[Dict[str, Any]],
        migrated: List[Dict[str, Any]]
    ) -> IntegrityReport:
        """
        Verify a migrated record set against the original.

        Args:
            original: Records that were submitted
            migrated: Records read back from the target

        Returns:
            IntegrityReport; an empty original set is 100% consistent
        """
        if not original:
            return IntegrityReport(integrity_percent=100.0, migrated_count=len(migrated))

        indexes = self._build_indexes(migrated)
        missing = []
        inconsistencies = []

        for record in original:
            found = self._find_match(record, indexes)
            if found is None:
                missing.append(record)
                continue

            match_field, match_value, counterpart = found
            issues = self.find_inconsistencies(record, counterpart)
            if issues:
                inconsistencies.append(Inconsistency(
                    match_field=match_field,
                    match_value=match_value,
                    issues=issues,
                    original=record,
                    migrated=counterpart,
                ))

        integrity = (len(original) - len(missing)) / len(original) * 100

        logger.info(
            f"Integrity check: {integrity:.1f}% present, {len(missing)} missing, "
            f"{len(inconsistencies)} inconsistent"
        )

        return IntegrityReport(
            integrity_percent=integrity,
            missing_records=missing,
            inconsistencies=inconsistencies,
            original_count=len(original),
            migrated_count=len(migrated),
        )

    def _build_indexes(self, records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Dict[str, Any]]]:
        indexes: Dict[str, Dict[str, Dict[str, Any]]] = {key: {} for key in self.match_keys}
        for record in records:
            for key in self.match_keys:
                value = record.get(key)
                if _has_value(value):
                    # First occurrence wins
                    indexes[key].setdefault(_key(value), record)
        return indexes

    def _find_match(
        self,
        record: Dict[str, Any],
        indexes: Dict[str, Dict[str, Dict[str, Any]]]
    ) -> Optional[Tuple[str, Any, Dict[str, Any]]]:
        for key in self.match_keys:
            value = record.get(key)
            if not _has_value(value):
                continue
            counterpart = indexes[key].get(_key(value))
            if counterpart is not None:
                return key, value, counterpart
        return None

    def find_inconsistencies(self, original: Dict[str, Any], migrated: Dict[str, Any]) -> List[str]:
        """Describe each critical field whose value changed."""
        issues = []
        for name in self.critical_fields:
            before = original.get(name)
            after = migrated.get(name)
            if not _values_equal(before, after):
                issues.append(f"{name}: {_display(before)} → {_display(after)}")
        return issues
