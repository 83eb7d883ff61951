import pytest

from posmigrate.services.verifier import IntegrityVerifier


@pytest.fixture
def verifier() -> IntegrityVerifier:
    return IntegrityVerifier()


@pytest.mark.unit
class TestIntegrityVerifier:
    """Completeness and field-level fidelity checks."""

    def test_price_change_is_inconsistency_not_missing(self, verifier) -> None:
        report = verifier.verify([{"sku": "A", "price": 10}], [{"sku": "A", "price": 12}])

        assert report.integrity_percent == 100
        assert report.missing_records == []
        assert [i.to_dict() for i in report.inconsistencies] == [{"sku": "A", "issues": ["price: 10 → 12"]}]

    def test_empty_original_is_fully_consistent(self, verifier) -> None:
        report = verifier.verify([], [{"sku": "A"}])

        assert report.integrity_percent == 100
        assert report.missing_records == []

    def test_missing_records_lower_integrity(self, verifier) -> None:
        original = [{"sku": "A"}, {"sku": "B"}, {"sku": "C"}, {"sku": "D"}]

        report = verifier.verify(original, [{"sku": "A"}, {"sku": "C"}, {"sku": "D"}])

        assert report.integrity_percent == 75
        assert report.missing_records == [{"sku": "B"}]
        assert not report.is_complete

    def test_match_falls_back_to_email(self, verifier) -> None:
        report = verifier.verify(
            [{"email": "a@example.com", "first_name": "Ann"}],
            [{"id": "99", "email": "a@example.com"}],
        )

        assert report.integrity_percent == 100
        assert report.inconsistencies == []

    def test_sku_match_wins_over_id(self, verifier) -> None:
        original = [{"sku": "A", "id": "1", "title": "Widget"}]
        migrated = [{"sku": "B", "id": "1", "title": "Other"}, {"sku": "A", "id": "2", "title": "Widget"}]

        report = verifier.verify(original, migrated)

        assert report.inconsistencies == []

    def test_numeric_values_compare_by_value(self, verifier) -> None:
        report = verifier.verify([{"sku": "A", "price": 10}], [{"sku": "A", "price": "10.00"}])
        assert report.inconsistencies == []

    def test_dropped_field_reports_undefined(self, verifier) -> None:
        report = verifier.verify([{"sku": "A", "title": "Widget"}], [{"sku": "A"}])
        assert report.inconsistencies[0].issues == ["title: Widget → undefined"]

    def test_records_without_keys_are_missing(self, verifier) -> None:
        report = verifier.verify([{"title": "No keys"}], [{"title": "No keys"}])
        assert report.integrity_percent == 0
