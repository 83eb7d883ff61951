import pytest

from posmigrate.models.migration import (
    MigrationPlan,
    MigrationProgress,
    MigrationStatus,
    MigrationStrategy,
    OperationError,
)
from posmigrate.models.record import Operation, OperationKind, ResourceKind
from posmigrate.services.analytics import MigrationAnalytics


def make_error(message: str, retry_count: int = 0) -> OperationError:
    operation = Operation(operation_kind=OperationKind.CREATE, resource_kind=ResourceKind.PRODUCT)
    return OperationError(operation=operation, error_message=message, retry_count=retry_count)


@pytest.fixture
def plan() -> MigrationPlan:
    return MigrationPlan(steps=[], total_records=100, estimated_duration_seconds=60, strategy=MigrationStrategy.BATCH)


@pytest.mark.unit
class TestMigrationAnalytics:
    def test_report_for_partial_run(self, plan) -> None:
        errors = [make_error("rate limit exceeded (Too Many Requests)", retry_count=3) for _ in range(3)]
        errors += [make_error("Validation failed: price: not a number") for _ in range(7)]
        progress = MigrationProgress(
            total=100, completed=90, failed=10, status=MigrationStatus.COMPLETED, errors=errors
        )

        report = MigrationAnalytics.report(progress, plan, duration_seconds=120.0)

        assert report["summary"]["success_rate"] == 90.0
        assert report["performance"]["records_per_minute"] == 45.0
        assert report["performance"]["estimated_vs_actual"] == 2.0
        assert report["performance"]["api_calls_estimate"] == 108
        assert report["issues"]["error_types"] == {"Rate Limit": 3, "Validation": 7}
        assert len(report["issues"]["critical_errors"]) == 3
        assert len(report["issues"]["retryable_errors"]) == 7
        assert report["recommendations"] == [
            "Consider data quality improvements before next migration",
            "Switch to bulk operations for better performance",
            "Review and fix data validation rules",
        ]

    def test_clean_fast_run_has_no_recommendations(self, plan) -> None:
        progress = MigrationProgress(total=100, completed=100, status=MigrationStatus.COMPLETED)

        report = MigrationAnalytics.report(progress, plan, duration_seconds=30.0)

        assert report["recommendations"] == []
        assert report["summary"]["success_rate"] == 100.0

    def test_empty_run(self, plan) -> None:
        report = MigrationAnalytics.report(MigrationProgress(), plan, duration_seconds=0.0)

        assert report["summary"]["success_rate"] == 100.0
        assert report["performance"]["records_per_minute"] == 0.0

    def test_many_rate_limits(self) -> None:
        errors = [make_error("Rate limit exceeded") for _ in range(11)] + [make_error("Duplicate SKU")]

        error_types = MigrationAnalytics.categorize_errors(errors)

        assert error_types == {"Rate Limit": 11, "Duplicate": 1}
        assert "Implement more aggressive rate limiting" in MigrationAnalytics.recommendations(
            100.0, 100.0, error_types, 0
        )

    def test_api_call_estimates(self) -> None:
        progress = MigrationProgress(total=10, completed=10)

        assert MigrationAnalytics.estimate_api_calls(progress, MigrationStrategy.BULK) == 1
