"""Post-run analytics and recommendations."""

import math
from collections import Counter
from typing import Any, Dict, List, Optional

from ..models.migration import MigrationPlan, MigrationProgress, MigrationStrategy, OperationError

# API calls per completed record, by strategy
_API_CALL_MULTIPLIERS = {
    MigrationStrategy.BULK: 0.1,
    MigrationStrategy.BATCH: 1.2,
    MigrationStrategy.HYBRID: 0.7,
}

_ERROR_CATEGORIES = (
    ("rate limit", "Rate Limit"),
    ("validation", "Validation"),
    ("duplicate", "Duplicate"),
)


class MigrationAnalytics:
    """Derives a report from a finished run. Every method is pure."""

    @classmethod
    def report(
        cls,
        progress: MigrationProgress,
        plan: MigrationPlan,
        duration_seconds: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Build the post-run report.

        Args:
            progress: Final progress of the run
            plan: Plan the run executed
            duration_seconds: Actual duration; defaults to the progress timestamps

        Returns:
            Dictionary with summary, performance, issues and recommendations
        """
        if duration_seconds is None:
            duration_seconds = progress.duration_seconds or 0.0
        # Sub-second runs are measured as one second
        minutes = max(duration_seconds, 1.0) / 60

        success_rate = progress.completed / progress.total * 100 if progress.total else 100.0

        summary = {
            "total_records": progress.total,
            "successful_records": progress.completed,
            "failed_records": progress.failed,
            "skipped_records": progress.skipped,
            "success_rate": success_rate,
            "strategy": plan.strategy.value,
            "status": progress.status.value,
            "actual_duration_seconds": duration_seconds,
        }

        performance = {
            "records_per_minute": progress.completed / minutes,
            "estimated_vs_actual": (
                duration_seconds / plan.estimated_duration_seconds
                if plan.estimated_duration_seconds else None
            ),
            "api_calls_estimate": cls.estimate_api_calls(progress, plan.strategy),
        }

        critical = [e for e in progress.errors if e.retry_count >= 3]
        issues = {
            "error_types": cls.categorize_errors(progress.errors),
            "critical_errors": [e.to_dict() for e in critical],
            "retryable_errors": [e.to_dict() for e in progress.errors if e.retry_count < 3],
        }

        recommendations = cls.recommendations(
            success_rate,
            performance["records_per_minute"],
            issues["error_types"],
            len(critical),
        )

        return {
            "summary": summary,
            "performance": performance,
            "issues": issues,
            "recommendations": recommendations,
        }

    @staticmethod
    def estimate_api_calls(progress: MigrationProgress, strategy: MigrationStrategy) -> int:
        return math.ceil(progress.completed * _API_CALL_MULTIPLIERS.get(strategy, 1))

    @staticmethod
    def categorize_errors(errors: List[OperationError]) -> Dict[str, int]:
        """Bucket errors by keywords in their message."""
        counts: Counter = Counter()
        for error in errors:
            message = error.error_message.lower()
            category = next(
                (label for keyword, label in _ERROR_CATEGORIES if keyword in message),
                "Other",
            )
            counts[category] += 1
        return dict(counts)

    @staticmethod
    def recommendations(
        success_rate: float,
        records_per_minute: float,
        error_types: Dict[str, int],
        critical_error_count: int
    ) -> List[str]:
        """Independent threshold rules; any number may fire."""
        recommendations = []

        if success_rate < 95:
            recommendations.append("Consider data quality improvements before next migration")

        if records_per_minute < 50:
            recommendations.append("Switch to bulk operations for better performance")

        if error_types.get("Rate Limit", 0) > 10:
            recommendations.append("Implement more aggressive rate limiting")

        if critical_error_count > 0:
            recommendations.append("Review and fix data validation rules")

        return recommendations
